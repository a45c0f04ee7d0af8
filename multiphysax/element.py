"""Finite-element assembly engine.

``FiniteElement`` integrates a point-wise weak form over every element of a
mesh. For each element it gathers the data, geometry and solution buffers,
interpolates them to the quadrature points, maps the solution to the physical
frame with the geometry Jacobian, evaluates the weak form, maps the coefficients
back with the adjoint transform and scatters them through the basis.

The execution strategy follows the output element vector:

* Serial outputs run a Python loop over elements. Every element goes through
  the same jitted element kernel, so the kernel is traced once per PDE.
* Parallel outputs evaluate the element kernel under ``jax.vmap`` in element
  batches and write the results into the output's bulk array. The caller
  gathers the inputs with ``init_values()`` beforehand, clears the output with
  ``init_zero_values()`` and scatters it with ``add_values()`` afterwards.

The engine keeps no assembly state between calls.

Example:
    >>> fe = FiniteElement(pde, quadrature, data_basis, geo_basis, basis)
    >>> elem_res = ElementVector_Serial(mesh, res)
    >>> fe.add_residual(pde, elem_data, elem_geo, elem_sol, elem_res)
"""

import functools
from typing import Callable, Optional

import jax
import jax.numpy as np

from multiphysax import logger
from multiphysax.basis import FEBasis
from multiphysax.element_vector import ElemVecType, EmptyElementVector
from multiphysax.quadrature import GaussQuadrature
from multiphysax.spaces import FESpace, QptSpace


def jacobian_transform(geo: FESpace):
    """Return (detJ, J, Jinv) from the gradient of the geometry component."""
    J = geo.get(0).grad
    return np.linalg.det(J), J, np.linalg.inv(J)


def _check_space(name: str, basis: FEBasis, template: FESpace):
    if basis.nbasis == 0 and len(template) == 0:
        return
    structure = jax.tree_util.tree_structure(basis.space())
    if structure != jax.tree_util.tree_structure(template) or basis.ncomp != template.ncomp:
        raise ValueError(
            f"The {name} basis produces {basis.space()!r}, which does not match the PDE {name} space {template!r}"
        )


class FiniteElement:
    """Residual, Jacobian-vector product and Jacobian assembly for one PDE.

    Args:
        pde (PDE): Weak form the bases are checked against.
        quadrature (GaussQuadrature): Element quadrature rule.
        data_basis (FEBasis): Basis of the material data, may be empty.
        geo_basis (FEBasis): Basis of the geometry.
        basis (FEBasis): Basis of the solution.
        options (dict, optional): ``num_cuts`` sets the number of element
            batches on the parallel path. Defaults to 20.

    Raises:
        ValueError: If a basis does not produce the matching PDE space.
    """

    def __init__(
        self,
        pde,
        quadrature: GaussQuadrature,
        data_basis: FEBasis,
        geo_basis: FEBasis,
        basis: FEBasis,
        options: Optional[dict] = None,
    ):
        options = options or {}
        _check_space("data", data_basis, pde.data_space)
        _check_space("geometry", geo_basis, pde.geo_space)
        _check_space("solution", basis, pde.sol_space)

        self.quadrature = quadrature
        self.data_basis = data_basis
        self.geo_basis = geo_basis
        self.basis = basis
        self.num_cuts = options.get("num_cuts", 20)
        self._weights = np.asarray(quadrature.weights)

        self._residual_kernel = jax.jit(self._element_residual, static_argnums=0)
        self._jvp_kernel = jax.jit(self._element_jacobian_vector_product, static_argnums=0)
        self._jacobian_kernel = jax.jit(self._element_jacobian, static_argnums=0)
        self._residual_batch = jax.jit(_vmap_elements(self._element_residual), static_argnums=0)
        self._jvp_batch = jax.jit(_vmap_elements(self._element_jacobian_vector_product), static_argnums=0)
        self._jacobian_batch = jax.jit(_vmap_elements(self._element_jacobian), static_argnums=0)

    # Element kernels

    def _interpolate(self, data_dof, geo_dof, sol_dof):
        if self.data_basis.nbasis > 0:
            data = self.data_basis.interp(data_dof, self.quadrature)
        else:
            data = QptSpace(FESpace())
        geo = self.geo_basis.interp(geo_dof, self.quadrature)
        sol = self.basis.interp(sol_dof, self.quadrature)
        return data, geo, sol

    def _element_residual(self, pde, data_dof, geo_dof, sol_dof):
        data, geo, sol = self._interpolate(data_dof, geo_dof, sol_dof)

        def point_residual(weight, data, geo, sref):
            detJ, J, Jinv = jacobian_transform(geo)
            s = sref.transform(detJ, J, Jinv)
            coef = pde.weak(weight * detJ, data, geo, s)
            return coef.rtransform(detJ, J, Jinv)

        coef = jax.vmap(point_residual)(self._weights, data.space, geo.space, sol.space)
        return self.basis.add(QptSpace(coef), np.zeros(self.basis.ndof), self.quadrature)

    def _element_jacobian_vector_product(self, pde, data_dof, geo_dof, sol_dof, x_dof):
        data, geo, sol = self._interpolate(data_dof, geo_dof, sol_dof)
        x = self.basis.interp(x_dof, self.quadrature)

        def point_jvp(weight, data, geo, sref, pref):
            detJ, J, Jinv = jacobian_transform(geo)
            s = sref.transform(detJ, J, Jinv)
            jvp = pde.JacVecProduct(pde, weight * detJ, data, geo, s)
            return jvp(pref.transform(detJ, J, Jinv)).rtransform(detJ, J, Jinv)

        coef = jax.vmap(point_jvp)(self._weights, data.space, geo.space, sol.space, x.space)
        return self.basis.add(QptSpace(coef), np.zeros(self.basis.ndof), self.quadrature)

    def _element_jacobian(self, pde, data_dof, geo_dof, sol_dof):
        data, geo, sol = self._interpolate(data_dof, geo_dof, sol_dof)
        ncomp = self.basis.ncomp

        def point_jacobian(weight, data, geo, sref):
            detJ, J, Jinv = jacobian_transform(geo)
            s = sref.transform(detJ, J, Jinv)
            jvp = pde.JacVecProduct(pde, weight * detJ, data, geo, s)

            def column(direction):
                pref = sref.unflatten(direction)
                return jvp(pref.transform(detJ, J, Jinv)).rtransform(detJ, J, Jinv).flatten()

            # Row k holds the response to unit direction k
            return jax.vmap(column)(np.eye(ncomp)).T

        jac = jax.vmap(point_jacobian)(self._weights, data.space, geo.space, sol.space)
        elem_mat = np.zeros((self.basis.ndof, self.basis.ndof))
        for j in range(self.quadrature.get_num_points()):
            elem_mat = self.basis.add_outer(j, jac[j], elem_mat, self.quadrature)
        return elem_mat

    # Dispatch

    @staticmethod
    def _strategy(output, *inputs) -> Optional[ElemVecType]:
        evtypes = {vec.evtype for vec in (output,) + inputs if vec.evtype is not None}
        if len(evtypes) > 1:
            raise ValueError(
                f"Element vectors of one assembly call must share a strategy, got {sorted(t.value for t in evtypes)}"
            )
        return output.evtype

    def _element_array(self, vec, num_elements: int):
        if isinstance(vec, EmptyElementVector):
            return np.zeros((num_elements, 0))
        return vec.get_element_array()

    def _run_batches(self, batch_fn: Callable, pde, inputs, num_elements: int):
        num_cuts = min(self.num_cuts, num_elements)
        batch_size = num_elements // num_cuts
        values = []
        for i in range(num_cuts):
            stop = (i + 1) * batch_size if i < num_cuts - 1 else num_elements
            batch = jax.tree_util.tree_map(lambda x: x[i * batch_size : stop], inputs)
            values.append(batch_fn(pde, *batch))
        return np.concatenate(values, axis=0)

    def _assemble(self, name, pde, kernel, batch_kernel, inputs, output):
        evtype = self._strategy(output, *inputs)
        num_elements = output.get_num_elements()
        logger.debug(f"{name}: {num_elements} elements, strategy={evtype}")
        if evtype is None or num_elements == 0:
            return

        if evtype == ElemVecType.Serial:
            for elem in range(num_elements):
                dofs = [vec.get_element_values(elem) for vec in inputs]
                output.add_element_values(elem, kernel(pde, *dofs))
        else:
            arrays = [self._element_array(vec, num_elements) for vec in inputs]
            output.add_element_array(self._run_batches(batch_kernel, pde, arrays, num_elements))

    # Solver-facing operations

    def add_residual(self, pde, elem_data, elem_geo, elem_sol, elem_res):
        """Accumulate the weak-form residual into ``elem_res``.

        Args:
            pde (PDE): Weak form.
            elem_data: Element vector of the material data.
            elem_geo: Element vector of the geometry.
            elem_sol: Element vector of the solution state.
            elem_res: Output element vector.

        Raises:
            ValueError: If the element vectors mix serial and parallel strategies.
        """
        self._assemble(
            "add_residual",
            pde,
            self._residual_kernel,
            self._residual_batch,
            (elem_data, elem_geo, elem_sol),
            elem_res,
        )

    def add_jacobian_vector_product(self, pde, elem_data, elem_geo, elem_sol, elem_x, elem_y):
        """Accumulate ``y += J(sol) x`` matrix-free.

        The weak form is linearized once per quadrature point at the solution
        state and applied to the interpolated direction ``x``.
        """
        self._assemble(
            "add_jacobian_vector_product",
            pde,
            self._jvp_kernel,
            self._jvp_batch,
            (elem_data, elem_geo, elem_sol, elem_x),
            elem_y,
        )

    def add_jacobian(self, pde, elem_data, elem_geo, elem_sol, elem_mat):
        """Accumulate dense element Jacobians into ``elem_mat``.

        The point-wise operator is applied to every unit direction of the
        reference field space, which costs ``ncomp`` Jacobian-vector products
        per quadrature point and O(ncomp^2) work per element. This is meant for
        low-order elements; use ``add_jacobian_vector_product`` for high order.
        """
        self._assemble(
            "add_jacobian",
            pde,
            self._jacobian_kernel,
            self._jacobian_batch,
            (elem_data, elem_geo, elem_sol),
            elem_mat,
        )


def _vmap_elements(element_kernel: Callable) -> Callable:
    def batched(pde, *dofs):
        return jax.vmap(functools.partial(element_kernel, pde))(*dofs)

    return batched
