"""Shared fixtures: small structured meshes with geometry and random fields."""

import pytest
import jax

from multiphysax import (
    ElementMat_Parallel,
    ElementMat_Serial,
    ElementMesh,
    ElementVector_Parallel,
    ElementVector_Serial,
    EmptyElementVector,
    FEBasis,
    FiniteElement,
    HexGaussQuadrature,
    LagrangeH1Basis,
    LagrangeL2Basis,
    QHdivBasis,
    SolutionVector,
    SparseMatrix,
    box_element_map,
    box_mesh,
    set_geometry,
)


class Problem:
    """Everything needed to call the assembly engine on a box mesh."""

    def __init__(self, nelems, sol_basis, data_basis=None, lengths=None, seed=0, amplitude=0.5):
        self.nelems = tuple(nelems)
        self.quadrature = HexGaussQuadrature(3)
        self.geo_basis = FEBasis(LagrangeH1Basis(1, 3, 3))
        self.sol_basis = sol_basis
        self.data_basis = data_basis if data_basis is not None else FEBasis()
        self.element_map = box_element_map(nelems, lengths)

        self.geo_mesh = box_mesh(self.geo_basis, nelems)
        self.sol_mesh = box_mesh(self.sol_basis, nelems)
        self.num_elements = self.geo_mesh.get_num_elements()

        self.geo = SolutionVector(self.geo_mesh.get_num_dof())
        set_geometry(self.geo_mesh, self.geo, self.element_map)

        key_sol, key_data, key_dir = jax.random.split(jax.random.PRNGKey(seed), 3)
        ndof = self.sol_mesh.get_num_dof()
        self.sol = SolutionVector.from_array(amplitude * jax.random.uniform(key_sol, (ndof,), minval=-1.0, maxval=1.0))
        self.direction = SolutionVector.from_array(jax.random.uniform(key_dir, (ndof,), minval=-1.0, maxval=1.0))

        if self.data_basis.nbasis > 0:
            self.data_mesh = box_mesh(self.data_basis, nelems)
            ndata = self.data_mesh.get_num_dof()
            self.data = SolutionVector.from_array(jax.random.uniform(key_data, (ndata,), minval=1.0, maxval=2.0))
        else:
            self.data_mesh = None
            self.data = None

    def set_signs(self, sign):
        """Replace the solution mesh by one with (num_elements, ndof) orientation signs."""
        basis = self.sol_mesh.basis
        dof_tables = []
        sign_tables = []
        for b in range(basis.nbasis):
            cols = slice(basis.get_dof_offset(b), basis.get_dof_offset(b) + basis.get_ndof(b))
            dof_tables.append(self.sol_mesh.element_dof[:, cols])
            sign_tables.append(sign[:, cols])
        self.sol_mesh = ElementMesh(basis, dof_tables, sign_tables, num_dof=self.sol_mesh.get_num_dof())

    def element_vectors(self, strategy):
        """Return (elem_data, elem_geo, elem_sol, elem_dir) for a strategy."""
        cls = ElementVector_Serial if strategy == "serial" else ElementVector_Parallel
        if self.data_mesh is None:
            elem_data = EmptyElementVector(self.num_elements)
        else:
            elem_data = cls(self.data_mesh, self.data)
        vecs = (elem_data, cls(self.geo_mesh, self.geo), cls(self.sol_mesh, self.sol), cls(self.sol_mesh, self.direction))
        for vec in vecs:
            vec.init_values()
        return vecs

    def output_vector(self, strategy):
        cls = ElementVector_Serial if strategy == "serial" else ElementVector_Parallel
        out = SolutionVector(self.sol_mesh.get_num_dof())
        return out, cls(self.sol_mesh, out)

    def finite_element(self, pde, options=None):
        return FiniteElement(pde, self.quadrature, self.data_basis, self.geo_basis, self.sol_basis, options)

    def assemble(self, fe, pde, strategy, op):
        """Run one engine operation and return the global result.

        ``op`` is "residual", "jvp" (along ``self.direction``) or "jacobian"
        (returned dense).
        """
        elem_data, elem_geo, elem_sol, elem_dir = self.element_vectors(strategy)
        if op == "jacobian":
            mat = SparseMatrix(self.sol_mesh.get_num_dof())
            cls = ElementMat_Serial if strategy == "serial" else ElementMat_Parallel
            elem_mat = cls(self.sol_mesh, mat)
            elem_mat.init_zero_values()
            fe.add_jacobian(pde, elem_data, elem_geo, elem_sol, elem_mat)
            elem_mat.add_values()
            return mat.todense()

        out, elem_out = self.output_vector(strategy)
        elem_out.init_zero_values()
        if op == "residual":
            fe.add_residual(pde, elem_data, elem_geo, elem_sol, elem_out)
        else:
            fe.add_jacobian_vector_product(pde, elem_data, elem_geo, elem_sol, elem_dir, elem_out)
        elem_out.add_values()
        return out.array


@pytest.fixture
def heat_problem():
    """2x2x1 box with a scalar degree-1 field and L2 conductivity data."""
    return Problem(
        (2, 2, 1),
        FEBasis(LagrangeH1Basis(1, 1, 3)),
        FEBasis(LagrangeL2Basis(0, 1, 3)),
        lengths=(1.0, 2.0, 0.5),
    )


@pytest.fixture
def elasticity_problem():
    """2x1x1 box with a vector degree-1 field and two L2 Lame parameters."""
    return Problem(
        (2, 1, 1),
        FEBasis(LagrangeH1Basis(1, 3, 3)),
        FEBasis(LagrangeL2Basis(0, 1, 3), LagrangeL2Basis(0, 1, 3)),
        seed=3,
        amplitude=0.02,
    )


@pytest.fixture
def poisson_problem():
    """2x2x2 box with a scalar degree-2 field and no data."""
    return Problem((2, 2, 2), FEBasis(LagrangeH1Basis(2, 1, 3)))


@pytest.fixture
def mixed_poisson_problem():
    """2x2x1 box with a lowest-order H(div) flux and a constant L2 potential."""
    return Problem(
        (2, 2, 1),
        FEBasis(QHdivBasis(1, 3), LagrangeL2Basis(0, 1, 3)),
        lengths=(1.0, 2.0, 0.5),
        seed=4,
    )


@pytest.fixture
def mixed_heat_problem():
    """2x2x1 box with an H(div) heat flux, an L2 temperature and L2 resistivity data."""
    return Problem(
        (2, 2, 1),
        FEBasis(QHdivBasis(1, 3), LagrangeL2Basis(0, 1, 3)),
        FEBasis(LagrangeL2Basis(0, 1, 3)),
        lengths=(1.0, 2.0, 0.5),
        seed=5,
    )
