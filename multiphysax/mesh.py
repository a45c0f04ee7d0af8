"""Element-to-DOF connectivity consumed by the element vectors.

The mesh is the hand-off point between topology and assembly: for every element
it lists, per sub-space of the basis, the global DOF index and orientation sign
of each local DOF. The tables are built once and never modified during assembly.

Key Classes:
    ElementMesh: Immutable (global DOF, sign) tables for one basis

Key Functions:
    box_mesh: Number the DOFs of Lagrange and H(div) sub-spaces on a structured box
    box_element_map: Affine reference-to-physical map for box elements
    set_geometry: Fill a geometry vector from an element map

Example:
    >>> geo_basis = FEBasis(LagrangeH1Basis(degree=1, ncomp=3, dim=3))
    >>> geomesh = box_mesh(geo_basis, (2, 2, 2))
    >>> global_geo = SolutionVector(geomesh.get_num_dof())
    >>> set_geometry(geomesh, global_geo, box_element_map((2, 2, 2)))
"""

import itertools
from typing import Callable, Optional, Sequence

import numpy as onp
import jax.numpy as np

from multiphysax import logger
from multiphysax.basis import FEBasis, LagrangeH1Basis, LagrangeL2Basis, QHdivBasis


class ElementMesh:
    """Global DOF numbering and orientation signs for one element basis.

    Args:
        basis (FEBasis): Element basis the tables refer to.
        dof_tables (Sequence[onp.ndarray]): One integer array per sub-basis with
            shape (num_elements, basis.get_ndof(b)) holding global DOF indices.
        sign_tables (Sequence[onp.ndarray], optional): Matching arrays of +1/-1.
            Defaults to all +1.
        num_dof (int, optional): Size of the global DOF space. Defaults to the
            largest index plus one.
        num_elements (int, optional): Required only when the basis is empty.

    Raises:
        ValueError: If the tables do not match the basis layout.
    """

    def __init__(
        self,
        basis: FEBasis,
        dof_tables: Sequence[onp.ndarray],
        sign_tables: Optional[Sequence[onp.ndarray]] = None,
        num_dof: Optional[int] = None,
        num_elements: Optional[int] = None,
    ):
        self.basis = basis
        if len(dof_tables) != basis.nbasis:
            raise ValueError(f"Expected {basis.nbasis} DOF tables, got {len(dof_tables)}")

        if basis.nbasis == 0:
            if num_elements is None:
                raise ValueError("num_elements is required for an empty basis")
            self.num_elements = num_elements
        else:
            self.num_elements = onp.asarray(dof_tables[0]).shape[0]

        if sign_tables is None:
            sign_tables = [onp.ones_like(onp.asarray(t)) for t in dof_tables]

        dofs = []
        signs = []
        for b in range(basis.nbasis):
            table = onp.asarray(dof_tables[b], dtype=onp.int64).reshape(self.num_elements, -1)
            sign = onp.asarray(sign_tables[b], dtype=onp.int64).reshape(self.num_elements, -1)
            if table.shape[1] != basis.get_ndof(b) or sign.shape != table.shape:
                raise ValueError(
                    f"Sub-space {b}: expected tables of shape "
                    f"({self.num_elements}, {basis.get_ndof(b)}), got {table.shape} and {sign.shape}"
                )
            if not onp.all(onp.abs(sign) == 1):
                raise ValueError(f"Sub-space {b}: orientation signs must be +1 or -1")
            dofs.append(table)
            signs.append(sign)

        if dofs:
            self.element_dof = onp.concatenate(dofs, axis=1)
            self.element_sign = onp.concatenate(signs, axis=1)
        else:
            self.element_dof = onp.zeros((self.num_elements, 0), dtype=onp.int64)
            self.element_sign = onp.zeros((self.num_elements, 0), dtype=onp.int64)

        max_dof = int(self.element_dof.max()) + 1 if self.element_dof.size else 0
        self.num_dof = max_dof if num_dof is None else num_dof
        if self.num_dof < max_dof:
            raise ValueError(f"num_dof={self.num_dof} is smaller than the largest DOF index + 1 ({max_dof})")

    def get_num_elements(self) -> int:
        return self.num_elements

    def get_num_dof(self) -> int:
        return self.num_dof

    def get_global_dof(self, elem: int, basis: int, index: int) -> int:
        return int(self.element_dof[elem, self.basis.get_dof_offset(basis) + index])

    def get_global_dof_sign(self, elem: int, basis: int, index: int) -> int:
        return int(self.element_sign[elem, self.basis.get_dof_offset(basis) + index])


def _element_multi_index(elem: int, nelems: Sequence[int]):
    idx = []
    for n in nelems:
        idx.append(elem % n)
        elem //= n
    return idx


def box_mesh(basis: FEBasis, nelems: Sequence[int]) -> ElementMesh:
    """Number the DOFs of a structured box of tensor-product elements.

    Elements are numbered x-fastest. Lagrange H1 sub-spaces share the nodes on
    element interfaces; Lagrange L2 sub-spaces own their DOFs. H(div) sub-spaces
    share the normal-flux DOFs of interior faces and own the rest. Sub-spaces
    occupy consecutive blocks of the global DOF space in basis order. All signs
    are +1 because neighbouring elements share a common orientation on a
    structured box.

    Args:
        basis (FEBasis): Element basis made of ``LagrangeH1Basis``,
            ``LagrangeL2Basis`` and ``QHdivBasis`` sub-bases.
        nelems (Sequence[int]): Number of elements in each direction.

    Returns:
        ElementMesh: Connectivity for ``basis``.

    Raises:
        NotImplementedError: For other sub-bases.
    """
    nelems = tuple(nelems)
    dim = len(nelems)
    num_elements = int(onp.prod(nelems))
    tables = []
    offset = 0
    for sub in basis.bases:
        if sub.dim != dim:
            raise ValueError(f"Sub-basis dimension {sub.dim} does not match mesh dimension {dim}")
        p = sub.degree
        C = sub.ncomp
        table = onp.zeros((num_elements, sub.ndof), dtype=onp.int64)
        if isinstance(sub, LagrangeH1Basis):
            local = [idx[::-1] for idx in itertools.product(range(p + 1), repeat=dim)]
            gshape = [n * p + 1 for n in nelems]
            strides = onp.cumprod([1] + gshape[:-1])
            for e in range(num_elements):
                eidx = _element_multi_index(e, nelems)
                for a, idx in enumerate(local):
                    gnode = sum((eidx[d] * p + idx[d]) * strides[d] for d in range(dim))
                    table[e, a * C : (a + 1) * C] = offset + gnode * C + onp.arange(C)
            offset += int(onp.prod(gshape)) * C
        elif isinstance(sub, LagrangeL2Basis):
            table[:] = offset + onp.arange(num_elements * sub.ndof).reshape(num_elements, sub.ndof)
            offset += num_elements * sub.ndof
        elif isinstance(sub, QHdivBasis):
            # Block d shares its nodes across the faces normal to direction d
            for d in range(dim):
                gshape = [n * p + 1 if k == d else n * p for k, n in enumerate(nelems)]
                strides = onp.cumprod([1] + gshape[:-1])
                start = d * sub.block_size
                for e in range(num_elements):
                    eidx = _element_multi_index(e, nelems)
                    for a, idx in enumerate(sub.block_indices(d)):
                        gnode = sum((eidx[k] * p + idx[k]) * strides[k] for k in range(dim))
                        table[e, start + a] = offset + gnode
                offset += int(onp.prod(gshape))
        else:
            raise NotImplementedError(f"box_mesh does not number DOFs for {type(sub).__name__}")
        tables.append(table)

    logger.debug(f"Box mesh: {num_elements} elements, {offset} DOFs")
    return ElementMesh(basis, tables, num_dof=offset, num_elements=num_elements)


def box_element_map(
    nelems: Sequence[int],
    lengths: Optional[Sequence[float]] = None,
    origin: Optional[Sequence[float]] = None,
) -> Callable[[int, onp.ndarray], onp.ndarray]:
    """Affine map from the reference element [-1, 1]^dim to box element ``elem``.

    Args:
        nelems (Sequence[int]): Number of elements in each direction.
        lengths (Sequence[float], optional): Box edge lengths. Defaults to ones.
        origin (Sequence[float], optional): Lower corner. Defaults to zeros.

    Returns:
        Callable: ``element_map(elem, xi) -> x``.
    """
    nelems = tuple(nelems)
    dim = len(nelems)
    lengths = onp.ones(dim) if lengths is None else onp.asarray(lengths, dtype=float)
    origin = onp.zeros(dim) if origin is None else onp.asarray(origin, dtype=float)
    h = lengths / onp.asarray(nelems)

    def element_map(elem, xi):
        lower = origin + onp.asarray(_element_multi_index(elem, nelems)) * h
        return lower + 0.5 * (onp.asarray(xi) + 1.0) * h

    return element_map


def set_geometry(mesh: ElementMesh, vec, element_map: Callable) -> None:
    """Fill a global geometry vector element by element.

    The geometry basis must consist of a single Lagrange H1 sub-basis whose
    components are the physical coordinates.

    Args:
        mesh (ElementMesh): Connectivity of the geometry basis.
        vec (SolutionVector): Global geometry vector, updated in place.
        element_map (Callable): ``element_map(elem, xi) -> x``.
    """
    from multiphysax.element_vector import ElementVector_Serial

    basis = mesh.basis
    if basis.nbasis != 1 or not isinstance(basis.bases[0], LagrangeH1Basis):
        raise ValueError("The geometry basis must be a single LagrangeH1Basis")
    ncomp = basis.bases[0].ncomp

    elem_geo = ElementVector_Serial(mesh, vec)
    for e in range(mesh.get_num_elements()):
        geo_dof = onp.zeros(basis.ndof)
        for i in range(basis.ndof):
            x = element_map(e, basis.get_dof_point(i))
            geo_dof[i] = x[i % ncomp]
        elem_geo.set_element_values(e, np.asarray(geo_dof))
