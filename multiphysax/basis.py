"""Finite-element bases on tensor-product reference elements.

A basis maps an element-local DOF buffer to field-space records at quadrature
points (``interp``) and scatters point-wise coefficients back into a DOF buffer
with the transpose of that map (``add``). Both directions share one static
interpolation operator per (basis, quadrature) pair, evaluated with NumPy at
setup time and embedded as a constant in the traced kernels.

Key Classes:
    ElementTypes: Entity dimension codes used by ``set_entity_dof``
    LagrangeH1Basis: Continuous Lagrange basis on Gauss-Lobatto nodes
    LagrangeL2Basis: Discontinuous Lagrange basis on Gauss nodes
    QHdivBasis: H(div)-conforming basis with face normal-flux DOFs
    FEBasis: Composition of sub-bases into one element basis

Local DOF layout:
    Sub-bases are stacked in the order given to ``FEBasis``; sub-basis ``b``
    starts at ``get_dof_offset(b)``. Inside a sub-basis the ordering is
    node-major, ``dof = node * ncomp + component``, and nodes are numbered
    x-fastest.

Example:
    >>> basis = FEBasis(LagrangeH1Basis(degree=2, ncomp=3, dim=3))
    >>> qpts = basis.interp(dof, quadrature)
    >>> dof = basis.add(qpts, np.zeros(basis.ndof), quadrature)
"""

import dataclasses
import functools
import itertools
from typing import List, Sequence, Tuple

import numpy as onp
import jax.numpy as np

from multiphysax.quadrature import GaussQuadrature, gauss_lobatto_points, gauss_points
from multiphysax.spaces import FESpace, H1Space, HdivSpace, L2Space, QptSpace


class ElementTypes:
    """Entity codes, equal to the topological dimension of the entity."""

    VERTEX = 0
    EDGE = 1
    FACE = 2
    VOLUME = 3


def _lagrange_1d(nodes: onp.ndarray, x: onp.ndarray) -> Tuple[onp.ndarray, onp.ndarray]:
    """Evaluate 1-D Lagrange polynomials and derivatives.

    Args:
        nodes (onp.ndarray): Interpolation nodes, shape (n,).
        x (onp.ndarray): Evaluation points, shape (m,).

    Returns:
        Tuple[onp.ndarray, onp.ndarray]: Values and derivatives, shape (m, n).
    """
    n = len(nodes)
    N = onp.ones((len(x), n))
    dN = onp.zeros((len(x), n))
    for k in range(n):
        for m in range(n):
            if m == k:
                continue
            N[:, k] *= (x - nodes[m]) / (nodes[k] - nodes[m])
        for m in range(n):
            if m == k:
                continue
            term = onp.full(len(x), 1.0 / (nodes[k] - nodes[m]))
            for l in range(n):
                if l == k or l == m:
                    continue
                term *= (x - nodes[l]) / (nodes[k] - nodes[l])
            dN[:, k] += term
    return N, dN


def _multi_indices(n: int, dim: int) -> List[Tuple[int, ...]]:
    """Tensor indices (i, j, k) ordered x-fastest."""
    return [idx[::-1] for idx in itertools.product(range(n), repeat=dim)]


def _entity_code(dim: int, entity: int, index: int) -> Tuple[Tuple[int, ...], Tuple[int, ...]]:
    """Return (fixed dims, fixed sides) of an entity of the reference element.

    Entities of dimension ``entity`` are enumerated by their fixed coordinate
    directions in lexicographic order, then by the side (0 or 1) of each fixed
    direction, first direction fastest. For a hexahedron, faces 0..5 are
    x=-1, x=+1, y=-1, y=+1, z=-1, z=+1.
    """
    nfixed = dim - entity
    if nfixed < 0:
        raise ValueError(f"Entity dimension {entity} exceeds element dimension {dim}")
    combos = list(itertools.combinations(range(dim), nfixed))
    nsides = 2**nfixed
    if index < 0 or index >= len(combos) * nsides:
        raise ValueError(f"Entity index {index} out of range for entity dimension {entity}")
    fixed = combos[index // nsides]
    side_index = index % nsides
    sides = tuple((side_index >> i) & 1 for i in range(nfixed))
    return fixed, sides


def _orient_entity(grid: onp.ndarray, orient: int) -> onp.ndarray:
    """Reorder the node grid of an edge (1-D) or face (2-D) entity.

    Edges accept 0 (as is) and 1 (reversed). Faces accept 0..7: bit 0 flips the
    first free direction, bit 1 flips the second, bit 2 transposes.
    """
    if grid.ndim == 1:
        if orient not in (0, 1):
            raise ValueError(f"Edge orientation must be 0 or 1, got {orient}")
        return grid[::-1] if orient else grid
    if grid.ndim == 2:
        if orient < 0 or orient > 7:
            raise ValueError(f"Face orientation must be in [0, 7], got {orient}")
        # grid is indexed [second free dir, first free dir]
        if orient & 1:
            grid = grid[:, ::-1]
        if orient & 2:
            grid = grid[::-1, :]
        if orient & 4:
            grid = grid.T
        return grid
    if orient != 0:
        raise ValueError(f"Entities of dimension {grid.ndim} only accept orientation 0")
    return grid


@dataclasses.dataclass(frozen=True)
class _TensorLagrangeBasis:
    """Shared machinery of the tensor-product Lagrange bases.

    Attributes:
        degree (int): Polynomial degree in each direction.
        ncomp (int): Number of field components.
        dim (int): Spatial dimension.
    """

    degree: int
    ncomp: int = 1
    dim: int = 3

    def nodes_1d(self) -> onp.ndarray:
        raise NotImplementedError

    @property
    def nnodes(self) -> int:
        return (self.degree + 1) ** self.dim

    @property
    def ndof(self) -> int:
        return self.nnodes * self.ncomp

    @functools.cached_property
    def node_points(self) -> onp.ndarray:
        """Reference coordinates of the nodes, shape (nnodes, dim)."""
        x = self.nodes_1d()
        return onp.array([[x[i] for i in idx] for idx in _multi_indices(self.degree + 1, self.dim)])

    def get_dof_point(self, index: int) -> onp.ndarray:
        return self.node_points[index // self.ncomp]

    def shape_functions(self, points: onp.ndarray) -> Tuple[onp.ndarray, onp.ndarray]:
        """Shape functions and reference gradients at ``points``.

        Returns:
            Tuple[onp.ndarray, onp.ndarray]: N with shape (nq, nnodes) and dN with
            shape (nq, nnodes, dim).
        """
        nodes = self.nodes_1d()
        tables = [_lagrange_1d(nodes, points[:, d]) for d in range(self.dim)]
        indices = _multi_indices(self.degree + 1, self.dim)
        nq = points.shape[0]
        N = onp.ones((nq, len(indices)))
        dN = onp.ones((nq, len(indices), self.dim))
        for a, idx in enumerate(indices):
            for d in range(self.dim):
                N[:, a] *= tables[d][0][:, idx[d]]
                for e in range(self.dim):
                    table = tables[d][1] if e == d else tables[d][0]
                    dN[:, a, e] *= table[:, idx[d]]
        return N, dN

    def entity_nodes(self, entity: int, index: int, orient: int = 0) -> List[int]:
        """Local node numbers owned by a reference-element entity."""
        fixed, sides = _entity_code(self.dim, entity, index)
        p = self.degree
        free = [d for d in range(self.dim) if d not in fixed]
        ranges = []
        for d in range(self.dim):
            if d in fixed:
                ranges.append([p * sides[fixed.index(d)]])
            else:
                ranges.append(list(range(1, p)))
        nodes = []
        for idx in itertools.product(*ranges[::-1]):
            idx = idx[::-1]
            nodes.append(sum(i * (p + 1) ** d for d, i in enumerate(idx)))
        if not free:
            if orient != 0:
                raise ValueError("Vertices only accept orientation 0")
            return nodes
        shape = tuple(len(ranges[d]) for d in free[::-1])
        grid = onp.array(nodes, dtype=int).reshape(shape)
        return [int(n) for n in _orient_entity(grid, orient).reshape(-1)]


@dataclasses.dataclass(frozen=True)
class LagrangeH1Basis(_TensorLagrangeBasis):
    """Continuous Lagrange basis with nodes at the Gauss-Lobatto points.

    Produces an ``H1Space`` component (value and gradient). Nodes on the
    element boundary are shared with neighbouring elements.
    """

    def nodes_1d(self) -> onp.ndarray:
        return gauss_lobatto_points(self.degree + 1)[0]

    def space(self) -> H1Space:
        return H1Space.zeros(self.ncomp, self.dim)

    @property
    def ncomp_flat(self) -> int:
        return self.ncomp * (1 + self.dim)

    def interp_matrix(self, points: onp.ndarray) -> onp.ndarray:
        N, dN = self.shape_functions(points)
        C, D = self.ncomp, self.dim
        B = onp.zeros((points.shape[0], self.ncomp_flat, self.ndof))
        for c in range(C):
            cols = onp.arange(self.nnodes) * C + c
            B[:, c, cols] = N
            for d in range(D):
                B[:, C + c * D + d, cols] = dN[:, :, d]
        return B


@dataclasses.dataclass(frozen=True)
class LagrangeL2Basis(_TensorLagrangeBasis):
    """Discontinuous Lagrange basis with nodes at the Gauss points.

    Produces an ``L2Space`` component (value only). All nodes belong to the
    element interior. Degree 0 gives a single constant mode.
    """

    def nodes_1d(self) -> onp.ndarray:
        if self.degree == 0:
            return onp.zeros(1)
        return gauss_points(self.degree + 1)[0]

    def space(self) -> L2Space:
        return L2Space.zeros(self.ncomp, self.dim)

    @property
    def ncomp_flat(self) -> int:
        return self.ncomp

    def interp_matrix(self, points: onp.ndarray) -> onp.ndarray:
        N, _ = self.shape_functions(points)
        B = onp.zeros((points.shape[0], self.ncomp, self.ndof))
        for c in range(self.ncomp):
            B[:, c, onp.arange(self.nnodes) * self.ncomp + c] = N
        return B

    def entity_nodes(self, entity: int, index: int, orient: int = 0) -> List[int]:
        _entity_code(self.dim, entity, index)
        if entity != self.dim:
            return []
        if orient != 0:
            raise ValueError("Interior entities only accept orientation 0")
        return list(range(self.nnodes))


@dataclasses.dataclass(frozen=True)
class QHdivBasis:
    """H(div)-conforming tensor-product basis on the reference hexahedron.

    Component ``d`` of the vector field is a polynomial of degree ``degree`` in
    direction ``d``, on Gauss-Lobatto nodes, and of degree ``degree - 1`` in the
    other directions, on Gauss nodes. Each DOF is the value of one reference
    component at one of its nodes, so the DOFs on the faces normal to ``d`` carry
    the normal flux and are shared with the neighbouring element. Degree 1 is the
    lowest-order Raviart-Thomas element with one DOF per face.

    Produces an ``HdivSpace`` component (vector value and divergence). Component
    blocks are stacked in direction order; inside block ``d`` nodes are numbered
    x-fastest.

    Attributes:
        degree (int): Polynomial degree in the normal direction, at least 1.
        dim (int): Spatial dimension.
    """

    degree: int
    dim: int = 3

    def __post_init__(self):
        if self.degree < 1:
            raise ValueError(f"QHdivBasis needs degree >= 1, got {self.degree}")

    @property
    def ncomp(self) -> int:
        # One scalar DOF per node
        return 1

    @property
    def ncomp_flat(self) -> int:
        return self.dim + 1

    def block_shape(self, d: int) -> Tuple[int, ...]:
        """Number of nodes per direction in the block of component ``d``."""
        return tuple(self.degree + 1 if e == d else self.degree for e in range(self.dim))

    @property
    def block_size(self) -> int:
        return (self.degree + 1) * self.degree ** (self.dim - 1)

    @property
    def ndof(self) -> int:
        return self.dim * self.block_size

    def block_indices(self, d: int) -> List[Tuple[int, ...]]:
        """Tensor indices of the nodes of block ``d``, x-fastest."""
        shape = self.block_shape(d)
        return [idx[::-1] for idx in itertools.product(*[range(n) for n in shape[::-1]])]

    def nodes_1d(self, d: int, e: int) -> onp.ndarray:
        if e == d:
            return gauss_lobatto_points(self.degree + 1)[0]
        return gauss_points(self.degree)[0]

    @functools.cached_property
    def node_points(self) -> onp.ndarray:
        """Reference coordinates of the DOF nodes, shape (ndof, dim)."""
        points = []
        for d in range(self.dim):
            nodes = [self.nodes_1d(d, e) for e in range(self.dim)]
            points.extend([[nodes[e][i] for e, i in enumerate(idx)] for idx in self.block_indices(d)])
        return onp.array(points)

    def get_dof_point(self, index: int) -> onp.ndarray:
        return self.node_points[index]

    def space(self) -> HdivSpace:
        return HdivSpace.zeros(self.dim)

    def interp_matrix(self, points: onp.ndarray) -> onp.ndarray:
        D = self.dim
        B = onp.zeros((points.shape[0], D + 1, self.ndof))
        for d in range(D):
            tables = [_lagrange_1d(self.nodes_1d(d, e), points[:, e]) for e in range(D)]
            start = d * self.block_size
            for a, idx in enumerate(self.block_indices(d)):
                value = onp.ones(points.shape[0])
                div = onp.ones(points.shape[0])
                for e in range(D):
                    N, dN = tables[e]
                    value *= N[:, idx[e]]
                    div *= dN[:, idx[e]] if e == d else N[:, idx[e]]
                B[:, d, start + a] = value
                B[:, D, start + a] = div
        return B

    def entity_nodes(self, entity: int, index: int, orient: int = 0) -> List[int]:
        """Local DOFs owned by a reference-element entity.

        Facets own the normal-flux DOFs of the block normal to them. The
        element interior owns the remaining DOFs of every block. Lower
        dimensional entities own none.
        """
        fixed, sides = _entity_code(self.dim, entity, index)
        p = self.degree
        if entity == self.dim - 1:
            d = fixed[0]
            start = d * self.block_size
            nodes = [start + a for a, idx in enumerate(self.block_indices(d)) if idx[d] == p * sides[0]]
            grid = onp.array(nodes, dtype=int).reshape((p,) * (self.dim - 1))
            return [int(n) for n in _orient_entity(grid, orient).reshape(-1)]
        if entity != self.dim:
            return []
        if orient != 0:
            raise ValueError("Interior entities only accept orientation 0")
        return [
            d * self.block_size + a
            for d in range(self.dim)
            for a, idx in enumerate(self.block_indices(d))
            if 0 < idx[d] < p
        ]


class FEBasis:
    """Element basis composed of one or more sub-bases.

    An ``FEBasis`` with no sub-bases has ``nbasis == 0`` and ``ndof == 0``; the
    assembly engine recognises it when it is composed and never interpolates it.

    Args:
        *bases: Sub-bases (``LagrangeH1Basis``, ``LagrangeL2Basis``,
            ``QHdivBasis``).
    """

    def __init__(self, *bases):
        self.bases = tuple(bases)
        self.nbasis = len(self.bases)
        self._offsets = [0]
        for b in self.bases:
            self._offsets.append(self._offsets[-1] + b.ndof)
        self.ndof = self._offsets[-1]
        self._interp_cache = {}

    def __eq__(self, other):
        return isinstance(other, FEBasis) and self.bases == other.bases

    def __hash__(self):
        return hash(self.bases)

    def __repr__(self):
        return f"FEBasis{self.bases!r}"

    def get_ndof(self, basis: int) -> int:
        return self.bases[basis].ndof

    def get_dof_offset(self, basis: int) -> int:
        return self._offsets[basis]

    @property
    def ncomp(self) -> int:
        """Length of the flattened field-space record."""
        return sum(b.ncomp_flat for b in self.bases)

    def space(self) -> FESpace:
        """Zero field-space record with one component per sub-basis."""
        return FESpace(*[b.space() for b in self.bases])

    def interp_matrix(self, quadrature: GaussQuadrature) -> onp.ndarray:
        """Interpolation operator with shape (num_points, ncomp, ndof).

        Row blocks follow the sub-basis order, which is also the flat ordering
        of ``space()``.
        """
        if quadrature not in self._interp_cache:
            points = quadrature.points
            B = onp.zeros((points.shape[0], self.ncomp, self.ndof))
            row = 0
            for b, sub in enumerate(self.bases):
                col = self._offsets[b]
                B[:, row : row + sub.ncomp_flat, col : col + sub.ndof] = sub.interp_matrix(points)
                row += sub.ncomp_flat
            self._interp_cache[quadrature] = B
        return self._interp_cache[quadrature]

    def interp(self, dof: np.ndarray, quadrature: GaussQuadrature) -> QptSpace:
        """Interpolate element DOFs to every quadrature point.

        Args:
            dof (np.ndarray): Element-local DOF buffer of length ``ndof``.
            quadrature (GaussQuadrature): Quadrature rule.

        Returns:
            QptSpace: Reference-frame records in quadrature-point order.
        """
        B = self.interp_matrix(quadrature)
        flat = np.einsum("qcn,n->qc", B, dof)
        return QptSpace.from_flat(self.space(), flat)

    def add(self, qpts: QptSpace, dof: np.ndarray, quadrature: GaussQuadrature) -> np.ndarray:
        """Accumulate the transpose of ``interp`` applied to ``qpts`` into ``dof``.

        Returns:
            np.ndarray: ``dof`` plus the scattered contributions.
        """
        B = self.interp_matrix(quadrature)
        return dof + np.einsum("qcn,qc->n", B, qpts.flatten())

    def add_outer(
        self, index: int, jac: np.ndarray, elem_mat: np.ndarray, quadrature: GaussQuadrature
    ) -> np.ndarray:
        """Accumulate ``B_j^T jac B_j`` for quadrature point ``index``.

        Args:
            index (int): Quadrature point index.
            jac (np.ndarray): Point-local block (ncomp, ncomp) in the reference
                frame, ``jac[m, k]`` = d(output m) / d(input k).
            elem_mat (np.ndarray): Dense element matrix (ndof, ndof).
            quadrature (GaussQuadrature): Quadrature rule.
        """
        Bj = self.interp_matrix(quadrature)[index]
        return elem_mat + Bj.T @ jac @ Bj

    def get_dof_point(self, index: int) -> onp.ndarray:
        """Reference coordinates of local DOF ``index``."""
        for b, sub in enumerate(self.bases):
            if index < self._offsets[b + 1]:
                return sub.get_dof_point(index - self._offsets[b])
        raise IndexError(f"DOF index {index} out of range for basis with {self.ndof} DOFs")

    def get_entity_dof(self, basis: int, entity: int, index: int, orient: int = 0) -> List[int]:
        """Local DOF indices of sub-basis ``basis`` owned by an entity."""
        sub = self.bases[basis]
        offset = self._offsets[basis]
        return [
            offset + node * sub.ncomp + c
            for node in sub.entity_nodes(entity, index, orient)
            for c in range(sub.ncomp)
        ]

    def set_entity_dof(
        self,
        basis: int,
        entity: int,
        index: int,
        orient: int,
        vals: Sequence[float],
        dof: np.ndarray,
    ) -> np.ndarray:
        """Impose ``vals`` on the DOFs of one entity of sub-basis ``basis``.

        Args:
            basis (int): Sub-basis index.
            entity (int): Entity code from ``ElementTypes``.
            index (int): Entity index within the reference element.
            orient (int): Orientation code of the entity.
            vals (Sequence[float]): One value per entity DOF, node-major.
            dof (np.ndarray): Element-local DOF buffer.

        Returns:
            np.ndarray: Updated DOF buffer.
        """
        inds = self.get_entity_dof(basis, entity, index, orient)
        return dof.at[np.array(inds, dtype=np.int32)].set(np.asarray(vals))
