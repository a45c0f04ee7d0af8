"""Dirichlet boundary conditions on assembled systems.

Boundary conditions are resolved once into a set of global DOF indices and
prescribed values. They are then applied to an assembled residual or linear
system by row/column elimination.

Key Classes:
    DirichletBC: Dirichlet boundary condition specification
    BoundaryCondition: Resolved DOF indices and values

Example:
    >>> bc = DirichletBC(
    ...     subdomain=lambda x: np.isclose(x[0], 0.0),  # left boundary
    ...     vec=0,
    ...     eval=lambda x: 0.0,
    ... )
    >>> bcs = BoundaryCondition.from_dirichlet(mesh, [bc], box_element_map((4, 4, 4)))
    >>> A_bc, b_bc = bcs.apply(A, b)
"""

from dataclasses import dataclass
from typing import Callable, List, Optional, Tuple

import numpy as onp
import jax.numpy as np
from jax.experimental.sparse import BCOO

from multiphysax import logger
from multiphysax.mesh import ElementMesh
from multiphysax.sparse import zero_rows


@dataclass
class DirichletBC:
    """Dirichlet boundary condition specification.

    Attributes:
        subdomain (Callable): ``subdomain(x) -> bool`` selects the constrained
            DOF locations by physical coordinates.
        vec (int): Component index of the constrained field.
        eval (Callable): ``eval(x) -> float`` prescribed value.
        basis (int): Sub-basis the condition applies to. Defaults to 0.
    """

    subdomain: Callable[[onp.ndarray], bool]
    vec: int
    eval: Callable[[onp.ndarray], float]
    basis: int = 0


def validate_dirichlet_bcs(bcs: Optional[List[DirichletBC]], mesh: ElementMesh) -> None:
    """Check that every condition names an existing sub-basis and component.

    Raises:
        ValueError: On an out-of-range sub-basis or component index.
    """
    if bcs is None:
        return
    for i, bc in enumerate(bcs):
        if not callable(bc.subdomain):
            raise ValueError(f"Boundary condition {i}: subdomain must be callable")
        if not callable(bc.eval):
            raise ValueError(f"Boundary condition {i}: eval must be callable")
        if not 0 <= bc.basis < mesh.basis.nbasis:
            raise ValueError(f"Boundary condition {i}: sub-basis {bc.basis} does not exist")
        ncomp = mesh.basis.bases[bc.basis].ncomp
        if not 0 <= bc.vec < ncomp:
            raise ValueError(f"Boundary condition {i}: component {bc.vec} out of range [0, {ncomp})")


class BoundaryCondition:
    """Global DOF indices with prescribed values.

    Args:
        indices (np.ndarray): Constrained global DOF indices, unique.
        values (np.ndarray): Prescribed values, same length.
    """

    def __init__(self, indices, values):
        self.indices = np.asarray(indices, dtype=np.int64)
        self.values = np.asarray(values, dtype=np.float64)

    @classmethod
    def from_dirichlet(
        cls, mesh: ElementMesh, bcs: List[DirichletBC], element_map: Callable
    ) -> "BoundaryCondition":
        """Resolve Dirichlet conditions against a mesh.

        Every local DOF of every element is located in physical space with
        ``element_map(elem, xi)``; DOFs shared between elements are resolved once.

        Args:
            mesh (ElementMesh): Connectivity of the constrained solution basis.
            bcs (List[DirichletBC]): Conditions to resolve.
            element_map (Callable): Reference-to-physical map.

        Returns:
            BoundaryCondition: Resolved conditions, later entries win on overlap.
        """
        validate_dirichlet_bcs(bcs, mesh)
        basis = mesh.basis
        prescribed = {}
        for bc in bcs:
            sub = basis.bases[bc.basis]
            offset = basis.get_dof_offset(bc.basis)
            local = range(offset + bc.vec, offset + sub.ndof, sub.ncomp)
            for e in range(mesh.get_num_elements()):
                for i in local:
                    x = element_map(e, basis.get_dof_point(i))
                    if bc.subdomain(x):
                        prescribed[int(mesh.element_dof[e, i])] = float(bc.eval(x))

        indices = sorted(prescribed)
        logger.debug(f"Resolved {len(indices)} Dirichlet DOFs from {len(bcs)} conditions")
        return cls(indices, [prescribed[i] for i in indices])

    def __len__(self) -> int:
        return int(self.indices.shape[0])

    def apply(self, A: BCOO, b: np.ndarray) -> Tuple[BCOO, np.ndarray]:
        """Row/column elimination on an assembled linear system.

        The columns of the constrained DOFs are moved to the right-hand side
        before they are zeroed, so the free DOFs of the reduced system see the
        prescribed values and the system stays symmetric when ``A`` is.

        Returns:
            Tuple[BCOO, np.ndarray]: ``A`` with constrained rows and columns
            replaced by identity rows and ``b`` with the column contributions
            removed and the prescribed values on the constrained entries.
        """
        if len(self) == 0:
            return A, b
        prescribed = np.zeros(A.shape[1], dtype=self.values.dtype).at[self.indices].set(self.values)
        b = b - A @ prescribed
        return zero_rows(A, self.indices), b.at[self.indices].set(self.values)

    def apply_residual(self, res: np.ndarray, sol: np.ndarray, scale: float = 1.0) -> np.ndarray:
        """Replace constrained residual entries by ``sol - scale * value``."""
        if len(self) == 0:
            return res
        return res.at[self.indices].set(sol[self.indices] - scale * self.values)

    def assign(self, sol: np.ndarray, scale: float = 1.0) -> np.ndarray:
        """Write the prescribed values into a solution array."""
        if len(self) == 0:
            return sol
        return sol.at[self.indices].set(scale * self.values)
