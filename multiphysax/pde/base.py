"""Weak-form contract consumed by the assembly engine.

A PDE describes its integrand point-wise. At one quadrature point the engine
hands it the interpolated data and geometry records together with the
solution record mapped to the physical frame, and receives the coefficients
that multiply each test-function component (value, gradient, divergence or
curl), already scaled by the quadrature weight times the Jacobian determinant.

The Jacobian-vector product is provided by a nested ``JacVecProduct`` class. The
default linearizes ``weak`` with ``jax.linearize`` at construction, so the
state is fixed and ``apply`` is exactly linear in its argument. Physics modules
with a cheap closed-form derivative override it.
"""

import abc

import jax

from multiphysax.spaces import FESpace, H1Space


class LinearizedJacVecProduct:
    """Derivative of ``pde.weak`` with respect to the solution at a fixed state.

    Args:
        pde (PDE): Weak form to differentiate.
        wdetJ (float): Quadrature weight times Jacobian determinant.
        data (FESpace): Interpolated data record.
        geo (FESpace): Interpolated geometry record.
        s (FESpace): Linearization state in the physical frame.
    """

    def __init__(self, pde, wdetJ, data: FESpace, geo: FESpace, s: FESpace):
        _, self._linear_fn = jax.linearize(lambda state: pde.weak(wdetJ, data, geo, state), s)

    def apply(self, p: FESpace) -> FESpace:
        return self._linear_fn(p)

    def __call__(self, p: FESpace) -> FESpace:
        return self.apply(p)


class PDE(abc.ABC):
    """Base class of point-wise weak forms.

    Subclasses define ``data_space`` and ``sol_space`` and implement ``weak``.
    The geometry space defaults to a vector H1 field with one component per
    spatial dimension, whose gradient is the Jacobian of the element map.

    Instances compare and hash by type and instance attributes. The assembly
    engine passes the PDE as a static argument to its jitted kernels, so
    changing a parameter selects a freshly traced kernel. Attributes must
    therefore be hashable Python values such as numbers, strings or tuples.

    Attributes:
        dim (int): Spatial dimension.
        JacVecProduct (type): Class built as
            ``JacVecProduct(pde, wdetJ, data, geo, s)`` with ``apply(p)``.
    """

    JacVecProduct = LinearizedJacVecProduct

    def __init__(self, dim: int = 3):
        self.dim = dim

    def _parameters(self) -> tuple:
        return tuple(sorted(vars(self).items()))

    def __eq__(self, other):
        return type(self) is type(other) and self._parameters() == other._parameters()

    def __hash__(self):
        return hash((type(self), self._parameters()))

    @property
    def data_space(self) -> FESpace:
        return FESpace()

    @property
    def geo_space(self) -> FESpace:
        return FESpace(H1Space.zeros(self.dim, self.dim))

    @property
    @abc.abstractmethod
    def sol_space(self) -> FESpace:
        """Template of the solution record."""

    @abc.abstractmethod
    def weak(self, wdetJ, data: FESpace, geo: FESpace, s: FESpace) -> FESpace:
        """Evaluate the weak-form coefficients at one point.

        Args:
            wdetJ (float): Quadrature weight times Jacobian determinant.
            data (FESpace): Interpolated data record.
            geo (FESpace): Interpolated geometry record; its gradient is the
                Jacobian of the element map.
            s (FESpace): Solution record, physical frame.

        Returns:
            FESpace: Coefficients with the structure of ``sol_space``.
        """
