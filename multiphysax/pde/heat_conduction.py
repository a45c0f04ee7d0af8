"""Steady heat conduction with temperature-dependent material properties."""

from multiphysax.pde.base import PDE
from multiphysax.spaces import FESpace, H1Space, HdivSpace, L2Space


class HeatConduction(PDE):
    """Nonlinear heat conduction ``-div(k(T) grad(T)) = q``.

    The conductivity is ``k(T) = kappa * (1 + beta * T**2)`` where ``kappa`` is a
    point-wise data field and ``beta`` a constant.

    Args:
        dim (int): Spatial dimension.
        beta (float): Temperature sensitivity of the conductivity.
        source (float): Constant heat source ``q``.
    """

    def __init__(self, dim: int = 3, beta: float = 1.0, source: float = 0.0):
        super().__init__(dim)
        self.beta = beta
        self.source = source

    @property
    def data_space(self) -> FESpace:
        return FESpace(L2Space.zeros(1, self.dim))

    @property
    def sol_space(self) -> FESpace:
        return FESpace(H1Space.zeros(1, self.dim))

    def weak(self, wdetJ, data, geo, s):
        kappa = data.get(0).value
        T = s.get(0)
        k = kappa * (1.0 + self.beta * T.value**2)
        return FESpace(H1Space(-wdetJ * self.source + 0.0 * T.value, wdetJ * k * T.grad))

    class JacVecProduct:
        """Closed-form derivative of the heat flux.

        ``d(k grad T)[p] = kappa ((1 + beta T^2) grad p + 2 beta T p grad T)``
        """

        def __init__(self, pde, wdetJ, data, geo, s):
            self.wdetJ = wdetJ
            self.beta = pde.beta
            self.kappa = data.get(0).value
            self.T = s.get(0)

        def apply(self, p):
            dT = p.get(0)
            T = self.T
            flux = self.kappa * (
                (1.0 + self.beta * T.value**2) * dT.grad + 2.0 * self.beta * T.value * dT.value * T.grad
            )
            return FESpace(H1Space(0.0 * dT.value, self.wdetJ * flux))

        def __call__(self, p):
            return self.apply(p)


class MixedHeatConduction(PDE):
    """Heat conduction in mixed form with an H(div) flux and an L2 temperature.

    Fourier's law is written with the thermal resistivity
    ``r(T) = rho * (1 + beta * T**2)``, the inverse of the conductivity, as
    ``r(T) q = -grad(T)``. Together with energy balance ``div(q) = f`` this gives

        int r(T) q . tau - T div(tau) dx = 0
        int (div(q) - f) v dx = 0

    The resistivity scale ``rho`` is a point-wise data field.

    Args:
        dim (int): Spatial dimension.
        beta (float): Temperature sensitivity of the resistivity.
        source (float): Constant heat source ``f``.
    """

    def __init__(self, dim: int = 3, beta: float = 1.0, source: float = 0.0):
        super().__init__(dim)
        self.beta = beta
        self.source = source

    @property
    def data_space(self) -> FESpace:
        return FESpace(L2Space.zeros(1, self.dim))

    @property
    def sol_space(self) -> FESpace:
        return FESpace(HdivSpace.zeros(self.dim), L2Space.zeros(1, self.dim))

    def weak(self, wdetJ, data, geo, s):
        rho = data.get(0).value
        q = s.get(0)
        T = s.get(1)
        r = rho * (1.0 + self.beta * T.value**2)
        return FESpace(
            HdivSpace(wdetJ * r * q.value, -wdetJ * T.value),
            L2Space(wdetJ * (q.div - self.source)),
        )

    class JacVecProduct:
        """``d(r q)[dq, dT] = rho ((1 + beta T^2) dq + 2 beta T dT q)``"""

        def __init__(self, pde, wdetJ, data, geo, s):
            self.wdetJ = wdetJ
            self.beta = pde.beta
            self.rho = data.get(0).value
            self.q = s.get(0)
            self.T = s.get(1)

        def apply(self, p):
            dq = p.get(0)
            dT = p.get(1)
            T = self.T.value
            flux = self.rho * ((1.0 + self.beta * T**2) * dq.value + 2.0 * self.beta * T * dT.value * self.q.value)
            return FESpace(
                HdivSpace(self.wdetJ * flux, -self.wdetJ * dT.value),
                L2Space(self.wdetJ * dq.div),
            )

        def __call__(self, p):
            return self.apply(p)
