"""Poisson problems in primal and mixed form."""

from multiphysax.pde.base import PDE
from multiphysax.spaces import FESpace, H1Space, HdivSpace, L2Space


class Poisson(PDE):
    """Primal Poisson problem ``-lap(u) = f`` with a constant source.

    Weak form: ``int grad(u) . grad(v) - f v dx``.

    Args:
        dim (int): Spatial dimension.
        source (float): Constant source term ``f``.
    """

    def __init__(self, dim: int = 3, source: float = 1.0):
        super().__init__(dim)
        self.source = source

    @property
    def sol_space(self) -> FESpace:
        return FESpace(H1Space.zeros(1, self.dim))

    def weak(self, wdetJ, data, geo, s):
        u = s.get(0)
        return FESpace(H1Space(-wdetJ * self.source + 0.0 * u.value, wdetJ * u.grad))

    class JacVecProduct:
        def __init__(self, pde, wdetJ, data, geo, s):
            self.wdetJ = wdetJ

        def apply(self, p):
            u = p.get(0)
            return FESpace(H1Space(0.0 * u.value, self.wdetJ * u.grad))

        def __call__(self, p):
            return self.apply(p)


class MixedPoisson(PDE):
    """Mixed Poisson problem with an H(div) flux and an L2 potential.

    Solves ``sigma = grad(u)``, ``div(sigma) + f = 0`` through

        int sigma . tau + u div(tau) dx = 0
        int (div(sigma) + f) v dx = 0

    Args:
        dim (int): Spatial dimension.
        source (float): Constant source term ``f``.
    """

    def __init__(self, dim: int = 3, source: float = 1.0):
        super().__init__(dim)
        self.source = source

    @property
    def sol_space(self) -> FESpace:
        return FESpace(HdivSpace.zeros(self.dim), L2Space.zeros(1, self.dim))

    def weak(self, wdetJ, data, geo, s):
        sigma = s.get(0)
        u = s.get(1)
        return FESpace(
            HdivSpace(wdetJ * sigma.value, wdetJ * u.value),
            L2Space(wdetJ * (sigma.div + self.source)),
        )

    class JacVecProduct:
        def __init__(self, pde, wdetJ, data, geo, s):
            self.wdetJ = wdetJ

        def apply(self, p):
            sigma = p.get(0)
            u = p.get(1)
            return FESpace(
                HdivSpace(self.wdetJ * sigma.value, self.wdetJ * u.value),
                L2Space(self.wdetJ * sigma.div),
            )

        def __call__(self, p):
            return self.apply(p)
