"""Compressible Neo-Hookean elasticity."""

import jax.numpy as np

from multiphysax.pde.base import PDE
from multiphysax.spaces import FESpace, H1Space, L2Space


class NonlinearElasticity(PDE):
    """Compressible Neo-Hookean solid in the reference configuration.

    First Piola-Kirchhoff stress with ``F = I + grad(u)`` and ``J = det(F)``:

        P = mu (F - F^-T) + lambda ln(J) F^-T

    The Lame parameters ``mu`` and ``lambda`` are point-wise data fields. The
    Jacobian-vector product is obtained by linearizing ``weak``.
    """

    @property
    def data_space(self) -> FESpace:
        return FESpace(L2Space.zeros(1, self.dim), L2Space.zeros(1, self.dim))

    @property
    def sol_space(self) -> FESpace:
        return FESpace(H1Space.zeros(self.dim, self.dim))

    def first_piola_kirchhoff(self, mu, lmbda, u_grad):
        F = u_grad + np.eye(self.dim)
        J = np.linalg.det(F)
        F_inv_T = np.linalg.inv(F).T
        return mu * (F - F_inv_T) + lmbda * np.log(J) * F_inv_T

    def weak(self, wdetJ, data, geo, s):
        mu = data.get(0).value
        lmbda = data.get(1).value
        u = s.get(0)
        P = self.first_piola_kirchhoff(mu, lmbda, u.grad)
        return FESpace(H1Space(np.zeros_like(u.value), wdetJ * P))
