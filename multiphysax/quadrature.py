"""Tensor-product quadrature rules on the reference element [-1, 1]^dim.

Rules are immutable and hashable, so basis tables evaluated at their points can
be cached per (basis, quadrature) pair.

Point ordering is x-fastest: point (i, j, k) has index ``i + j*n + k*n*n``.
"""

import dataclasses
import functools
import itertools
from typing import Tuple

import numpy as onp


def gauss_points(npts: int) -> Tuple[onp.ndarray, onp.ndarray]:
    """1-D Gauss-Legendre points and weights on [-1, 1]."""
    return onp.polynomial.legendre.leggauss(npts)


def gauss_lobatto_points(npts: int) -> Tuple[onp.ndarray, onp.ndarray]:
    """1-D Gauss-Lobatto-Legendre points and weights on [-1, 1].

    Args:
        npts (int): Number of points, at least 2.

    Returns:
        Tuple[onp.ndarray, onp.ndarray]: Points in increasing order and weights.
    """
    if npts < 2:
        raise ValueError("Gauss-Lobatto rules need at least 2 points")
    n = npts - 1
    legendre = onp.polynomial.legendre.Legendre.basis(n)
    interior = onp.sort(onp.real(legendre.deriv().roots()))
    points = onp.concatenate([[-1.0], interior, [1.0]])
    weights = 2.0 / (n * (n + 1) * legendre(points) ** 2)
    return points, weights


def _tensor_product(points_1d, weights_1d, dim):
    pts = []
    wts = []
    # itertools.product varies the last index fastest, so reverse for x-fastest
    for idx in itertools.product(range(len(points_1d)), repeat=dim):
        idx = idx[::-1]
        pts.append([points_1d[i] for i in idx])
        wts.append(onp.prod([weights_1d[i] for i in idx]))
    return onp.array(pts), onp.array(wts)


@dataclasses.dataclass(frozen=True)
class GaussQuadrature:
    """Tensor-product Gauss-Legendre rule.

    Attributes:
        npts (int): Number of points per coordinate direction.
        dim (int): Spatial dimension. Defaults to 3 (hexahedra).
    """

    npts: int
    dim: int = 3

    def _rule_1d(self):
        return gauss_points(self.npts)

    @functools.cached_property
    def _rule(self):
        return _tensor_product(*self._rule_1d(), self.dim)

    @property
    def points(self) -> onp.ndarray:
        """Reference coordinates with shape (num_points, dim)."""
        return self._rule[0]

    @property
    def weights(self) -> onp.ndarray:
        return self._rule[1]

    def get_num_points(self) -> int:
        return self.npts**self.dim

    def get_point(self, index: int) -> onp.ndarray:
        return self.points[index]

    def get_weight(self, index: int) -> float:
        return float(self.weights[index])


@dataclasses.dataclass(frozen=True)
class GaussLobattoQuadrature(GaussQuadrature):
    """Tensor-product Gauss-Lobatto rule, includes the element corners."""

    def _rule_1d(self):
        return gauss_lobatto_points(self.npts)


class HexGaussQuadrature(GaussQuadrature):
    """Gauss-Legendre rule on the reference hexahedron."""

    def __init__(self, npts: int):
        super().__init__(npts, 3)


class QuadGaussQuadrature(GaussQuadrature):
    """Gauss-Legendre rule on the reference quadrilateral."""

    def __init__(self, npts: int):
        super().__init__(npts, 2)
