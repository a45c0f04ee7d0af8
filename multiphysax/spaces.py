"""Field spaces for point-wise weak-form evaluation.

This module defines the records that the assembly engine hands to a weak form at
one quadrature point, together with the affine maps between the reference
element and the physical element.

A field space is a tuple of typed components. Each component stores a value and,
depending on its kind, a derivative (gradient, divergence or curl). The kind is a
static property of the component class, so the transform applied to a component
is fixed when the space is composed and never inspected at run time.

Key Classes:
    TransformKind: Tag describing how a component maps between frames
    H1Space: Value + gradient (scalar or vector valued)
    L2Space: Value only
    HdivSpace: Vector value + divergence, contravariant Piola map
    HcurlSpace: Vector value + curl, covariant Piola map
    FESpace: Ordered tuple of components
    QptSpace: One FESpace record per quadrature point

Example:
    >>> u = H1Space.zeros(ncomp=1, dim=3)
    >>> s = FESpace(u)
    >>> s_phys = s.transform(detJ, J, Jinv)
    >>> coef_ref = coef.rtransform(detJ, J, Jinv)
"""

import dataclasses
import enum
from typing import Any, Tuple

import jax
import jax.numpy as np
import jax.flatten_util


class TransformKind(enum.Enum):
    """Mapping between reference and physical frames for a field component."""

    H1 = "H1"
    L2 = "L2"
    HDIV = "Hdiv"
    HCURL = "Hcurl"


def _value_shape(ncomp: int) -> Tuple[int, ...]:
    return () if ncomp == 1 else (ncomp,)


@jax.tree_util.register_pytree_node_class
@dataclasses.dataclass
class H1Space:
    """H1-conforming component with value and gradient.

    Attributes:
        value (np.ndarray): Shape () for a scalar or (ncomp,) for a vector field.
        grad (np.ndarray): Shape (dim,) or (ncomp, dim).
    """

    value: Any
    grad: Any

    kind = TransformKind.H1

    @classmethod
    def zeros(cls, ncomp: int, dim: int) -> "H1Space":
        shape = _value_shape(ncomp)
        return cls(np.zeros(shape), np.zeros(shape + (dim,)))

    def transform(self, detJ, J, Jinv) -> "H1Space":
        # Gradient pullback: du/dx = du/dxi . dxi/dx
        return H1Space(self.value, self.grad @ Jinv)

    def rtransform(self, detJ, J, Jinv) -> "H1Space":
        return H1Space(self.value, self.grad @ Jinv.T)

    def tree_flatten(self):
        return (self.value, self.grad), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)


@jax.tree_util.register_pytree_node_class
@dataclasses.dataclass
class L2Space:
    """L2 component carrying only a value, identical in both frames."""

    value: Any

    kind = TransformKind.L2

    @classmethod
    def zeros(cls, ncomp: int, dim: int) -> "L2Space":
        return cls(np.zeros(_value_shape(ncomp)))

    def transform(self, detJ, J, Jinv) -> "L2Space":
        return L2Space(self.value)

    def rtransform(self, detJ, J, Jinv) -> "L2Space":
        return L2Space(self.value)

    def tree_flatten(self):
        return (self.value,), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)


@jax.tree_util.register_pytree_node_class
@dataclasses.dataclass
class HdivSpace:
    """H(div)-conforming component mapped with the contravariant Piola transform.

    Attributes:
        value (np.ndarray): Vector value with shape (dim,).
        div (np.ndarray): Scalar divergence.
    """

    value: Any
    div: Any

    kind = TransformKind.HDIV

    @classmethod
    def zeros(cls, dim: int) -> "HdivSpace":
        return cls(np.zeros((dim,)), np.zeros(()))

    def transform(self, detJ, J, Jinv) -> "HdivSpace":
        return HdivSpace(J @ self.value / detJ, self.div / detJ)

    def rtransform(self, detJ, J, Jinv) -> "HdivSpace":
        return HdivSpace(J.T @ self.value / detJ, self.div / detJ)

    def tree_flatten(self):
        return (self.value, self.div), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)


@jax.tree_util.register_pytree_node_class
@dataclasses.dataclass
class HcurlSpace:
    """H(curl)-conforming component mapped with the covariant Piola transform.

    In two dimensions the curl is a scalar, in three dimensions a vector.
    """

    value: Any
    curl: Any

    kind = TransformKind.HCURL

    @classmethod
    def zeros(cls, dim: int) -> "HcurlSpace":
        curl_shape = (dim,) if dim == 3 else ()
        return cls(np.zeros((dim,)), np.zeros(curl_shape))

    def transform(self, detJ, J, Jinv) -> "HcurlSpace":
        if self.curl.ndim == 0:
            curl = self.curl / detJ
        else:
            curl = J @ self.curl / detJ
        return HcurlSpace(Jinv.T @ self.value, curl)

    def rtransform(self, detJ, J, Jinv) -> "HcurlSpace":
        if self.curl.ndim == 0:
            curl = self.curl / detJ
        else:
            curl = J.T @ self.curl / detJ
        return HcurlSpace(Jinv @ self.value, curl)

    def tree_flatten(self):
        return (self.value, self.curl), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)


@jax.tree_util.register_pytree_node_class
class FESpace:
    """Ordered tuple of field components at a single point.

    The flat ordering used by ``flatten``/``unflatten`` follows the component
    order and, inside each component, the field order (value first, then the
    derivative), each in C order. Bases build their interpolation operators in
    the same ordering.

    Args:
        *components: Component records (H1Space, L2Space, HdivSpace, HcurlSpace).
    """

    def __init__(self, *components):
        self.components = tuple(components)

    def get(self, index: int):
        """Return component ``index``."""
        return self.components[index]

    def __len__(self) -> int:
        return len(self.components)

    @property
    def ncomp(self) -> int:
        """Total number of scalar entries in the record."""
        return sum(int(np.size(leaf)) for leaf in jax.tree_util.tree_leaves(self))

    def zero(self) -> "FESpace":
        return jax.tree_util.tree_map(np.zeros_like, self)

    def transform(self, detJ, J, Jinv) -> "FESpace":
        """Map a reference-element record to the physical element."""
        return FESpace(*[c.transform(detJ, J, Jinv) for c in self.components])

    def rtransform(self, detJ, J, Jinv) -> "FESpace":
        """Apply the adjoint of ``transform``.

        Used to pull weak-form coefficients computed in the physical element back
        to the reference element before they are scattered by the basis.
        """
        return FESpace(*[c.rtransform(detJ, J, Jinv) for c in self.components])

    def flatten(self) -> np.ndarray:
        """Return the record as a 1-D array of length ``ncomp``."""
        if len(self.components) == 0:
            return np.zeros((0,))
        return jax.flatten_util.ravel_pytree(self)[0]

    def unflatten(self, flat: np.ndarray) -> "FESpace":
        """Build a record with this record's structure from a flat array."""
        if len(self.components) == 0:
            return FESpace()
        _, unflatten_fn = jax.flatten_util.ravel_pytree(self)
        return unflatten_fn(flat)

    def tree_flatten(self):
        return self.components, None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)

    def __repr__(self) -> str:
        return f"FESpace({', '.join(repr(c) for c in self.components)})"


@jax.tree_util.register_pytree_node_class
class QptSpace:
    """Field-space records at every quadrature point of one element.

    The wrapped ``FESpace`` holds arrays with a leading quadrature-point axis,
    so the whole container can be passed through ``jax.vmap``.

    Args:
        space (FESpace): Batched record with leading axis of length num_points.
    """

    def __init__(self, space: FESpace):
        self.space = space

    @classmethod
    def from_flat(cls, template: FESpace, flat: np.ndarray) -> "QptSpace":
        """Build from a (num_points, ncomp) array using ``template``'s layout."""
        return cls(jax.vmap(template.unflatten)(flat))

    def get_num_points(self) -> int:
        leaves = jax.tree_util.tree_leaves(self.space)
        return leaves[0].shape[0] if leaves else 0

    def get(self, index: int) -> FESpace:
        return jax.tree_util.tree_map(lambda x: x[index], self.space)

    def flatten(self) -> np.ndarray:
        """Return a (num_points, ncomp) array."""
        return jax.vmap(lambda s: s.flatten())(self.space)

    def tree_flatten(self):
        return (self.space,), None

    @classmethod
    def tree_unflatten(cls, aux_data, children):
        return cls(*children)
