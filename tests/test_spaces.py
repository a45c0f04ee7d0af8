"""
Tests for field-space records and their reference/physical transforms.
"""
import pytest
import jax
import jax.numpy as jnp

from multiphysax import FESpace, H1Space, HcurlSpace, HdivSpace, L2Space, QptSpace, TransformKind

pytestmark = pytest.mark.spaces


def random_jacobian(key, dim=3):
    return jnp.eye(dim) + 0.3 * jax.random.uniform(key, (dim, dim), minval=-1.0, maxval=1.0)


def rotation(theta):
    c, s = jnp.cos(theta), jnp.sin(theta)
    return jnp.array([[c, -s, 0.0], [s, c, 0.0], [0.0, 0.0, 1.0]])


def random_like(key, space):
    return space.unflatten(jax.random.normal(key, (space.ncomp,)))


def all_spaces(dim=3):
    return FESpace(
        H1Space.zeros(1, dim),
        H1Space.zeros(dim, dim),
        L2Space.zeros(2, dim),
        HdivSpace.zeros(dim),
        HcurlSpace.zeros(dim),
    )


class TestFESpaceLayout:
    """Flat ordering and bookkeeping of field-space records."""

    def test_transform_kinds(self):
        assert H1Space.kind == TransformKind.H1
        assert L2Space.kind == TransformKind.L2
        assert HdivSpace.kind == TransformKind.HDIV
        assert HcurlSpace.kind == TransformKind.HCURL

    def test_ncomp(self):
        assert FESpace(H1Space.zeros(1, 3)).ncomp == 4
        assert FESpace(H1Space.zeros(3, 3)).ncomp == 12
        assert FESpace(HdivSpace.zeros(3), L2Space.zeros(1, 3)).ncomp == 5
        assert FESpace(HcurlSpace.zeros(2)).ncomp == 3
        assert FESpace().ncomp == 0

    def test_flatten_value_before_gradient(self):
        s = FESpace(H1Space(jnp.array(1.0), jnp.array([2.0, 3.0, 4.0])), L2Space(jnp.array(5.0)))
        assert jnp.array_equal(s.flatten(), jnp.array([1.0, 2.0, 3.0, 4.0, 5.0]))

    def test_unflatten_restores_structure(self):
        template = all_spaces()
        flat = jnp.arange(template.ncomp, dtype=jnp.float64)
        s = template.unflatten(flat)
        assert s.get(1).grad.shape == (3, 3)
        assert jnp.array_equal(s.flatten(), flat)

    def test_empty_space(self):
        s = FESpace()
        assert len(s) == 0
        assert s.flatten().shape == (0,)
        assert len(s.unflatten(jnp.zeros(0))) == 0

    def test_zero(self):
        s = random_like(jax.random.PRNGKey(0), all_spaces())
        assert jnp.all(s.zero().flatten() == 0.0)

    def test_qpt_space_from_flat(self):
        template = FESpace(H1Space.zeros(1, 3))
        flat = jnp.arange(8.0).reshape(2, 4)
        qpts = QptSpace.from_flat(template, flat)
        assert qpts.get_num_points() == 2
        assert jnp.array_equal(qpts.get(1).get(0).grad, jnp.array([5.0, 6.0, 7.0]))
        assert jnp.array_equal(qpts.flatten(), flat)


class TestTransforms:
    """rtransform is the adjoint of transform."""

    @pytest.mark.parametrize("seed", range(5))
    def test_dot_product_identity(self, seed):
        key_J, key_a, key_b = jax.random.split(jax.random.PRNGKey(seed), 3)
        J = random_jacobian(key_J)
        detJ, Jinv = jnp.linalg.det(J), jnp.linalg.inv(J)
        a = random_like(key_a, all_spaces())
        b = random_like(key_b, all_spaces())

        lhs = jnp.dot(a.transform(detJ, J, Jinv).flatten(), b.flatten())
        rhs = jnp.dot(a.flatten(), b.rtransform(detJ, J, Jinv).flatten())
        assert jnp.allclose(lhs, rhs, rtol=1e-12, atol=1e-12), f"{lhs} != {rhs}"

    def test_dot_product_identity_2d(self):
        key_J, key_a, key_b = jax.random.split(jax.random.PRNGKey(7), 3)
        J = random_jacobian(key_J, dim=2)
        detJ, Jinv = jnp.linalg.det(J), jnp.linalg.inv(J)
        a = random_like(key_a, all_spaces(2))
        b = random_like(key_b, all_spaces(2))

        lhs = jnp.dot(a.transform(detJ, J, Jinv).flatten(), b.flatten())
        rhs = jnp.dot(a.flatten(), b.rtransform(detJ, J, Jinv).flatten())
        assert jnp.allclose(lhs, rhs, rtol=1e-12, atol=1e-12)

    @pytest.mark.parametrize("theta", [0.0, 0.3, 1.7])
    def test_round_trip_for_rotations(self, theta):
        J = rotation(theta)
        detJ, Jinv = jnp.linalg.det(J), jnp.linalg.inv(J)
        a = random_like(jax.random.PRNGKey(1), all_spaces())
        back = a.transform(detJ, J, Jinv).rtransform(detJ, J, Jinv)
        assert jnp.allclose(back.flatten(), a.flatten(), atol=1e-13)

    def test_h1_gradient_pullback(self):
        J = jnp.diag(jnp.array([2.0, 4.0, 0.5]))
        detJ, Jinv = jnp.linalg.det(J), jnp.linalg.inv(J)
        u = H1Space(jnp.array(3.0), jnp.array([1.0, 1.0, 1.0]))
        v = u.transform(detJ, J, Jinv)
        assert v.value == 3.0
        assert jnp.allclose(v.grad, jnp.array([0.5, 0.25, 2.0]))

    def test_hdiv_piola(self):
        J = jnp.diag(jnp.array([2.0, 1.0, 1.0]))
        detJ, Jinv = jnp.linalg.det(J), jnp.linalg.inv(J)
        sigma = HdivSpace(jnp.array([1.0, 1.0, 1.0]), jnp.array(4.0)).transform(detJ, J, Jinv)
        assert jnp.allclose(sigma.value, jnp.array([1.0, 0.5, 0.5]))
        assert jnp.allclose(sigma.div, 2.0)

    def test_l2_identity(self):
        J = random_jacobian(jax.random.PRNGKey(2))
        detJ, Jinv = jnp.linalg.det(J), jnp.linalg.inv(J)
        q = L2Space(jnp.array([1.0, -2.0]))
        assert jnp.array_equal(q.transform(detJ, J, Jinv).value, q.value)
        assert jnp.array_equal(q.rtransform(detJ, J, Jinv).value, q.value)
