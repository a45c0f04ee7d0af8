"""
Tests for quadrature rules and the tensor-product Lagrange and H(div) bases.
"""
import pytest
import numpy as onp
import jax
import jax.numpy as jnp

from multiphysax import (
    ElementTypes,
    FEBasis,
    GaussLobattoQuadrature,
    GaussQuadrature,
    HexGaussQuadrature,
    LagrangeH1Basis,
    LagrangeL2Basis,
    QHdivBasis,
    QptSpace,
    QuadGaussQuadrature,
)
from multiphysax.quadrature import gauss_lobatto_points

pytestmark = pytest.mark.basis


class TestQuadrature:
    """Gauss and Gauss-Lobatto tensor-product rules."""

    def test_gauss_lobatto_three_points(self):
        points, weights = gauss_lobatto_points(3)
        assert onp.allclose(points, [-1.0, 0.0, 1.0])
        assert onp.allclose(weights, [1.0 / 3.0, 4.0 / 3.0, 1.0 / 3.0])

    def test_gauss_lobatto_exactness(self):
        # n points integrate polynomials of degree 2n - 3 exactly
        points, weights = gauss_lobatto_points(4)
        assert onp.isclose(onp.sum(weights * points**4), 2.0 / 5.0)

    def test_gauss_lobatto_requires_two_points(self):
        with pytest.raises(ValueError):
            gauss_lobatto_points(1)

    def test_hex_rule(self):
        quadrature = HexGaussQuadrature(2)
        assert quadrature.get_num_points() == 8
        assert quadrature.points.shape == (8, 3)
        assert onp.isclose(onp.sum(quadrature.weights), 8.0)
        # x-fastest ordering
        assert quadrature.get_point(1)[0] > quadrature.get_point(0)[0]
        assert quadrature.get_point(1)[1] == quadrature.get_point(0)[1]

    def test_quad_rule_integrates_monomial(self):
        quadrature = QuadGaussQuadrature(3)
        x = quadrature.points
        integral = onp.sum(quadrature.weights * x[:, 0] ** 4 * x[:, 1] ** 2)
        assert onp.isclose(integral, (2.0 / 5.0) * (2.0 / 3.0))

    def test_rules_are_hashable(self):
        assert HexGaussQuadrature(2) == HexGaussQuadrature(2)
        assert hash(GaussLobattoQuadrature(3)) == hash(GaussLobattoQuadrature(3))


class TestLagrangeBases:
    """Shape functions of the Lagrange sub-bases."""

    @pytest.mark.parametrize("sub", [LagrangeH1Basis(2), LagrangeH1Basis(1, dim=2), LagrangeL2Basis(1), LagrangeL2Basis(0)])
    def test_partition_of_unity(self, sub):
        points = GaussQuadrature(3, sub.dim).points
        N, dN = sub.shape_functions(points)
        assert onp.allclose(N.sum(axis=1), 1.0)
        assert onp.allclose(dN.sum(axis=1), 0.0)

    def test_nodal_interpolation(self):
        sub = LagrangeH1Basis(2)
        N, _ = sub.shape_functions(sub.node_points)
        assert onp.allclose(N, onp.eye(sub.nnodes))

    def test_h1_nodes_at_gauss_lobatto_points(self):
        sub = LagrangeH1Basis(2)
        assert onp.allclose(sub.node_points[0], [-1.0, -1.0, -1.0])
        assert onp.allclose(sub.node_points[13], [0.0, 0.0, 0.0])
        assert onp.allclose(sub.node_points[26], [1.0, 1.0, 1.0])

    def test_gradient_of_linear_field(self):
        basis = FEBasis(LagrangeH1Basis(2, 3))
        quadrature = HexGaussQuadrature(2)
        dof = jnp.array([basis.get_dof_point(i)[i % 3] for i in range(basis.ndof)])
        qpts = basis.interp(dof, quadrature)
        x = qpts.get(3).get(0)
        assert jnp.allclose(x.value, quadrature.get_point(3))
        assert jnp.allclose(x.grad, jnp.eye(3))


class TestFEBasis:
    """Composite basis: layout, interpolation and entity DOFs."""

    def test_layout(self):
        basis = FEBasis(LagrangeH1Basis(1, 3), LagrangeL2Basis(0))
        assert basis.nbasis == 2
        assert basis.ndof == 25
        assert basis.get_ndof(0) == 24
        assert basis.get_dof_offset(1) == 24
        assert basis.ncomp == 13

    def test_empty_basis(self):
        basis = FEBasis()
        assert basis.nbasis == 0
        assert basis.ndof == 0
        assert len(basis.space()) == 0

    def test_interp_add_are_transposes(self):
        basis = FEBasis(LagrangeH1Basis(2, 2), LagrangeL2Basis(1))
        quadrature = HexGaussQuadrature(3)
        key_dof, key_q = jax.random.split(jax.random.PRNGKey(0))
        dof = jax.random.normal(key_dof, (basis.ndof,))
        q = jax.random.normal(key_q, (quadrature.get_num_points(), basis.ncomp))

        lhs = jnp.sum(basis.interp(dof, quadrature).flatten() * q)
        scattered = basis.add(QptSpace.from_flat(basis.space(), q), jnp.zeros(basis.ndof), quadrature)
        rhs = jnp.dot(dof, scattered)
        assert jnp.allclose(lhs, rhs, rtol=1e-12, atol=1e-12)

    def test_add_accumulates(self):
        basis = FEBasis(LagrangeL2Basis(0))
        quadrature = HexGaussQuadrature(2)
        q = QptSpace.from_flat(basis.space(), jnp.ones((8, 1)))
        dof = basis.add(q, jnp.array([1.0]), quadrature)
        assert jnp.allclose(dof, jnp.array([9.0]))

    def test_add_outer(self):
        basis = FEBasis(LagrangeH1Basis(1))
        quadrature = HexGaussQuadrature(2)
        B = basis.interp_matrix(quadrature)[2]
        jac = jnp.diag(jnp.array([1.0, 2.0, 3.0, 4.0]))
        mat = basis.add_outer(2, jac, jnp.zeros((8, 8)), quadrature)
        assert jnp.allclose(mat, B.T @ jac @ B)
        assert jnp.allclose(mat, mat.T)

    def test_get_dof_point(self):
        basis = FEBasis(LagrangeL2Basis(0), LagrangeH1Basis(1))
        assert onp.allclose(basis.get_dof_point(0), [0.0, 0.0, 0.0])
        assert onp.allclose(basis.get_dof_point(8), [1.0, 1.0, 1.0])
        with pytest.raises(IndexError):
            basis.get_dof_point(9)

    def test_vertex_and_face_dofs(self):
        basis = FEBasis(LagrangeH1Basis(2))
        assert basis.get_entity_dof(0, ElementTypes.VERTEX, 0) == [0]
        assert basis.get_entity_dof(0, ElementTypes.VERTEX, 1) == [2]
        assert basis.get_entity_dof(0, ElementTypes.VERTEX, 7) == [26]
        assert basis.get_entity_dof(0, ElementTypes.FACE, 1) == [14]
        assert basis.get_entity_dof(0, ElementTypes.FACE, 4) == [4]
        assert basis.get_entity_dof(0, ElementTypes.VOLUME, 0) == [13]

    def test_edge_orientation(self):
        basis = FEBasis(LagrangeH1Basis(3))
        assert basis.get_entity_dof(0, ElementTypes.EDGE, 0, orient=0) == [16, 32]
        assert basis.get_entity_dof(0, ElementTypes.EDGE, 0, orient=1) == [32, 16]

    def test_face_orientation(self):
        basis = FEBasis(LagrangeH1Basis(3))
        assert basis.get_entity_dof(0, ElementTypes.FACE, 4, orient=0) == [5, 6, 9, 10]
        assert basis.get_entity_dof(0, ElementTypes.FACE, 4, orient=1) == [6, 5, 10, 9]
        assert basis.get_entity_dof(0, ElementTypes.FACE, 4, orient=4) == [5, 9, 6, 10]

    def test_set_entity_dof_vector_field(self):
        basis = FEBasis(LagrangeL2Basis(0), LagrangeH1Basis(2, 3))
        dof = basis.set_entity_dof(1, ElementTypes.FACE, 1, 0, [1.0, 2.0, 3.0], jnp.zeros(basis.ndof))
        assert jnp.array_equal(dof[1 + 42 : 1 + 45], jnp.array([1.0, 2.0, 3.0]))
        assert jnp.sum(jnp.abs(dof)) == 6.0

    def test_l2_entities(self):
        basis = FEBasis(LagrangeL2Basis(1))
        assert basis.get_entity_dof(0, ElementTypes.FACE, 0) == []
        assert basis.get_entity_dof(0, ElementTypes.VOLUME, 0) == list(range(8))

    @pytest.mark.parametrize(
        "entity, index, orient",
        [(ElementTypes.FACE, 6, 0), (ElementTypes.EDGE, 12, 0), (ElementTypes.EDGE, 0, 2), (ElementTypes.FACE, 0, 8), (ElementTypes.VERTEX, 0, 1)],
    )
    def test_invalid_entities(self, entity, index, orient):
        basis = FEBasis(LagrangeH1Basis(2))
        with pytest.raises(ValueError):
            basis.get_entity_dof(0, entity, index, orient)


class TestQHdivBasis:
    """Face-flux basis: layout, exact fields and entity DOFs."""

    def test_layout(self):
        assert QHdivBasis(1).ndof == 6
        assert QHdivBasis(2).ndof == 36
        assert QHdivBasis(2, dim=2).ndof == 12
        assert QHdivBasis(1).ncomp_flat == 4
        with pytest.raises(ValueError):
            QHdivBasis(0)

    def test_lowest_order_normal_flux(self):
        sub = QHdivBasis(1)
        faces = onp.array([[-1.0, 0, 0], [1, 0, 0], [0, -1, 0], [0, 1, 0], [0, 0, -1], [0, 0, 1]])
        B = sub.interp_matrix(faces)
        # DOF i has unit normal component on face i and none on the other faces
        normal = onp.array([B[f, f // 2, :] for f in range(6)])
        assert onp.allclose(normal, onp.eye(6))
        assert onp.allclose(sub.node_points, faces)

    def test_linear_field_is_exact(self):
        basis = FEBasis(QHdivBasis(1))
        quadrature = HexGaussQuadrature(2)
        # v = (x, 2y, -z) has div v = 2
        dof = jnp.array([-1.0, 1.0, -2.0, 2.0, 1.0, -1.0])
        qpts = basis.interp(dof, quadrature)
        x = quadrature.points
        v = qpts.space.get(0)
        assert jnp.allclose(v.value, jnp.stack([x[:, 0], 2.0 * x[:, 1], -x[:, 2]], axis=1))
        assert jnp.allclose(v.div, 2.0)

    def test_higher_order_divergence(self):
        sub = QHdivBasis(2)
        quadrature = HexGaussQuadrature(3)
        B = sub.interp_matrix(quadrature.points)
        # v = (x^2, 0, 0) sampled at the nodes has div v = 2x
        dof = onp.array([p[0] ** 2 if i < sub.block_size else 0.0 for i, p in enumerate(sub.node_points)])
        flat = onp.einsum("qcn,n->qc", B, dof)
        assert onp.allclose(flat[:, 0], quadrature.points[:, 0] ** 2)
        assert onp.allclose(flat[:, 3], 2.0 * quadrature.points[:, 0])

    def test_face_dofs(self):
        basis = FEBasis(LagrangeL2Basis(0), QHdivBasis(1))
        assert basis.get_entity_dof(1, ElementTypes.FACE, 1) == [2]
        assert basis.get_entity_dof(1, ElementTypes.FACE, 4) == [5]
        assert basis.get_entity_dof(1, ElementTypes.EDGE, 3, orient=1) == []
        assert basis.get_entity_dof(1, ElementTypes.VOLUME, 0) == []

    def test_face_orientation(self):
        basis = FEBasis(QHdivBasis(2))
        assert basis.get_entity_dof(0, ElementTypes.FACE, 1, orient=0) == [2, 5, 8, 11]
        assert basis.get_entity_dof(0, ElementTypes.FACE, 1, orient=1) == [5, 2, 11, 8]
        assert basis.get_entity_dof(0, ElementTypes.FACE, 1, orient=4) == [2, 8, 5, 11]
        with pytest.raises(ValueError):
            basis.get_entity_dof(0, ElementTypes.FACE, 1, orient=8)

    def test_interior_dofs(self):
        sub = QHdivBasis(2)
        interior = FEBasis(sub).get_entity_dof(0, ElementTypes.VOLUME, 0)
        assert len(interior) == 12
        assert all(abs(sub.get_dof_point(i)[i // sub.block_size]) < 1e-14 for i in interior)

    def test_interp_add_are_transposes(self):
        basis = FEBasis(QHdivBasis(2), LagrangeL2Basis(1))
        quadrature = HexGaussQuadrature(3)
        key_dof, key_q = jax.random.split(jax.random.PRNGKey(3))
        dof = jax.random.normal(key_dof, (basis.ndof,))
        q = jax.random.normal(key_q, (quadrature.get_num_points(), basis.ncomp))

        lhs = jnp.sum(basis.interp(dof, quadrature).flatten() * q)
        scattered = basis.add(QptSpace.from_flat(basis.space(), q), jnp.zeros(basis.ndof), quadrature)
        assert jnp.allclose(lhs, jnp.dot(dof, scattered), rtol=1e-12, atol=1e-12)
