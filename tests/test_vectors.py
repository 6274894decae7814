"""Unit tests for the vector primitives."""

import math

import pytest
import jax.numpy as jnp

from jax_jfnk import vectors
from jax_jfnk.errors import InvalidInputError


class TestVectors:

    def test_allocate_returns_zero_float64_vector(self):
        v = vectors.allocate(5)
        assert v.shape == (5,)
        assert v.dtype == jnp.float64
        assert jnp.all(v == 0.0)

    @pytest.mark.parametrize("n", [0, -3, 2.5, True])
    def test_allocate_rejects_bad_length(self, n):
        with pytest.raises(InvalidInputError):
            vectors.allocate(n)

    def test_axpby(self):
        x = jnp.array([1.0, 2.0, 3.0])
        y = jnp.array([-1.0, 0.0, 4.0])
        z = vectors.axpby(2.0, x, -1.0, y)
        assert jnp.allclose(z, jnp.array([3.0, 4.0, 2.0]))
        # operands are untouched
        assert jnp.allclose(x, jnp.array([1.0, 2.0, 3.0]))

    def test_dot_and_norms(self):
        x = jnp.array([3.0, -4.0])
        w = jnp.array([2.0, 0.5])
        assert vectors.dot(x, x) == pytest.approx(25.0)
        assert vectors.l2_norm(x) == pytest.approx(5.0)
        assert vectors.l1_norm(x) == pytest.approx(7.0)
        assert vectors.max_norm(x) == pytest.approx(4.0)
        # (x*w) = [6, -2]
        assert vectors.wl2_norm(x, w) == pytest.approx(math.sqrt(40.0))
        assert vectors.wrms_norm(x, w) == pytest.approx(math.sqrt(20.0))

    def test_norms_of_tiny_vectors_do_not_underflow(self):
        x = jnp.array([3e-200, -4e-200])
        w = jnp.array([2.0, 0.5])
        assert vectors.l2_norm(x) == pytest.approx(5e-200, rel=1e-12)
        assert vectors.wl2_norm(x, w) == pytest.approx(math.sqrt(40.0) * 1e-200, rel=1e-12)
        assert vectors.wrms_norm(x, w) == pytest.approx(math.sqrt(20.0) * 1e-200, rel=1e-12)
        assert vectors.l2_norm(jnp.zeros(2)) == 0.0

    def test_prod_fill_copy(self):
        x = jnp.array([1.0, 2.0])
        assert jnp.allclose(vectors.prod(x, x), jnp.array([1.0, 4.0]))
        assert jnp.allclose(vectors.fill(x, 7.0), jnp.array([7.0, 7.0]))
        c = vectors.copy(x)
        assert c is not x
        assert jnp.allclose(c, x)

    @pytest.mark.parametrize(
        "op",
        [
            lambda x, y: vectors.axpby(1.0, x, 1.0, y),
            vectors.dot,
            vectors.prod,
            vectors.wrms_norm,
            vectors.wl2_norm,
        ],
    )
    def test_length_mismatch_raises(self, op):
        with pytest.raises(InvalidInputError):
            op(jnp.ones(3), jnp.ones(2))

    def test_as_vector_checks_length(self):
        assert vectors.as_vector([1, 2], 2).dtype == jnp.float64
        with pytest.raises(InvalidInputError):
            vectors.as_vector([1.0, 2.0, 3.0], 2)
