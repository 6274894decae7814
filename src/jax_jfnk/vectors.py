"""
Vector primitives used by the Newton-Krylov solver.

Vectors are one-dimensional float64 JAX arrays. Arrays are immutable, so
every operation returns a new vector and leaves its operands untouched.
Vectors are released by reference counting; there is no explicit destroy.
"""

import math

import jax.numpy as jnp
from jax import Array

from .errors import AllocationFailure, InvalidInputError


def check_length(n: int, *vectors: Array) -> None:
    """
    Check that every vector is one-dimensional with length n.

    Raises:
        InvalidInputError: On the first vector that does not match.
    """
    for v in vectors:
        if v.ndim != 1 or v.shape[0] != n:
            raise InvalidInputError(
                f"Expected a vector of length {n}, got shape {tuple(v.shape)}."
            )


def _check_pair(x: Array, y: Array) -> None:
    if x.ndim != 1 or x.shape != y.shape:
        raise InvalidInputError(
            f"Vector shapes {tuple(x.shape)} and {tuple(y.shape)} do not match."
        )


def allocate(n: int) -> Array:
    """
    Allocate a zero vector of length n.

    Raises:
        InvalidInputError: If n is not a positive integer.
        AllocationFailure: If the backend runs out of memory.
    """
    if isinstance(n, bool) or not isinstance(n, int) or n <= 0:
        raise InvalidInputError(f"Vector length must be a positive int, got {n!r}.")
    try:
        return jnp.zeros((n,), dtype=jnp.float64)
    except MemoryError as exc:
        raise AllocationFailure(f"Could not allocate a vector of length {n}.") from exc


def as_vector(x, n: int) -> Array:
    """Convert array-like x to a float64 vector of length n."""
    v = jnp.asarray(x, dtype=jnp.float64)
    check_length(n, v)
    return v


def copy(x: Array) -> Array:
    return jnp.array(x, copy=True)


def fill(x: Array, c: float) -> Array:
    """Vector shaped like x with every entry equal to c."""
    return jnp.full_like(x, c)


def axpby(a: float, x: Array, b: float, y: Array) -> Array:
    """z = a*x + b*y"""
    _check_pair(x, y)
    return a * x + b * y


def prod(x: Array, y: Array) -> Array:
    """Elementwise product."""
    _check_pair(x, y)
    return x * y


def dot(x: Array, y: Array) -> float:
    _check_pair(x, y)
    return float(jnp.dot(x, y))


def _euclidean(x: Array) -> float:
    """
    ||x||_2 evaluated as m*||x/m||_2 with m = max|x|.

    Squaring entries below ~1e-154 underflows to zero; dividing by m first
    keeps the sum of squares in range.
    """
    m = float(jnp.max(jnp.abs(x)))
    if m == 0.0 or not math.isfinite(m):
        return m
    return m * float(jnp.linalg.norm(x / m))


def wrms_norm(x: Array, w: Array) -> float:
    """Weighted root-mean-square norm sqrt(sum((x*w)**2) / n)."""
    _check_pair(x, w)
    return _euclidean(x * w) / math.sqrt(x.shape[0])


def wl2_norm(x: Array, w: Array) -> float:
    """Weighted Euclidean norm ||x*w||_2."""
    _check_pair(x, w)
    return _euclidean(x * w)


def l2_norm(x: Array) -> float:
    return _euclidean(x)


def l1_norm(x: Array) -> float:
    return float(jnp.sum(jnp.abs(x)))


def max_norm(x: Array) -> float:
    return float(jnp.max(jnp.abs(x)))
