"""Residual evaluation and Jacobian-vector products."""

import math
from typing import Optional, Union

import jax
from jax import Array
import jax.numpy as jnp

from . import vectors
from .custom_types import ResidualFn, JVPFn
from .errors import InvalidInputError, ResidualEvaluationFailure

SQRT_EPS = math.sqrt(float(jnp.finfo(jnp.float64).eps))


def _checked_output(out, n: int, name: str) -> Array:
    out = jnp.asarray(out, dtype=jnp.float64)
    if out.ndim != 1 or out.shape[0] != n:
        raise InvalidInputError(
            f"{name} returned shape {tuple(out.shape)}, expected ({n},)."
        )
    if not bool(jnp.all(jnp.isfinite(out))):
        raise ResidualEvaluationFailure(f"{name} returned non-finite values.")
    return out


class ResidualEvaluator:
    """
    Wraps a residual function F(y) and counts its evaluations.

    Non-finite output is reported as a ResidualEvaluationFailure so that
    callers can treat it as an invalid point.

    Attributes:
        fn: The user residual, signature y -> F(y)
        n: Problem size
        nevals: Number of calls made so far
    """

    def __init__(self, fn: ResidualFn, n: int):
        if not callable(fn):
            raise InvalidInputError("The residual function must be callable.")
        self.fn = fn
        self.n = n
        self.nevals = 0

    def __call__(self, y: Array) -> Array:
        self.nevals += 1
        return _checked_output(self.fn(y), self.n, "Residual function")


class FiniteDifferenceJVP:
    """
    One-sided finite-difference Jacobian-vector product.

    $$ J v \\approx \\frac{F(y + \\sigma v) - F(y)}{\\sigma} $$

    with the increment
    $$ \\sigma = \\mathrm{sign}(\\langle Dy, Dv \\rangle) \\sqrt{\\epsilon}
    \\frac{\\max(|\\langle Dy, Dv \\rangle|, \\|Dv\\|_1)}{\\|Dv\\|_2^2} $$
    where D is the diagonal y-scaling.
    """

    def __init__(self, residual: ResidualEvaluator, y_scale: Array):
        self.residual = residual
        self.y_scale = y_scale
        self.nevals = 0

    def increment(self, y: Array, v: Array) -> float:
        """Differencing increment sigma; 0.0 when v is numerically zero."""
        dv = vectors.prod(v, self.y_scale)
        vtv = vectors.dot(dv, dv)
        if vtv <= jnp.finfo(jnp.float64).tiny:
            return 0.0
        sutsv = vectors.dot(vectors.prod(y, self.y_scale), dv)
        sign = 1.0 if sutsv >= 0.0 else -1.0
        return sign * SQRT_EPS * max(abs(sutsv), vectors.l1_norm(dv)) / vtv

    def __call__(self, y: Array, fy: Array, v: Array) -> Array:
        self.nevals += 1
        sigma = self.increment(y, v)
        if sigma == 0.0:
            return jnp.zeros_like(v)
        f_pert = self.residual(vectors.axpby(1.0, y, sigma, v))
        return vectors.axpby(1.0 / sigma, f_pert, -1.0 / sigma, fy)


class AnalyticJVP:
    """User-supplied Jacobian-vector product with signature (y, v) -> J(y)*v."""

    def __init__(self, jvp_fn: JVPFn, n: int):
        self.jvp_fn = jvp_fn
        self.n = n
        self.nevals = 0

    def __call__(self, y: Array, fy: Array, v: Array) -> Array:
        self.nevals += 1
        return _checked_output(self.jvp_fn(y, v), self.n, "Jacobian-vector product")


class AutodiffJVP:
    """Exact Jacobian-vector product of the residual computed with `jax.jvp`."""

    def __init__(self, residual: ResidualEvaluator):
        self.residual = residual
        self.nevals = 0

    def __call__(self, y: Array, fy: Array, v: Array) -> Array:
        self.nevals += 1
        _, jv = jax.jvp(self.residual.fn, (y,), (v,))
        return _checked_output(jv, self.residual.n, "Jacobian-vector product")


def make_jvp(
    residual: ResidualEvaluator,
    y_scale: Array,
    jvp: Optional[Union[str, JVPFn]] = None,
):
    """
    Select the Jacobian-vector product provider.

    Args:
        residual: Evaluator for F(y)
        y_scale: Variable scaling used by the finite-difference increment
        jvp: None or "fd" for finite differences, "autodiff" for `jax.jvp`,
            or a callable (y, v) -> J(y)*v

    Returns:
        A provider with signature (y, F(y), v) -> J(y)*v
    """
    if jvp is None or jvp == "fd":
        return FiniteDifferenceJVP(residual, y_scale)
    if jvp == "autodiff":
        return AutodiffJVP(residual)
    if callable(jvp):
        return AnalyticJVP(jvp, residual.n)
    raise InvalidInputError(
        f"Unknown jvp option {jvp!r}. Use None, 'fd', 'autodiff' or a callable."
    )
