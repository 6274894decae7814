"""Stopping criteria for the outer Newton iteration."""

import enum
import math
from dataclasses import dataclass
from typing import Optional

from jax import Array
import jax.numpy as jnp

from . import vectors
from .errors import InvalidInputError

_EPS = float(jnp.finfo(jnp.float64).eps)


class SolverStatus(enum.Enum):
    """Terminal status of a nonlinear solve."""

    SUCCESS = "success"
    SUCCESS_SMALL_STEP = "success_small_step"
    FAIL_MAX_ITERS = "fail_max_iters"
    FAIL_STAGNATION = "fail_stagnation"
    FAIL_LINSOLV = "fail_linsolv"

    @property
    def converged(self) -> bool:
        return self in (SolverStatus.SUCCESS, SolverStatus.SUCCESS_SMALL_STEP)


@dataclass(frozen=True)
class ConvergenceTolerances:
    """
    Tolerances of the outer iteration.

    Attributes:
        fnorm_tol: Stop when max|f_scale*F(y)| falls below this value
        step_tol: Stop when the scaled step length falls below this value
        max_iters: Maximum number of accepted Newton iterations
    """

    fnorm_tol: float = _EPS ** (1.0 / 3.0)
    step_tol: float = _EPS ** (2.0 / 3.0)
    max_iters: int = 200

    def __post_init__(self):
        for name in ("fnorm_tol", "step_tol"):
            value = getattr(self, name)
            if not (math.isfinite(value) and value > 0.0):
                raise InvalidInputError(f"{name} must be positive, got {value}.")
        if (
            isinstance(self.max_iters, bool)
            or not isinstance(self.max_iters, int)
            or self.max_iters <= 0
        ):
            raise InvalidInputError(
                f"max_iters must be a positive int, got {self.max_iters!r}."
            )


def scaled_fnorm(fy: Array, f_scale: Array) -> float:
    """Max norm of the scaled residual, max|f_scale*F|."""
    return vectors.max_norm(vectors.prod(fy, f_scale))


def scaled_step_length(step: Array, y: Array, y_scale: Array) -> float:
    """Relative step length max_i |step_i| / max(|y_i|, 1/y_scale_i)."""
    vectors.check_length(y.shape[0], step, y_scale)
    denom = jnp.maximum(jnp.abs(y), 1.0 / y_scale)
    return vectors.max_norm(step / denom)


def check_convergence(
    fnorm: float,
    step_norm: Optional[float],
    iterations: int,
    failures: int,
    breakdown: bool,
    tolerances: ConvergenceTolerances,
    max_failures: int,
) -> Optional[SolverStatus]:
    """
    Apply the stopping tests in priority order.

    The first test that holds determines the status:
    residual norm, step length, iteration budget, consecutive line-search
    failures, linear solver breakdown.

    Args:
        fnorm: Scaled residual max norm at the current iterate
        step_norm: Scaled length of the last accepted step (None if no step
            was accepted in this iteration)
        iterations: Number of accepted iterations
        failures: Consecutive line-search failures
        breakdown: Whether the linear solver broke down irrecoverably
        tolerances: Outer iteration tolerances
        max_failures: Consecutive failures that count as stagnation

    Returns:
        The terminal status, or None to keep iterating
    """
    if fnorm < tolerances.fnorm_tol:
        return SolverStatus.SUCCESS
    if step_norm is not None and step_norm < tolerances.step_tol:
        return SolverStatus.SUCCESS_SMALL_STEP
    if iterations >= tolerances.max_iters:
        return SolverStatus.FAIL_MAX_ITERS
    if failures >= max_failures:
        return SolverStatus.FAIL_STAGNATION
    if breakdown:
        return SolverStatus.FAIL_LINSOLV
    return None
