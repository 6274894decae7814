"""Backtracking line search and full-step globalization."""

import logging
import math
from dataclasses import dataclass

from flax import nnx
from jax import Array

from .. import vectors
from ..convergence import scaled_step_length
from ..errors import LineSearchFailure, ResidualEvaluationFailure
from ..jacobian import ResidualEvaluator

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class LineSearchResult:
    """
    Point accepted by a globalization strategy.

    Attributes:
        y: New iterate y + lam*step
        fy: Residual at the new iterate
        step: The step actually taken, lam*step
        lam: Accepted step length
        merit: Merit function value at the new iterate
        backtracks: Number of step-length reductions
    """

    y: Array
    fy: Array
    step: Array
    lam: float
    merit: float
    backtracks: int = 0


def merit(fy: Array, f_scale: Array) -> float:
    """Merit function 0.5*||f_scale*F||_2^2."""
    return 0.5 * vectors.wl2_norm(fy, f_scale) ** 2


class LineSearch(nnx.Module):
    """
    Backtracking line search with quadratic/cubic interpolation.

    A step length lam is accepted when the Armijo condition holds:
    $$ g(\\lambda) \\le g(0) + \\alpha \\lambda g'(0) $$
    with merit $g(\\lambda) = \\frac{1}{2}\\|D_F F(y + \\lambda s)\\|_2^2$.
    The first reduction minimises the quadratic model of g, later ones the
    cubic model through the two most recent samples. New step lengths are
    kept within [0.1*lam, 0.5*lam] and may not fall below
    lam_min = step_tol / rlength, where rlength is the relative length of
    the full step.

    The Armijo test is homogeneous in f_scale, so callers may normalise
    f_scale (and the slope with it) to keep g(0) of order one.

    Implements: GlobalizationProtocol

    Attributes:
        alpha: Sufficient-decrease constant
        max_backtracks: Maximum number of step-length reductions
    """

    def __init__(self, alpha: float = 1e-4, max_backtracks: int = 30):
        self.alpha = alpha
        self.max_backtracks = max_backtracks

    def __call__(
        self,
        residual_fn: ResidualEvaluator,
        y: Array,
        fy: Array,
        step: Array,
        slope: float,
        y_scale: Array,
        f_scale: Array,
        step_tol: float,
    ) -> LineSearchResult:
        """
        Find an acceptable step length along `step`.

        Args:
            residual_fn: Residual evaluator F(y)
            y: Current iterate
            fy: Residual at y
            step: Newton direction
            slope: g'(0) = <D_F F(y), D_F J step>
            y_scale: Variable scaling
            f_scale: Residual scaling
            step_tol: Scaled step tolerance; sets the smallest step length

        Returns:
            LineSearchResult for the accepted point

        Raises:
            LineSearchFailure: If `step` is not a descent direction or no
                step length above the minimum satisfies the Armijo condition
        """
        if not slope < 0.0:
            raise LineSearchFailure(
                f"Step is not a descent direction (slope={slope:.3e})."
            )

        # lam_min >= 1 leaves only the full step, still subject to Armijo.
        rlength = scaled_step_length(step, y, y_scale)
        lam_min = step_tol / rlength if rlength > 0.0 else math.inf

        g0 = merit(fy, f_scale)
        lam = 1.0
        lam_prev = g_prev = None
        backtracks = 0

        while True:
            y_try = vectors.axpby(1.0, y, lam, step)
            try:
                f_try = residual_fn(y_try)
            except ResidualEvaluationFailure:
                f_try = None
                g_try = math.inf
            else:
                g_try = merit(f_try, f_scale)

            if g_try <= g0 + self.alpha * lam * slope:
                logger.debug(
                    "Line search accepted lam=%.3e after %d backtracks.",
                    lam, backtracks,
                )
                return LineSearchResult(
                    y=y_try,
                    fy=f_try,
                    step=lam * step,
                    lam=lam,
                    merit=g_try,
                    backtracks=backtracks,
                )

            if backtracks >= self.max_backtracks:
                raise LineSearchFailure(
                    f"No acceptable step after {backtracks} backtracks."
                )

            if f_try is None:
                lam_new = 0.5 * lam
                lam_prev = g_prev = None
            elif lam_prev is None:
                lam_new = -slope * lam**2 / (2.0 * (g_try - g0 - slope * lam))
            else:
                lam_new = self._cubic_minimizer(
                    g0, slope, lam, g_try, lam_prev, g_prev
                )
            if not math.isfinite(lam_new):
                lam_new = 0.5 * lam
            lam_new = min(lam_new, 0.5 * lam)

            if f_try is not None:
                lam_prev, g_prev = lam, g_try
            lam = max(0.1 * lam, lam_new)
            backtracks += 1

            if lam < lam_min:
                raise LineSearchFailure(
                    f"Step length {lam:.3e} fell below minimum {lam_min:.3e}."
                )

    @staticmethod
    def _cubic_minimizer(
        g0: float,
        slope: float,
        lam: float,
        g_lam: float,
        lam_prev: float,
        g_prev: float,
    ) -> float:
        """Minimiser of the cubic through g(0), g'(0), g(lam) and g(lam_prev)."""
        t1 = g_lam - g0 - lam * slope
        t2 = g_prev - g0 - lam_prev * slope
        diff = lam - lam_prev
        a = (t1 / lam**2 - t2 / lam_prev**2) / diff
        b = (-lam_prev * t1 / lam**2 + lam * t2 / lam_prev**2) / diff
        if a == 0.0:
            return -slope / (2.0 * b) if b > 0.0 else 0.5 * lam
        disc = b * b - 3.0 * a * slope
        if disc < 0.0:
            return 0.5 * lam
        return (-b + math.sqrt(disc)) / (3.0 * a)


class FullStep(nnx.Module):
    """
    Take the full Newton step without any sufficient-decrease test.

    Implements: GlobalizationProtocol
    """

    def __call__(
        self,
        residual_fn: ResidualEvaluator,
        y: Array,
        fy: Array,
        step: Array,
        slope: float,
        y_scale: Array,
        f_scale: Array,
        step_tol: float,
    ) -> LineSearchResult:
        """
        Accept y + step.

        Raises:
            LineSearchFailure: If the residual cannot be evaluated at y + step
        """
        return _full_step(residual_fn, y, step, f_scale)


def _full_step(
    residual_fn: ResidualEvaluator, y: Array, step: Array, f_scale: Array
) -> LineSearchResult:
    y_new = vectors.axpby(1.0, y, 1.0, step)
    try:
        f_new = residual_fn(y_new)
    except ResidualEvaluationFailure as exc:
        raise LineSearchFailure("Residual failed at the full step.") from exc
    return LineSearchResult(
        y=y_new, fy=f_new, step=step, lam=1.0, merit=merit(f_new, f_scale)
    )
