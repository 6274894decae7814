"""Globalized Jacobian-free Newton-Krylov method."""

import dataclasses
import logging
from dataclasses import dataclass
from typing import Optional, Union

from flax import nnx
from jax import Array
import jax.numpy as jnp

from .. import vectors
from ..convergence import (
    ConvergenceTolerances,
    SolverStatus,
    check_convergence,
    scaled_fnorm,
    scaled_step_length,
)
from ..custom_types import JVPFn, LinearMap, ResidualFn
from ..errors import (
    InvalidInputError,
    LinearSolveBreakdown,
    LineSearchFailure,
    ResidualEvaluationFailure,
)
from ..forcing import ETA_FLOOR, ForcingTerm
from ..globalization import GlobalizationProtocol, LineSearch
from ..jacobian import ResidualEvaluator, make_jvp
from ..linsolvers import GMRES, LinearSolverProtocol

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SolverState:
    """
    State carried between Newton iterations.

    A new instance replaces the old one; the iterate and residual only
    change when a step is accepted.

    Attributes:
        y: Current iterate
        fy: Residual at y
        fnorm: max|f_scale*F(y)|
        fnorm_l2: ||f_scale*F(y)||_2
        iterations: Number of accepted iterations
        failures: Consecutive line-search failures
        eta: Forcing term for the next linear solve
        lin_residual_norm: ||D_F (F + J lam s)|| of the last accepted step
    """

    y: Array
    fy: Array
    fnorm: float
    fnorm_l2: float
    iterations: int = 0
    failures: int = 0
    eta: float = 0.1
    lin_residual_norm: Optional[float] = None


@dataclass(frozen=True)
class SolveResult:
    """
    Outcome of NewtonKrylov.solve.

    Attributes:
        y: Final accepted iterate
        status: Terminal status
        iterations: Number of accepted Newton iterations
        residual_evaluations: Calls to the residual function, including those
            made by finite-difference Jacobian-vector products
        fnorm: max|f_scale*F(y)| at the final iterate
        linear_iterations: Total inner GMRES iterations
        jvp_evaluations: Jacobian-vector products requested
        backtracks: Total step-length reductions in the line search
        line_search_failures: Total rejected Newton steps
    """

    y: Array
    status: SolverStatus
    iterations: int
    residual_evaluations: int
    fnorm: float
    linear_iterations: int = 0
    jvp_evaluations: int = 0
    backtracks: int = 0
    line_search_failures: int = 0

    @property
    def converged(self) -> bool:
        return self.status.converged


class NewtonKrylov(nnx.Module):
    """
    Inexact Newton method with a matrix-free Krylov inner solver.

    Iterative update: $y \\leftarrow y + \\lambda s$ where
    $\\|D_F (F(y) + J(y) s)\\| \\le \\eta_k \\|D_F F(y)\\|$ and lambda is chosen
    by the globalization strategy.

    Implements: RootFinderProtocol

    Attributes:
        residual_fn: Residual function y -> F(y)
        n: Problem size, fixed for the lifetime of the solver
        jvp: None/"fd" (finite differences), "autodiff" (`jax.jvp`) or a
            callable (y, v) -> J(y)*v
        linsolver: Linear solver for the Newton system (default: GMRES)
        globalization: Step acceptance strategy (default: LineSearch)
        forcing: Forcing sequence for the linear solve tolerance
        max_failures: Consecutive line-search failures reported as stagnation
        max_newton_step: Upper bound on ||y_scale*s||_2; defaults to
            1000*max(||y_scale*y0||_2, 1)
        preconditioner: Optional right preconditioner v -> P^{-1}*v
    """

    def __init__(
        self,
        residual_fn: ResidualFn,
        n: int,
        jvp: Optional[Union[str, JVPFn]] = None,
        linsolver: Optional[LinearSolverProtocol] = None,
        globalization: Optional[GlobalizationProtocol] = None,
        forcing: Optional[ForcingTerm] = None,
        max_failures: int = 3,
        max_newton_step: Optional[float] = None,
        preconditioner: Optional[LinearMap] = None,
    ):
        if not callable(residual_fn):
            raise InvalidInputError("residual_fn must be callable.")
        vectors.allocate(n)  # validates n
        if max_failures < 1:
            raise InvalidInputError(f"max_failures must be >= 1, got {max_failures}.")
        if max_newton_step is not None and not max_newton_step > 0.0:
            raise InvalidInputError("max_newton_step must be positive.")
        if jvp is not None and not callable(jvp) and jvp not in ("fd", "autodiff"):
            raise InvalidInputError(f"Unknown jvp option {jvp!r}.")

        self.residual_fn = residual_fn
        self.n = n
        self.jvp = jvp
        self.linsolver = linsolver if linsolver is not None else GMRES()
        self.globalization = (
            globalization if globalization is not None else LineSearch()
        )
        self.forcing = forcing if forcing is not None else ForcingTerm()
        self.max_failures = max_failures
        self.max_newton_step = max_newton_step
        self.preconditioner = preconditioner

    def _as_scale(self, scale, name: str) -> Array:
        if scale is None:
            return jnp.ones((self.n,), dtype=jnp.float64)
        scale = vectors.as_vector(scale, self.n)
        if not bool(jnp.all(jnp.isfinite(scale) & (scale > 0.0))):
            raise InvalidInputError(f"{name} entries must be positive and finite.")
        return scale

    def solve(
        self,
        y_guess: Array,
        y_scale: Optional[Array] = None,
        f_scale: Optional[Array] = None,
        tolerances: Optional[ConvergenceTolerances] = None,
        max_iters: Optional[int] = None,
    ) -> SolveResult:
        """
        Find the root of residual_fn(y) = 0.

        Args:
            y_guess: Initial guess, length n
            y_scale: Positive variable scaling (default: ones)
            f_scale: Positive residual scaling (default: ones)
            tolerances: Outer iteration tolerances (default:
                ConvergenceTolerances())
            max_iters: Overrides tolerances.max_iters when given

        Returns:
            SolveResult with the final iterate and terminal status

        Raises:
            InvalidInputError: On malformed input, before any evaluation
            ResidualEvaluationFailure: If F cannot be evaluated at y_guess
        """
        tolerances = tolerances if tolerances is not None else ConvergenceTolerances()
        if max_iters is not None:
            tolerances = dataclasses.replace(tolerances, max_iters=max_iters)
        y0 = vectors.as_vector(y_guess, self.n)
        if not bool(jnp.all(jnp.isfinite(y0))):
            raise InvalidInputError("Initial guess must be finite.")
        y_scale = self._as_scale(y_scale, "y_scale")
        f_scale = self._as_scale(f_scale, "f_scale")

        residual = ResidualEvaluator(self.residual_fn, self.n)
        jvp = make_jvp(residual, y_scale, self.jvp)

        fy0 = residual(y0)
        state = SolverState(
            y=y0,
            fy=fy0,
            fnorm=scaled_fnorm(fy0, f_scale),
            fnorm_l2=vectors.wl2_norm(fy0, f_scale),
            eta=self.forcing.initial(),
        )
        max_step = self.max_newton_step
        if max_step is None:
            max_step = 1000.0 * max(vectors.wl2_norm(y0, y_scale), 1.0)

        linear_iterations = 0
        backtracks = 0
        ls_failures = 0
        status = check_convergence(
            state.fnorm, None, 0, 0, False, tolerances, self.max_failures
        )

        while status is None:
            y, fy = state.y, state.fy
            try:
                krylov = self.linsolver(
                    lambda v: jvp(y, fy, v),
                    -fy,
                    state.eta,
                    x_scale=y_scale,
                    b_scale=f_scale,
                    psolve=self.preconditioner,
                )
            except (LinearSolveBreakdown, ResidualEvaluationFailure) as exc:
                logger.debug("Linear solve failed: %s", exc)
                status = check_convergence(
                    state.fnorm, None, state.iterations, state.failures,
                    True, tolerances, self.max_failures,
                )
                break
            linear_iterations += krylov.iterations
            if krylov.reduced_accuracy:
                logger.debug("Using reduced-accuracy Newton step.")

            # D_F J s recovered from the Krylov residual: -D_F F - r
            scaled_f = vectors.prod(f_scale, fy)
            scaled_js = vectors.axpby(-1.0, scaled_f, -1.0, krylov.scaled_residual)
            step = krylov.x
            step_norm = vectors.wl2_norm(step, y_scale)
            if step_norm > max_step:
                ratio = max_step / step_norm
                step = ratio * step
                scaled_js = ratio * scaled_js

            # Merit normalised to g(0) = 1/2; ||F||^2 underflows below ~1e-154.
            merit_scale = state.fnorm_l2
            slope = vectors.dot(scaled_f / merit_scale, scaled_js / merit_scale)

            try:
                accepted = self.globalization(
                    residual, y, fy, step, slope,
                    y_scale, f_scale / merit_scale, tolerances.step_tol,
                )
            except LineSearchFailure as exc:
                ls_failures += 1
                state = dataclasses.replace(
                    state,
                    failures=state.failures + 1,
                    eta=max(0.1 * state.eta, ETA_FLOOR),
                )
                logger.debug(
                    "Iteration %d: step rejected (%s), %d consecutive failures.",
                    state.iterations + 1, exc, state.failures,
                )
                status = check_convergence(
                    state.fnorm, None, state.iterations, state.failures,
                    False, tolerances, self.max_failures,
                )
                continue

            backtracks += accepted.backtracks
            fnorm_l2 = vectors.wl2_norm(accepted.fy, f_scale)
            # ||D_F (F + J lam s)|| for the step actually taken
            lin_residual_norm = vectors.l2_norm(
                vectors.axpby(1.0, scaled_f, accepted.lam, scaled_js)
            )
            state = SolverState(
                y=accepted.y,
                fy=accepted.fy,
                fnorm=scaled_fnorm(accepted.fy, f_scale),
                fnorm_l2=fnorm_l2,
                iterations=state.iterations + 1,
                failures=0,
                eta=self.forcing(
                    fnorm_l2, state.fnorm_l2, state.eta, lin_residual_norm
                ),
                lin_residual_norm=lin_residual_norm,
            )
            step_length = scaled_step_length(accepted.step, accepted.y, y_scale)
            logger.debug(
                "Iteration %d: fnorm=%.3e lam=%.3e step=%.3e eta=%.3e gmres_iters=%d",
                state.iterations, state.fnorm, accepted.lam, step_length,
                state.eta, krylov.iterations,
            )
            status = check_convergence(
                state.fnorm, step_length, state.iterations, state.failures,
                False, tolerances, self.max_failures,
            )

        if status.converged:
            logger.info(
                "Newton-Krylov finished with %s after %d iterations (fnorm=%.3e).",
                status.name, state.iterations, state.fnorm,
            )
        else:
            logger.warning(
                "Newton-Krylov did not converge: %s after %d iterations. "
                "Final residual norm: %.2e",
                status.name, state.iterations, state.fnorm,
            )

        return SolveResult(
            y=state.y,
            status=status,
            iterations=state.iterations,
            residual_evaluations=residual.nevals,
            fnorm=state.fnorm,
            linear_iterations=linear_iterations,
            jvp_evaluations=jvp.nevals,
            backtracks=backtracks,
            line_search_failures=ls_failures,
        )
