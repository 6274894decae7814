"""Unit/integration tests for the Newton-Krylov driver."""

import pytest
import jax.numpy as jnp

from jax_jfnk import (
    ConvergenceTolerances,
    ForcingTerm,
    FullStep,
    GMRES,
    InvalidInputError,
    NewtonKrylov,
    ResidualEvaluationFailure,
    SolverStatus,
)
from jax_jfnk.rootfinders import RootFinderProtocol


@pytest.fixture
def stiff_linear_system():
    """
    F(y) = [-101 y0 - 100 y1, y0]

    Linear with a unique root at the origin.
    Initial guess: y = [2, 1].
    """
    R = lambda y: jnp.array([-101.0 * y[0] - 100.0 * y[1], y[0]])
    jvp = lambda y, v: jnp.array([-101.0 * v[0] - 100.0 * v[1], v[0]])
    y0 = jnp.array([2.0, 1.0])
    soln = jnp.zeros(2)
    return R, jvp, y0, soln


@pytest.fixture
def simple_nonlinear_system():
    """
    Non-linear system: y^3 - 2 = 0, componentwise.

    Initial guess: y = 5. Expected solution: y = 2^(1/3).
    """
    R = lambda y: y**3 - 2.0
    jvp = lambda y, v: 3.0 * y**2 * v
    y0 = jnp.full((3,), 5.0)
    soln = jnp.full_like(y0, 2.0 ** (1.0 / 3.0))
    return R, jvp, y0, soln


@pytest.fixture
def tight():
    return ConvergenceTolerances(fnorm_tol=1e-5, step_tol=1e-5, max_iters=50)


class TestNewtonKrylov:

    def test_implements_protocol(self, stiff_linear_system):
        R, _, _, _ = stiff_linear_system
        assert isinstance(NewtonKrylov(R, 2), RootFinderProtocol)

    def test_stiff_linear_system(self, stiff_linear_system, tight):
        R, _, y0, expected = stiff_linear_system
        solver = NewtonKrylov(R, 2)
        result = solver.solve(y0, jnp.ones(2), jnp.ones(2), tight)
        assert result.converged
        assert result.iterations <= 10
        assert jnp.allclose(result.y, expected, atol=1e-5)
        assert result.residual_evaluations > result.iterations
        # the initial guess is not modified
        assert jnp.allclose(y0, jnp.array([2.0, 1.0]))

    @pytest.mark.parametrize("jvp_option", ["analytic", "autodiff", "fd"])
    def test_jvp_options(self, simple_nonlinear_system, jvp_option):
        R, jvp, y0, expected = simple_nonlinear_system
        jvp_arg = jvp if jvp_option == "analytic" else jvp_option
        solver = NewtonKrylov(R, 3, jvp=jvp_arg)
        result = solver.solve(y0, tolerances=ConvergenceTolerances(fnorm_tol=1e-10))
        assert result.status is SolverStatus.SUCCESS
        assert jnp.allclose(result.y, expected, atol=1e-8)

    def test_analytic_jvp_uses_no_extra_residuals(self, simple_nonlinear_system):
        R, jvp, y0, _ = simple_nonlinear_system
        result = NewtonKrylov(R, 3, jvp=jvp).solve(y0)
        assert result.converged
        assert result.jvp_evaluations > 0
        # one evaluation per trial point plus the initial guess
        assert result.residual_evaluations == 1 + result.iterations + result.backtracks

    def test_full_step_strategy(self, stiff_linear_system, tight):
        R, _, y0, expected = stiff_linear_system
        solver = NewtonKrylov(R, 2, globalization=FullStep())
        result = solver.solve(y0, tolerances=tight)
        assert result.converged
        assert result.backtracks == 0
        assert jnp.allclose(result.y, expected, atol=1e-5)

    def test_line_search_globalizes(self):
        """Plain Newton diverges on arctan from y=2; the line search does not."""
        R = lambda y: jnp.arctan(y)
        result = NewtonKrylov(R, 1).solve(
            jnp.array([2.0]), tolerances=ConvergenceTolerances(fnorm_tol=1e-10)
        )
        assert result.converged
        assert result.backtracks >= 1
        assert jnp.allclose(result.y, jnp.zeros(1), atol=1e-6)

    def test_recovers_from_invalid_point(self):
        R = lambda y: jnp.sqrt(y) - 1.0
        result = NewtonKrylov(R, 1).solve(
            jnp.array([9.0]), tolerances=ConvergenceTolerances(fnorm_tol=1e-10)
        )
        assert result.converged
        assert jnp.allclose(result.y, jnp.ones(1), atol=1e-6)

    def test_resolve_from_converged_iterate(self, simple_nonlinear_system):
        R, _, y0, _ = simple_nonlinear_system
        solver = NewtonKrylov(R, 3)
        tolerances = ConvergenceTolerances(fnorm_tol=1e-8)
        first = solver.solve(y0, tolerances=tolerances)
        assert first.status is SolverStatus.SUCCESS

        second = solver.solve(first.y, tolerances=tolerances)
        assert second.status is SolverStatus.SUCCESS
        assert second.iterations == 0
        assert second.residual_evaluations == 1
        assert jnp.array_equal(second.y, first.y)

    def test_unreachable_tolerance_hits_max_iters(self, simple_nonlinear_system):
        R, _, y0, _ = simple_nonlinear_system
        tolerances = ConvergenceTolerances(fnorm_tol=1e-300, step_tol=1e-300)
        result = NewtonKrylov(R, 3).solve(y0, tolerances=tolerances, max_iters=3)
        assert result.status is SolverStatus.FAIL_MAX_ITERS
        assert result.iterations == 3

    def test_tiny_residuals_keep_iterating(self, stiff_linear_system):
        """Residuals far below 1e-154 are still driven towards the tolerance."""
        R, _, y0, _ = stiff_linear_system
        tolerances = ConvergenceTolerances(fnorm_tol=1e-300, step_tol=1e-300)
        result = NewtonKrylov(R, 2).solve(y0, tolerances=tolerances, max_iters=50)
        assert result.status is not SolverStatus.SUCCESS_SMALL_STEP
        assert result.status in (SolverStatus.SUCCESS, SolverStatus.FAIL_MAX_ITERS)
        assert result.fnorm < 1e-160
        if result.status is SolverStatus.SUCCESS:
            assert result.fnorm < 1e-300

    def test_ew1_sees_residual_of_capped_step(self):
        """F(y) = y - 1 from y = 3 with steps capped at 0.5."""
        seen = []

        class RecordingForcing(ForcingTerm):
            def __call__(self, fnorm, fnorm_prev, eta_prev, lin_residual_norm=None):
                seen.append(lin_residual_norm)
                return super().__call__(fnorm, fnorm_prev, eta_prev, lin_residual_norm)

        solver = NewtonKrylov(
            lambda y: y - 1.0,
            1,
            jvp=lambda y, v: v,
            globalization=FullStep(),
            forcing=RecordingForcing(choice="ew1"),
            max_newton_step=0.5,
        )
        result = solver.solve(jnp.array([3.0]), tolerances=ConvergenceTolerances(fnorm_tol=1e-10))
        assert result.status is SolverStatus.SUCCESS
        assert result.iterations == 4
        # ||F + J (s/4)|| = |2 - 0.5|
        assert seen[0] == pytest.approx(1.5)

    def test_stagnation_leaves_iterate_unchanged(self, simple_nonlinear_system):
        """A Jacobian with the wrong sign makes every step an ascent step."""
        R, jvp, y0, _ = simple_nonlinear_system
        wrong_jvp = lambda y, v: -jvp(y, v)
        solver = NewtonKrylov(R, 3, jvp=wrong_jvp, max_failures=2)
        result = solver.solve(y0)
        assert result.status is SolverStatus.FAIL_STAGNATION
        assert result.iterations == 0
        assert result.line_search_failures == 2
        assert jnp.array_equal(result.y, y0)

    def test_linear_solver_breakdown(self, simple_nonlinear_system):
        R, _, y0, _ = simple_nonlinear_system
        solver = NewtonKrylov(R, 3, jvp=lambda y, v: jnp.zeros_like(v))
        result = solver.solve(y0)
        assert result.status is SolverStatus.FAIL_LINSOLV
        assert jnp.array_equal(result.y, y0)

    def test_scaling_handles_disparate_magnitudes(self):
        """Unknowns of size 1e6 and 1e-3 with matching scaling vectors."""
        R = lambda y: jnp.array([y[0] / 1e6 - 2.0, 1e3 * y[1] - 3.0 + (y[0] / 1e6 - 2.0) ** 2])
        y_scale = jnp.array([1e-6, 1e3])
        result = NewtonKrylov(R, 2).solve(
            jnp.array([1e6, 1e-3]),
            y_scale=y_scale,
            tolerances=ConvergenceTolerances(fnorm_tol=1e-9),
        )
        assert result.status is SolverStatus.SUCCESS
        assert jnp.allclose(result.y, jnp.array([2e6, 3e-3]), rtol=1e-8)

    def test_constant_forcing_and_small_restart_length(self, simple_nonlinear_system):
        R, _, y0, expected = simple_nonlinear_system
        solver = NewtonKrylov(
            R,
            3,
            linsolver=GMRES(maxl=1, max_restarts=5),
            forcing=ForcingTerm(choice="constant", eta_const=1e-3),
        )
        result = solver.solve(y0, tolerances=ConvergenceTolerances(fnorm_tol=1e-10))
        assert result.converged
        assert jnp.allclose(result.y, expected, atol=1e-8)


class TestInputValidation:

    @pytest.fixture
    def never_called(self):
        def R(y):
            raise AssertionError("residual must not be evaluated")
        return R

    @pytest.mark.parametrize("bad", [[1.0, 0.0], [1.0, -2.0], [1.0, float("inf")]])
    def test_non_positive_scaling(self, never_called, bad):
        solver = NewtonKrylov(never_called, 2)
        with pytest.raises(InvalidInputError):
            solver.solve(jnp.ones(2), y_scale=jnp.array(bad))
        with pytest.raises(InvalidInputError):
            solver.solve(jnp.ones(2), f_scale=jnp.array(bad))

    def test_length_mismatch(self, never_called):
        solver = NewtonKrylov(never_called, 2)
        with pytest.raises(InvalidInputError):
            solver.solve(jnp.ones(3))
        with pytest.raises(InvalidInputError):
            solver.solve(jnp.ones(2), y_scale=jnp.ones(3))

    def test_bad_max_iters(self, never_called):
        solver = NewtonKrylov(never_called, 2)
        with pytest.raises(InvalidInputError):
            solver.solve(jnp.ones(2), max_iters=0)

    def test_bad_construction(self):
        with pytest.raises(InvalidInputError):
            NewtonKrylov(lambda y: y, 0)
        with pytest.raises(InvalidInputError):
            NewtonKrylov("not callable", 2)
        with pytest.raises(InvalidInputError):
            NewtonKrylov(lambda y: y, 2, jvp="complex-step")
        with pytest.raises(InvalidInputError):
            NewtonKrylov(lambda y: y, 2, max_failures=0)

    def test_residual_failure_at_initial_guess_propagates(self):
        solver = NewtonKrylov(lambda y: jnp.log(y), 1)
        with pytest.raises(ResidualEvaluationFailure):
            solver.solve(jnp.array([-1.0]))
