import time
from typing import Optional, Union

from jax import Array

from .convergence import ConvergenceTolerances
from .custom_types import JVPFn, ResidualFn
from .globalization import GlobalizationProtocol
from .linsolvers import LinearSolverProtocol
from .rootfinders import NewtonKrylov, SolveResult


def find_root(
    residual_fn: ResidualFn,
    y_guess: Array,
    y_scale: Optional[Array] = None,
    f_scale: Optional[Array] = None,
    tolerances: Optional[ConvergenceTolerances] = None,
    jvp: Optional[Union[str, JVPFn]] = None,
    linsolver: Optional[LinearSolverProtocol] = None,
    globalization: Optional[GlobalizationProtocol] = None,
    verbose: bool = False,
) -> SolveResult:
    """
    Solve F(y) = 0 with a Jacobian-free Newton-Krylov method.

    Builds a NewtonKrylov solver for the size of `y_guess` and runs a single
    solve.

    Args:
        residual_fn: Residual function y -> F(y)
        y_guess: Initial guess
        y_scale: Positive variable scaling (default: ones)
        f_scale: Positive residual scaling (default: ones)
        tolerances: Outer iteration tolerances
        jvp: None/"fd", "autodiff" or a callable (y, v) -> J(y)*v
        linsolver: Linear solver (default: GMRES)
        globalization: Step acceptance strategy (default: LineSearch)
        verbose: Print progress information

    Returns:
        SolveResult

    Example usage:
    ```python
    import jax.numpy as jnp
    from jax_jfnk import find_root, ConvergenceTolerances

    def residual(y):
        return jnp.array([-101.0 * y[0] - 100.0 * y[1], y[0]])

    result = find_root(
        residual,
        jnp.array([2.0, 1.0]),
        tolerances=ConvergenceTolerances(fnorm_tol=1e-5, step_tol=1e-5),
    )
    ```
    """
    n = len(y_guess)
    solver = NewtonKrylov(
        residual_fn,
        n,
        jvp=jvp,
        linsolver=linsolver,
        globalization=globalization,
    )

    if verbose:
        print(f"Solving with {type(solver).__name__}")
        print(
            f"Unknowns: {n}, "
            f"linear solver: {type(solver.linsolver).__name__}, "
            f"globalization: {type(solver.globalization).__name__}"
        )

    start_wallclock = time.time()
    result = solver.solve(y_guess, y_scale, f_scale, tolerances)
    elapsed_wallclock = time.time() - start_wallclock

    if verbose:
        print(
            f"{result.status.name} after {result.iterations} iterations "
            f"({result.residual_evaluations} residual evaluations, "
            f"{result.linear_iterations} GMRES iterations) "
            f"in {elapsed_wallclock:.3f}s"
        )
        print(f"Final residual norm: {result.fnorm:.2e}")

    return result
