"""Protocol for nonlinear root-finding algorithms."""

from typing import Optional, Protocol, runtime_checkable

from jax import Array

from ..convergence import ConvergenceTolerances
from .newtonkrylov import SolveResult


@runtime_checkable
class RootFinderProtocol(Protocol):
    """
    Protocol for root-finding algorithms.

    A root finder is constructed around a residual function F and a fixed
    problem size, and finds y with F(y) = 0 from a given initial guess.
    """

    def solve(
        self,
        y_guess: Array,
        y_scale: Optional[Array] = None,
        f_scale: Optional[Array] = None,
        tolerances: Optional[ConvergenceTolerances] = None,
        max_iters: Optional[int] = None,
    ) -> SolveResult:
        """
        Find the root of F(y) = 0.

        Args:
            y_guess: Initial guess for the solution
            y_scale: Positive per-component scaling of y
            f_scale: Positive per-component scaling of F(y)
            tolerances: Outer iteration tolerances
            max_iters: Optional override of tolerances.max_iters

        Returns:
            SolveResult holding the final iterate and terminal status
        """
        ...
