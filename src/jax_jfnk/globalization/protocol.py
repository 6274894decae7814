"""Protocol for globalization (step acceptance) strategies."""

from typing import Protocol, runtime_checkable

from jax import Array

from ..jacobian import ResidualEvaluator
from .linesearch import LineSearchResult


@runtime_checkable
class GlobalizationProtocol(Protocol):
    """
    Protocol for globalization strategies.

    Given the current iterate and a Newton direction, decide how far to move
    along the direction. Implementations raise LineSearchFailure when no
    acceptable step exists.
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
        Choose the step length along `step`.

        Args:
            residual_fn: Residual evaluator F(y)
            y: Current iterate
            fy: Residual at y
            step: Newton direction
            slope: Directional derivative of the merit function at lambda=0
            y_scale: Variable scaling
            f_scale: Residual scaling
            step_tol: Scaled step tolerance of the outer iteration

        Returns:
            LineSearchResult describing the accepted point
        """
        ...
