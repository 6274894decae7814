"""Protocol for the linear solvers used inside the Newton iteration."""

from typing import Optional, Protocol, runtime_checkable

from jax import Array

from ..custom_types import LinearMap
from .krylov import KrylovResult


@runtime_checkable
class LinearSolverProtocol(Protocol):
    """
    Protocol for matrix-free linear solvers.

    Defines the interface for solving the Newton system J*s = b where J is
    only available through products J*v. Any class implementing a __call__()
    method with this signature can be used by the Newton-Krylov driver.
    """

    def __call__(
        self,
        A: LinearMap,
        b: Array,
        tol: float,
        x_scale: Optional[Array] = None,
        b_scale: Optional[Array] = None,
        psolve: Optional[LinearMap] = None,
    ) -> KrylovResult:
        """
        Solve the linear system A*x = b.

        Args:
            A: Linear operator with signature x -> A*x
            b: Right-hand side vector
            tol: Relative tolerance on the scaled residual norm
            x_scale: Positive scaling of the unknowns
            b_scale: Positive scaling of the residual
            psolve: Optional right preconditioner with signature v -> P^{-1}*v

        Returns:
            A KrylovResult holding the approximate solution and diagnostics
        """
        ...
