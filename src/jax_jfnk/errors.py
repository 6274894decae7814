"""Exceptions raised by the Newton-Krylov solver and its components."""


class JFNKError(Exception):
    """Base class for all solver errors."""


class AllocationFailure(JFNKError, MemoryError):
    """A work vector could not be allocated. Fatal."""


class InvalidInputError(JFNKError, ValueError):
    """
    Mismatched vector lengths, non-positive scaling entries or tolerances.

    Always raised before the first outer iteration.
    """


class ResidualEvaluationFailure(JFNKError):
    """
    The residual (or Jacobian-vector product) cannot be evaluated at a point.

    User callbacks raise this to signal an invalid point. The line search
    recovers from it by taking a shorter step.
    """


class LinearSolveBreakdown(JFNKError):
    """The Krylov solver produced no usable basis vector."""


class LineSearchFailure(JFNKError):
    """No acceptable step length was found along the Newton direction."""
