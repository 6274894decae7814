"""Linear solvers used for the inexact Newton step."""

from .protocol import LinearSolverProtocol
from .krylov import GMRES, KrylovResult


__all__ = [
    # Protocol
    "LinearSolverProtocol",

    # Krylov methods
    "GMRES",
    "KrylovResult",
]
