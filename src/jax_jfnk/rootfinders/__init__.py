"""Root-finding algorithms for nonlinear systems F(y) = 0."""

from .protocol import RootFinderProtocol
from .newtonkrylov import NewtonKrylov, SolverState, SolveResult


__all__ = [
    "RootFinderProtocol",
    "NewtonKrylov",
    "SolverState",
    "SolveResult",
]
