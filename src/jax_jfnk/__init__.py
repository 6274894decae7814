"""
JAX Jacobian-free Newton-Krylov

A globalized inexact Newton solver for nonlinear systems F(y) = 0 written
in JAX. Jacobian-vector products come from finite differences, `jax.jvp`
or a user callback, and the Newton systems are solved with a scaled,
restarted GMRES.

Main components:
- rootfinders: outer Newton driver
- linsolvers: matrix-free Krylov solvers
- globalization: line search and full-step strategies
- convergence: stopping criteria and tolerances
"""

import jax

jax.config.update("jax_enable_x64", True)

from .errors import (
    JFNKError,
    AllocationFailure,
    InvalidInputError,
    ResidualEvaluationFailure,
    LinearSolveBreakdown,
    LineSearchFailure,
)
from .convergence import ConvergenceTolerances, SolverStatus
from .forcing import ForcingTerm
from .jacobian import FiniteDifferenceJVP, AnalyticJVP, AutodiffJVP
from .linsolvers import GMRES, KrylovResult
from .globalization import LineSearch, FullStep
from .rootfinders import NewtonKrylov, SolveResult
from .solve import find_root

__all__ = [
    # Solver interfaces
    "find_root",
    "NewtonKrylov",
    "SolveResult",
    "SolverStatus",
    "ConvergenceTolerances",

    # Components
    "GMRES",
    "KrylovResult",
    "LineSearch",
    "FullStep",
    "ForcingTerm",
    "FiniteDifferenceJVP",
    "AnalyticJVP",
    "AutodiffJVP",

    # Errors
    "JFNKError",
    "AllocationFailure",
    "InvalidInputError",
    "ResidualEvaluationFailure",
    "LinearSolveBreakdown",
    "LineSearchFailure",
]
