"""Linear solvers based on Krylov subspaces."""

import logging
import math
from dataclasses import dataclass
from typing import Optional, Tuple

from flax import nnx
from jax import Array
import jax.numpy as jnp
from jax.scipy.linalg import solve_triangular

from .. import vectors
from ..custom_types import LinearMap
from ..errors import InvalidInputError, LinearSolveBreakdown

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KrylovResult:
    """
    Outcome of one linear solve.

    Attributes:
        x: Approximate solution in unscaled variables
        residual_norm: Final scaled residual norm ||S_b (b - A x)||_2
        scaled_residual: The scaled residual vector S_b (b - A x)
        residual_history: Scaled residual norm after every inner iteration
        iterations: Total number of inner (Arnoldi) iterations
        restarts: Number of restarts performed
        converged: Whether the relative tolerance was met
        reduced_accuracy: Breakdown stopped the iteration before the
            tolerance was met; x is the best available estimate
    """

    x: Array
    residual_norm: float
    scaled_residual: Array
    residual_history: Tuple[float, ...]
    iterations: int
    restarts: int
    converged: bool
    reduced_accuracy: bool = False


def _givens(a: float, b: float) -> Tuple[float, float]:
    """Rotation (c, s) with -s*a + c*b = 0."""
    if b == 0.0:
        return 1.0, 0.0
    r = math.hypot(a, b)
    return a / r, b / r


class GMRES(nnx.Module):
    """
    Restarted Generalised Minimal Residual (GMRES) in a scaled inner product.

    Solves the scaled system
    $$ (S_b A S_x^{-1}) (S_x x) = S_b b $$
    with an Arnoldi basis built by modified Gram-Schmidt. Givens rotations
    are applied to the Hessenberg matrix column by column so the residual
    norm of the least-squares problem is known at every inner iteration.

    Implements: LinearSolverProtocol

    Attributes:
        maxl: Maximum Krylov subspace dimension before a restart
        max_restarts: Maximum number of restarts
        breakdown_tol: Relative size of the new subdiagonal entry below which
            the Arnoldi process is considered to have broken down
    """

    def __init__(
        self,
        maxl: int = 20,
        max_restarts: int = 2,
        breakdown_tol: float = 1e-13,
    ):
        if maxl < 1:
            raise InvalidInputError(f"maxl must be at least 1, got {maxl}.")
        if max_restarts < 0:
            raise InvalidInputError(
                f"max_restarts must be non-negative, got {max_restarts}."
            )
        self.maxl = maxl
        self.max_restarts = max_restarts
        self.breakdown_tol = breakdown_tol

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
        Solve A*x = b using GMRES.

        Args:
            A: Linear operator with signature x -> A*x
            b: Right-hand side vector
            tol: Stop once ||S_b (b - A x)|| <= tol * ||S_b b||
            x_scale: Positive scaling of the unknowns (default: ones)
            b_scale: Positive scaling of the residual (default: ones)
            psolve: Optional right preconditioner v -> P^{-1}*v

        Returns:
            KrylovResult with the approximate solution

        Raises:
            LinearSolveBreakdown: If not a single usable basis vector could
                be generated
        """
        n = b.shape[0]
        x_scale = jnp.ones_like(b) if x_scale is None else x_scale
        b_scale = jnp.ones_like(b) if b_scale is None else b_scale
        vectors.check_length(n, x_scale, b_scale)

        def scaled_op(v_bar: Array) -> Array:
            v = v_bar / x_scale
            if psolve is not None:
                v = psolve(v)
            return vectors.prod(b_scale, A(v))

        def unscale(x_bar: Array) -> Array:
            x = x_bar / x_scale
            if psolve is not None:
                x = psolve(x)
            return x

        rhs = vectors.prod(b_scale, b)
        bnorm = vectors.l2_norm(rhs)
        if bnorm == 0.0:
            return KrylovResult(
                x=jnp.zeros_like(b),
                residual_norm=bnorm,
                scaled_residual=rhs,
                residual_history=(bnorm,),
                iterations=0,
                restarts=0,
                converged=True,
            )

        target = tol * bnorm
        x_bar = jnp.zeros_like(b)
        r_bar = rhs
        rnorm = bnorm
        history = [bnorm]
        iterations = 0
        converged = False
        breakdown = False

        for cycle in range(self.max_restarts + 1):
            basis = [r_bar / rnorm]
            r_cols = []  # columns of the rotated Hessenberg matrix
            cs, sn = [], []
            g = [rnorm]

            for j in range(self.maxl):
                w = scaled_op(basis[j])
                wnorm = vectors.l2_norm(w)
                col = []
                for i in range(j + 1):
                    h = vectors.dot(w, basis[i])
                    w = vectors.axpby(1.0, w, -h, basis[i])
                    col.append(h)
                hnext = vectors.l2_norm(w)
                col.append(hnext)

                for i in range(j):
                    a, c = col[i], col[i + 1]
                    col[i] = cs[i] * a + sn[i] * c
                    col[i + 1] = -sn[i] * a + cs[i] * c
                cj, sj = _givens(col[j], col[j + 1])
                col[j] = cj * col[j] + sj * col[j + 1]
                iterations += 1
                if abs(col[j]) <= self.breakdown_tol * wnorm:
                    # New direction adds nothing to the column space.
                    breakdown = True
                    logger.debug(
                        "GMRES: singular Hessenberg column at inner iteration %d.",
                        iterations,
                    )
                    break
                cs.append(cj)
                sn.append(sj)
                g.append(-sj * g[j])
                g[j] = cj * g[j]
                r_cols.append(col[: j + 1])

                rnorm = abs(g[j + 1])
                history.append(rnorm)

                breakdown = hnext <= self.breakdown_tol * wnorm
                if not breakdown:
                    basis.append(w / hnext)
                if rnorm <= target:
                    converged = True
                    break
                if breakdown:
                    logger.debug(
                        "GMRES breakdown at inner iteration %d (h=%.3e).",
                        iterations, hnext,
                    )
                    break

            m = len(r_cols)
            if m == 0:
                if cycle == 0:
                    raise LinearSolveBreakdown(
                        "GMRES could not build a usable Krylov basis."
                    )
                breakdown = True
                break

            R = jnp.array(
                [[r_cols[j][i] if i <= j else 0.0 for j in range(m)]
                 for i in range(m)],
                dtype=jnp.float64,
            )
            coeffs = solve_triangular(R, jnp.array(g[:m]), lower=False)
            for i in range(m):
                x_bar = vectors.axpby(1.0, x_bar, float(coeffs[i]), basis[i])

            r_bar = self._residual_from_basis(basis, cs, sn, g, m)

            if converged or breakdown or cycle == self.max_restarts:
                break
            rnorm = vectors.l2_norm(r_bar)
            logger.debug("GMRES restart %d, residual %.3e.", cycle + 1, rnorm)

        return KrylovResult(
            x=unscale(x_bar),
            residual_norm=rnorm,
            scaled_residual=r_bar,
            residual_history=tuple(history),
            iterations=iterations,
            restarts=cycle,
            converged=converged,
            reduced_accuracy=breakdown and not converged,
        )

    @staticmethod
    def _residual_from_basis(basis, cs, sn, g, m: int) -> Array:
        """
        Scaled residual vector V_{m+1} Q^T (g_m e_{m+1}) of the current cycle.

        The component along the last basis vector is dropped when breakdown
        left it undefined; its coefficient is then negligible.
        """
        e = [0.0] * m + [g[m]]
        for i in reversed(range(m)):
            a, b = e[i], e[i + 1]
            e[i] = cs[i] * a - sn[i] * b
            e[i + 1] = sn[i] * a + cs[i] * b
        r = jnp.zeros_like(basis[0])
        for i in range(min(m + 1, len(basis))):
            r = vectors.axpby(1.0, r, e[i], basis[i])
        return r
