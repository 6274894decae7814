"""Forcing sequences for the inexact Newton method."""

import math
from typing import Optional

from flax import nnx

from .errors import InvalidInputError

_GOLDEN = 0.5 * (1.0 + math.sqrt(5.0))
ETA_FLOOR = 1e-12


class ForcingTerm(nnx.Module):
    """
    Tolerance eta_k handed to the linear solver at each Newton iteration.

    Choices:
        "ew2": Eisenstat-Walker choice 2,
            $\\eta_k = \\min(\\eta_{max}, \\gamma (\\|F_k\\| / \\|F_{k-1}\\|)^\\alpha)$,
            safeguarded by $\\gamma \\eta_{k-1}^\\alpha$ when that exceeds 0.1.
        "ew1": Eisenstat-Walker choice 1,
            $\\eta_k = |\\|F_k\\| - \\|F_{k-1} + J s_{k-1}\\|| / \\|F_{k-1}\\|$,
            safeguarded by $\\eta_{k-1}^{(1+\\sqrt{5})/2}$ when that exceeds 0.1.
        "constant": always eta_const.

    Attributes:
        choice: One of "ew2", "ew1", "constant"
        eta0: Tolerance of the first linear solve
        eta_max: Upper bound on eta_k
        gamma: Scale factor of choice 2
        alpha: Exponent of choice 2
        eta_const: Tolerance of the constant choice
    """

    def __init__(
        self,
        choice: str = "ew2",
        eta0: float = 0.1,
        eta_max: float = 0.9,
        gamma: float = 0.9,
        alpha: float = 2.0,
        eta_const: float = 0.1,
    ):
        if choice not in ("ew2", "ew1", "constant"):
            raise InvalidInputError(f"Unknown forcing term choice {choice!r}.")
        if not 0.0 < eta_max < 1.0:
            raise InvalidInputError(f"eta_max must lie in (0, 1), got {eta_max}.")
        if not 0.0 < gamma <= 1.0 or not 1.0 < alpha <= 2.0:
            raise InvalidInputError("Need 0 < gamma <= 1 and 1 < alpha <= 2.")
        self.choice = choice
        self.eta0 = eta0
        self.eta_max = eta_max
        self.gamma = gamma
        self.alpha = alpha
        self.eta_const = eta_const

    def initial(self) -> float:
        return self.eta_const if self.choice == "constant" else min(self.eta0, self.eta_max)

    def __call__(
        self,
        fnorm: float,
        fnorm_prev: float,
        eta_prev: float,
        lin_residual_norm: Optional[float] = None,
    ) -> float:
        """
        Next forcing term.

        Args:
            fnorm: ||F_k|| (scaled, Euclidean)
            fnorm_prev: ||F_{k-1}||
            eta_prev: eta_{k-1}
            lin_residual_norm: ||F_{k-1} + J s_{k-1}|| from the last linear
                solve; required by choice "ew1"

        Returns:
            eta_k
        """
        if self.choice == "constant":
            return self.eta_const
        if fnorm_prev <= 0.0:
            return self.eta_max

        if self.choice == "ew1":
            if lin_residual_norm is None:
                raise InvalidInputError("Choice 'ew1' needs the linear residual norm.")
            eta = abs(fnorm - lin_residual_norm) / fnorm_prev
            safeguard = eta_prev**_GOLDEN
        else:
            eta = self.gamma * (fnorm / fnorm_prev) ** self.alpha
            safeguard = self.gamma * eta_prev**self.alpha

        if safeguard > 0.1:
            eta = max(eta, safeguard)
        return max(min(eta, self.eta_max), ETA_FLOOR)
