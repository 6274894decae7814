"""Globalization strategies for the Newton iteration."""

from .protocol import GlobalizationProtocol
from .linesearch import LineSearch, FullStep, LineSearchResult, merit


__all__ = [
    # Protocol
    "GlobalizationProtocol",

    # Strategies
    "LineSearch",
    "FullStep",
    "LineSearchResult",
    "merit",
]
