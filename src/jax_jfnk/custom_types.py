"""Type aliases to improve type hint readability."""

from typing import Callable, TypeAlias
from jax import Array

LinearMap: TypeAlias = Callable[[Array], Array]
ResidualFn: TypeAlias = Callable[[Array], Array]
JVPFn: TypeAlias = Callable[[Array, Array], Array]
