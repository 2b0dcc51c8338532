"""Type definitions for OWLQN-JAX.

This module contains type aliases and custom types used throughout the package.
All types use jaxtyping for runtime type checking with beartype.
"""

from collections.abc import Callable
from typing import Any, Union

from jaxtyping import Array, Float

# Type aliases for common array shapes
Scalar = Float[Array, ""]
Vector = Float[Array, " n"]

# L1 strength may be a Python number or a 0-d array (e.g. when traced)
ScalarLike = Union[int, float, Scalar]

# Objective function type (optimistix convention): fn(x, args) -> (loss, aux)
ObjectiveFn = Callable[[Vector, Any], tuple[Scalar, Any]]

# Smooth objective oracle: value_and_grad_fn(x, args) -> (loss, ∇loss(x))
ValueAndGradFn = Callable[[Vector, Any], tuple[Scalar, Vector]]


# Result codes for solver termination
class SolverResult:
    """Constants for solver termination status."""

    SUCCESS = 0
    MAX_ITERATIONS = 1
    LINE_SEARCH_FAILED = 2
