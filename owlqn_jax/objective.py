"""Regularized objective wrapper.

Adds the L1 penalty to the value returned by a smooth oracle while leaving
the gradient untouched: the non-smooth term is handled entirely through
the pseudo-gradient.
"""

from collections.abc import Callable
from typing import Any, NamedTuple

import jax.numpy as jnp
from jaxtyping import Array, Float

from owlqn_jax.types import Scalar, ScalarLike, Vector


class Evaluation(NamedTuple):
    """One oracle evaluation.

    Attributes:
        f_val: Objective value (smooth, or smooth + L1 once regularized).
        grad: Gradient of the smooth loss.
        aux: Auxiliary output of the oracle.
    """

    f_val: Scalar
    grad: Vector
    aux: Any


def l1_norm(x: Float[Array, " n"]) -> Scalar:
    """Sum of absolute values of x."""
    return jnp.sum(jnp.abs(x))


def regularized_objective(
    evaluate: Callable[[Vector], Evaluation],
    x: Vector,
    l1_strength: ScalarLike,
) -> Evaluation:
    """Evaluate loss(x) + C * ||x||_1 and the smooth gradient at x.

    Args:
        evaluate: Smooth oracle x -> Evaluation(loss, grad, aux).
        x: Point to evaluate.
        l1_strength: L1 strength C.

    Returns:
        Evaluation whose value includes the L1 penalty and whose gradient
        is that of the smooth loss only.
    """
    smooth = evaluate(x)
    c = jnp.asarray(l1_strength, dtype=x.dtype)
    return Evaluation(
        f_val=smooth.f_val + c * l1_norm(x),
        grad=smooth.grad,
        aux=smooth.aux,
    )
