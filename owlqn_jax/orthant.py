"""Pseudo-gradient and orthant operations for the L1 term.

The L1 penalty C * ||x||_1 is not differentiable where a coordinate is zero.
OWLQN works around the kink with two devices:

1. The pseudo-gradient, the minimum-norm element of the subdifferential of

       F(x) = loss(x) + C * ||x||_1

   which replaces the gradient for direction selection and stopping.

2. Orthant projection, which zeroes every coordinate whose sign disagrees
   with a reference vector. Steps are confined to one orthant so a
   coordinate can reach exactly zero but never cross it in a single step.
"""

import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, jaxtyped

from owlqn_jax.types import ScalarLike


@jaxtyped(typechecker=beartype)
def pseudo_gradient(
    x: Float[Array, " n"],
    grad: Float[Array, " n"],
    l1_strength: ScalarLike,
) -> Float[Array, " n"]:
    """Compute the pseudo-gradient of loss(x) + C * ||x||_1.

    Per coordinate:

    - x_i != 0: pg_i = grad_i + C * sign(x_i)
    - x_i == 0: with gm = grad_i - C and gp = grad_i + C,
      pg_i = gm if gm > 0, gp if gp < 0, and 0 otherwise (zero lies in
      the subdifferential [gm, gp]).

    Args:
        x: Current point.
        grad: Gradient of the smooth loss at x.
        l1_strength: L1 strength C >= 0.

    Returns:
        The pseudo-gradient at x.
    """
    c = jnp.asarray(l1_strength, dtype=grad.dtype)

    grad_minus = grad - c
    grad_plus = grad + c
    at_zero = jnp.where(
        grad_minus > 0,
        grad_minus,
        jnp.where(grad_plus < 0, grad_plus, jnp.zeros_like(grad)),
    )

    return jnp.where(x == 0, at_zero, grad + c * jnp.sign(x))


@jaxtyped(typechecker=beartype)
def project_onto_orthant(
    v: Float[Array, " n"],
    reference: Float[Array, " n"],
) -> Float[Array, " n"]:
    """Zero every coordinate of v whose sign differs from the reference's.

    A zero reference coordinate pins the output coordinate to zero.
    Projecting twice with the same reference is a no-op.
    """
    return jnp.where(jnp.sign(v) == jnp.sign(reference), v, jnp.zeros_like(v))


@jaxtyped(typechecker=beartype)
def line_search_orthant(
    x: Float[Array, " n"],
    pseudo_grad: Float[Array, " n"],
) -> Float[Array, " n"]:
    """Orthant explored by a line search started at x.

    Non-zero coordinates keep their sign; a zero coordinate may only move
    in the direction of steepest descent, -pg_i.
    """
    return jnp.where(x == 0, -pseudo_grad, x)


@jaxtyped(typechecker=beartype)
def descent_direction(
    direction: Float[Array, " n"],
    pseudo_grad: Float[Array, " n"],
) -> Float[Array, " n"]:
    """Make a quasi-Newton direction consistent with the pseudo-gradient.

    The Hessian approximation ignores the kink at zero, so -H @ pg may fail
    to be a descent direction. In that case it is projected onto the
    orthant of -pg. If nothing is left after the projection, steepest
    descent -pg is used instead.

    Args:
        direction: Candidate direction, typically -H @ pg.
        pseudo_grad: Pseudo-gradient at the current point.

    Returns:
        A direction d with d^T pg < 0 whenever pg != 0.
    """
    steepest = -pseudo_grad
    direction = jnp.where(
        jnp.dot(direction, pseudo_grad) >= 0,
        project_onto_orthant(direction, steepest),
        direction,
    )
    return jnp.where(jnp.dot(direction, pseudo_grad) < 0, direction, steepest)
