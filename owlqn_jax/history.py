"""Limited-memory inverse Hessian approximation for OWLQN.

This module implements the L-BFGS history buffer and the two-loop recursion
used to compute an approximate inverse-Hessian-vector product without ever
forming a matrix.

The buffer stores the last M pairs

    s_k = x_{k+1} - x_k,    y_k = grad_{k+1} - grad_k,    rho_k = 1 / (y_k^T s_k)

in a ring of M slots. Each append overwrites the slot at ``next_idx`` so the
oldest pair is discarded once the ring is full, keeping memory at O(M n).

The two-loop recursion (Nocedal & Wright, Algorithm 7.4) computes H @ v in
O(M n) time:

    q = v
    for i = newest .. oldest:   alpha_i = rho_i s_i^T q;  q -= alpha_i y_i
    r = gamma * q,              gamma = s^T y / y^T y of the newest pair
    for i = oldest .. newest:   beta = rho_i y_i^T r;     r += (alpha_i - beta) s_i

Pairs that fail the curvature test are written as zeros with rho = 0 so they
occupy their slot but contribute nothing to the product.
"""

import equinox as eqx
import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, Int, jaxtyped


class LBFGSHistory(eqx.Module):
    """Ring buffer of (s, y, rho) triples.

    Attributes:
        s_history: Stored step vectors s_i = x_{i+1} - x_i.
        y_history: Stored gradient differences y_i.
        rho: Stored 1 / (y_i^T s_i), or 0 for pairs without usable curvature.
        count: Number of written slots (0 to memory size).
        next_idx: Next write position in the ring.
    """

    s_history: Float[Array, "memory n"]
    y_history: Float[Array, "memory n"]
    rho: Float[Array, " memory"]
    count: Int[Array, ""]
    next_idx: Int[Array, ""]


def history_init(n: int, memory: int, dtype=None) -> LBFGSHistory:
    """Initialize an empty history buffer.

    Args:
        n: Dimension of the parameter space.
        memory: Number of slots in the ring.
        dtype: Floating dtype of the stored vectors (JAX default if None).

    Returns:
        An LBFGSHistory with no stored pairs.
    """
    if memory < 1:
        raise ValueError(f"History memory must be >= 1, got {memory}")
    return LBFGSHistory(
        s_history=jnp.zeros((memory, n), dtype=dtype),
        y_history=jnp.zeros((memory, n), dtype=dtype),
        rho=jnp.zeros((memory,), dtype=dtype),
        count=jnp.asarray(0, dtype=jnp.int32),
        next_idx=jnp.asarray(0, dtype=jnp.int32),
    )


@jaxtyped(typechecker=beartype)
def history_append(
    history: LBFGSHistory,
    s: Float[Array, " n"],
    y: Float[Array, " n"],
    curvature_threshold: float = 1e-10,
) -> LBFGSHistory:
    """Write a new (s, y) pair into the slot at ``next_idx``.

    The pair is usable when y^T s is finite and strictly larger than
    ``curvature_threshold * |s| |y|``. Otherwise zeros are stored with
    rho = 0, which removes the slot's contribution from the two-loop
    recursion instead of propagating an infinite 1 / (y^T s).

    Args:
        history: Current history.
        s: Step vector s = x_{k+1} - x_k.
        y: Gradient difference y = grad_{k+1} - grad_k.
        curvature_threshold: Relative curvature threshold (default 1e-10).

    Returns:
        Updated history with the pair written and the write index advanced.
    """
    sTy = jnp.dot(s, y)
    scale = jnp.linalg.norm(s) * jnp.linalg.norm(y)
    usable = jnp.isfinite(sTy) & jnp.isfinite(scale) & (sTy > curvature_threshold * scale)

    rho = jnp.where(usable, 1.0 / jnp.where(usable, sTy, 1.0), 0.0)
    s = jnp.where(usable, s, jnp.zeros_like(s))
    y = jnp.where(usable, y, jnp.zeros_like(y))

    memory = history.s_history.shape[0]
    idx = history.next_idx

    return LBFGSHistory(
        s_history=history.s_history.at[idx].set(s),
        y_history=history.y_history.at[idx].set(y),
        rho=history.rho.at[idx].set(rho),
        count=jnp.minimum(history.count + 1, memory),
        next_idx=(idx + 1) % memory,
    )


@jaxtyped(typechecker=beartype)
def two_loop_recursion(
    history: LBFGSHistory,
    v: Float[Array, " n"],
) -> Float[Array, " n"]:
    """Compute H @ v with the L-BFGS two-loop recursion.

    Only the ``count`` most recent slots are visited; slots beyond that are
    masked out. The initial matrix is gamma * I with gamma taken from the
    newest pair, or the identity when the newest pair has no usable
    curvature (including the empty history).

    Complexity: O(M n) where M is the ring size.

    Args:
        history: History buffer.
        v: Vector to multiply (the pseudo-gradient in OWLQN).

    Returns:
        H @ v, the approximate inverse-Hessian-vector product.
    """
    memory = history.s_history.shape[0]
    count = history.count
    newest = (history.next_idx - 1) % memory

    # First loop: newest to oldest
    def backward(age, carry):
        q, alphas = carry
        idx = (newest - age) % memory
        valid = age < count
        alpha = history.rho[idx] * jnp.dot(history.s_history[idx], q)
        alpha = jnp.where(valid, alpha, 0.0)
        q = jnp.where(valid, q - alpha * history.y_history[idx], q)
        return q, alphas.at[age].set(alpha)

    q, alphas = jax.lax.fori_loop(
        0, memory, backward, (v, jnp.zeros((memory,), dtype=v.dtype))
    )

    # Initial scaling from the newest pair
    s_new = history.s_history[newest]
    y_new = history.y_history[newest]
    yTy = jnp.dot(y_new, y_new)
    has_curvature = (count > 0) & (history.rho[newest] > 0) & (yTy > 0)
    gamma = jnp.where(
        has_curvature, jnp.dot(s_new, y_new) / jnp.where(has_curvature, yTy, 1.0), 1.0
    )
    r = gamma * q

    # Second loop: oldest to newest
    def forward(i, r):
        age = memory - 1 - i
        idx = (newest - age) % memory
        valid = age < count
        beta = history.rho[idx] * jnp.dot(history.y_history[idx], r)
        return jnp.where(valid, r + (alphas[age] - beta) * history.s_history[idx], r)

    return jax.lax.fori_loop(0, memory, forward, r)
