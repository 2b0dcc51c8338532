"""Orthant-constrained backtracking line search for OWLQN.

Each trial point is projected back onto the orthant of the starting point
before it is evaluated:

    x(t) = project(x0 + t * d; xi),    xi_i = x0_i if x0_i != 0 else -pg_i

and the first trial satisfying the sufficient-decrease condition

    F(x(t)) <= F(x0) + alpha * (x(t) - x0)^T pg

is accepted, where F is the L1-regularized objective and pg the
pseudo-gradient at x0. Step sizes are 1, beta, beta^2, ... up to a fixed
number of trials.
"""

from collections.abc import Callable
from typing import Any, NamedTuple, Union

import jax
import jax.numpy as jnp
from jaxtyping import Array, Bool, Int

from owlqn_jax.objective import Evaluation
from owlqn_jax.orthant import line_search_orthant, project_onto_orthant
from owlqn_jax.types import Scalar, Vector


class LineSearchResult(NamedTuple):
    """Result from the line search.

    When the search fails, ``y``, ``f_val``, ``grad`` and ``aux`` are the
    values at the starting point.

    Attributes:
        step_size: The last step size tried.
        y: Accepted point.
        f_val: Regularized objective at the accepted point.
        grad: Smooth gradient at the accepted point.
        aux: Auxiliary oracle output at the accepted point.
        success: Whether a trial satisfied the sufficient-decrease condition.
        n_evals: Number of oracle evaluations.
    """

    step_size: Scalar
    y: Vector
    f_val: Scalar
    grad: Vector
    aux: Any
    success: Bool[Array, ""]
    n_evals: Int[Array, ""]


class _LineSearchState(NamedTuple):
    """Internal state for the backtracking loop."""

    step_size: Scalar
    y: Vector
    evaluation: Evaluation
    accepted: Bool[Array, ""]
    n_evals: Int[Array, ""]


def orthant_line_search(
    evaluate: Callable[[Vector], Evaluation],
    x: Vector,
    f_val: Scalar,
    grad: Vector,
    aux: Any,
    pseudo_grad: Vector,
    direction: Vector,
    alpha: float = 0.1,
    beta: float = 0.5,
    max_steps: int = 50,
    init_step_size: float = 1.0,
    orthant_constrained: Union[bool, Bool[Array, ""]] = True,
) -> LineSearchResult:
    """Backtrack along ``direction`` inside the orthant of x.

    Args:
        evaluate: Regularized objective x -> Evaluation(F(x), grad(x), aux).
        x: Starting point.
        f_val: Regularized objective at x.
        grad: Smooth gradient at x.
        aux: Auxiliary oracle output at x.
        pseudo_grad: Pseudo-gradient at x.
        direction: Search direction (must satisfy direction^T pg < 0).
        alpha: Sufficient-decrease constant (default 0.1).
        beta: Step reduction factor (default 0.5).
        max_steps: Maximum number of trial points (default 50).
        init_step_size: First step size tried (default 1.0).
        orthant_constrained: Whether trial points are projected onto the
            orthant. Without an L1 term there is no kink to respect and
            the search is a plain backtracking search.

    Returns:
        LineSearchResult with the accepted point, or the starting point and
        ``success=False`` if no trial was accepted within ``max_steps``.
    """
    orthant = line_search_orthant(x, pseudo_grad)

    def trial(step_size):
        y_trial = x + step_size * direction
        y_trial = jnp.where(
            orthant_constrained, project_onto_orthant(y_trial, orthant), y_trial
        )
        evaluation = evaluate(y_trial)
        sufficient_decrease = f_val + alpha * jnp.dot(y_trial - x, pseudo_grad)
        # NaN objectives compare False and are rejected
        accepted = evaluation.f_val <= sufficient_decrease
        return y_trial, evaluation, accepted

    step_size = jnp.asarray(init_step_size, dtype=x.dtype)
    y_init, evaluation_init, accepted_init = trial(step_size)

    init_state = _LineSearchState(
        step_size=step_size,
        y=y_init,
        evaluation=evaluation_init,
        accepted=accepted_init,
        n_evals=jnp.asarray(1, dtype=jnp.int32),
    )

    def cond_fn(state: _LineSearchState) -> Bool[Array, ""]:
        return ~state.accepted & (state.n_evals < max_steps)

    def body_fn(state: _LineSearchState) -> _LineSearchState:
        new_step_size = beta * state.step_size
        y_new, evaluation_new, accepted_new = trial(new_step_size)
        return _LineSearchState(
            step_size=new_step_size,
            y=y_new,
            evaluation=evaluation_new,
            accepted=accepted_new,
            n_evals=state.n_evals + 1,
        )

    final_state = jax.lax.while_loop(cond_fn, body_fn, init_state)
    success = final_state.accepted

    def select(new, old):
        return jnp.where(success, new, old)

    return LineSearchResult(
        step_size=final_state.step_size,
        y=select(final_state.y, x),
        f_val=select(final_state.evaluation.f_val, f_val),
        grad=select(final_state.evaluation.grad, grad),
        aux=jax.tree_util.tree_map(select, final_state.evaluation.aux, aux),
        success=success,
        n_evals=final_state.n_evals,
    )
