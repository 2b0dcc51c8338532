"""High-level entry point running the OWLQN solver loop.

``optimize`` drives :class:`~owlqn_jax.solver.OWLQN` from Python, one jitted
``step`` at a time, so that progress can be reported between iterations:
an optional observer callback receives an :class:`IterationInfo` once per
iteration and the same information is logged at INFO level.

Running out of iterations or failing a line search is not an error. Both
are reported through :attr:`OWLQNResult.result`.
"""

import logging
from collections.abc import Callable, Mapping
from typing import Any, NamedTuple, Optional, Union

import equinox as eqx
import jax
import jax.numpy as jnp

from owlqn_jax.config import OWLQNConfig
from owlqn_jax.solver import OWLQN
from owlqn_jax.types import SolverResult, ValueAndGradFn
from owlqn_jax.utils import without_aux

logger = logging.getLogger(__name__)


class IterationInfo(NamedTuple):
    """Progress report passed to the observer callback.

    Attributes:
        iteration: Zero-based iteration index.
        objective: Regularized objective at the current iterate.
        pseudo_gradient_norm: 2-norm of the pseudo-gradient.
        heldout_metric: Value of ``heldout_fn`` at the current iterate: a
            float, a dict of named floats when ``heldout_fn`` returns a
            mapping, or None when no held-out evaluator was supplied.
    """

    iteration: int
    objective: float
    pseudo_gradient_norm: float
    heldout_metric: Optional[Union[float, dict[str, float]]]


def _heldout_metric(value: Any) -> Union[float, dict[str, float]]:
    if isinstance(value, Mapping):
        return {name: float(metric) for name, metric in value.items()}
    return float(value)


def _log_iteration(info: IterationInfo) -> None:
    message = "iter = %d, obj = %.6g, |pg| = %.3g"
    params = [info.iteration, info.objective, info.pseudo_gradient_norm]
    if isinstance(info.heldout_metric, dict):
        for name, metric in info.heldout_metric.items():
            message += ", %s = %.6g"
            params.extend([name, metric])
    elif info.heldout_metric is not None:
        message += ", heldout = %.6g"
        params.append(info.heldout_metric)
    logger.info(message, *params)


class OWLQNResult(NamedTuple):
    """Outcome of :func:`optimize`.

    Attributes:
        x: Final parameter vector.
        objective: Regularized objective at x.
        pseudo_gradient_norm: 2-norm of the pseudo-gradient at x.
        num_steps: Number of iterations performed.
        num_evaluations: Number of oracle evaluations.
        result: One of the :class:`~owlqn_jax.types.SolverResult` codes.
    """

    x: jax.Array
    objective: float
    pseudo_gradient_norm: float
    num_steps: int
    num_evaluations: int
    result: int

    @property
    def converged(self) -> bool:
        return self.result == SolverResult.SUCCESS


def optimize(
    fn: Optional[Callable[[jax.Array, Any], jax.Array]],
    x0: Any,
    l1_strength: float,
    *,
    args: Any = None,
    config: Optional[OWLQNConfig] = None,
    value_and_grad_fn: Optional[ValueAndGradFn] = None,
    heldout_fn: Optional[Callable[[jax.Array], Any]] = None,
    callback: Optional[Callable[[IterationInfo], None]] = None,
) -> OWLQNResult:
    """Minimise fn(x, args) + l1_strength * ||x||_1 starting from x0.

    Args:
        fn: Smooth loss fn(x, args) -> scalar. May be None when
            ``value_and_grad_fn`` is given.
        x0: Starting point, a non-empty 1-D array (typically zeros).
        l1_strength: L1 strength C >= 0. C = 0 gives plain L-BFGS.
        args: Additional arguments passed to the loss.
        config: Solver configuration (defaults to ``OWLQNConfig()``).
        value_and_grad_fn: Optional oracle (x, args) -> (loss, grad) used
            instead of differentiating ``fn``.
        heldout_fn: Optional evaluator x -> metric, reported once per
            iteration. It may return a scalar (e.g. held-out
            log-likelihood) or a mapping of named scalars (e.g.
            :func:`~owlqn_jax.maxent.heldout_metrics`).
        callback: Optional observer called once per iteration with an
            :class:`IterationInfo`.

    Returns:
        OWLQNResult with the final point and termination status.

    Raises:
        ValueError: If neither ``fn`` nor ``value_and_grad_fn`` is given,
            or on invalid inputs (see :meth:`OWLQN.init`).
    """
    if fn is None and value_and_grad_fn is None:
        raise ValueError("Either fn or value_and_grad_fn must be provided")

    config = OWLQNConfig() if config is None else config
    solver = OWLQN(
        l1_strength=l1_strength,
        config=config,
        value_and_grad_fn=value_and_grad_fn,
    )
    objective = None if fn is None else without_aux(fn)

    y = jnp.asarray(x0)
    if not jnp.issubdtype(y.dtype, jnp.floating):
        y = y.astype(jnp.result_type(float))

    state = solver.init(objective, y, args, {}, None, None, frozenset())
    step = eqx.filter_jit(solver.step)
    terminate = eqx.filter_jit(solver.terminate)

    iteration = 0
    while True:
        pg_norm = float(solver.norm(state.pseudo_grad))
        heldout = None if heldout_fn is None else _heldout_metric(heldout_fn(y))
        info = IterationInfo(
            iteration=iteration,
            objective=float(state.f_val),
            pseudo_gradient_norm=pg_norm,
            heldout_metric=heldout,
        )
        _log_iteration(info)
        if callback is not None:
            callback(info)

        done, _ = terminate(objective, y, args, {}, state, frozenset())
        if done:
            break
        y, state, _ = step(objective, y, args, {}, state, frozenset())
        iteration += 1

    if pg_norm < solver.atol:
        result = SolverResult.SUCCESS
    elif bool(state.line_search_failed):
        result = SolverResult.LINE_SEARCH_FAILED
        logger.warning(
            "Line search failed to find an acceptable step after %d trials "
            "at iteration %d",
            config.max_line_search_steps,
            iteration - 1,
        )
    else:
        result = SolverResult.MAX_ITERATIONS
        logger.info(
            "Reached max_iterations=%d without convergence (|pg| = %.3g)",
            config.max_iterations,
            pg_norm,
        )

    return OWLQNResult(
        x=y,
        objective=float(state.f_val),
        pseudo_gradient_norm=pg_norm,
        num_steps=int(state.step_count),
        num_evaluations=int(state.n_evals),
        result=result,
    )
