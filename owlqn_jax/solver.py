"""OWLQN solver implementation using Optimistix.

This module contains the main OWLQN solver class that extends
optimistix.AbstractMinimiser to minimise

    F(x) = loss(x) + C * ||x||_1

where loss is smooth and C >= 0. Each iteration:

1. Computes the pseudo-gradient pg of F (the minimum-norm subgradient).
2. Builds the quasi-Newton direction d = -H @ pg with the L-BFGS two-loop
   recursion, projecting it onto the orthant of -pg when it is not a
   descent direction.
3. Runs a backtracking line search whose trial points are projected back
   onto the current orthant, so coordinates hit exactly zero instead of
   crossing it.
4. Pushes (x_{k+1} - x_k, grad_{k+1} - grad_k) of the smooth gradient into
   the history ring buffer.

With C = 0 this reduces to plain L-BFGS with a backtracking line search.

The gradient of the smooth loss is either supplied by the user as a
``value_and_grad_fn`` oracle or computed by jax.value_and_grad.
"""

from collections.abc import Callable
from typing import Any, Optional

import equinox as eqx
import jax
import jax.numpy as jnp
import optimistix as optx
from jaxtyping import Array, Bool, Float, Int

from owlqn_jax.config import OWLQNConfig
from owlqn_jax.history import (
    LBFGSHistory,
    history_append,
    history_init,
    two_loop_recursion,
)
from owlqn_jax.linesearch import orthant_line_search
from owlqn_jax.objective import Evaluation, regularized_objective
from owlqn_jax.orthant import descent_direction, pseudo_gradient
from owlqn_jax.types import ObjectiveFn, ValueAndGradFn
from owlqn_jax.utils import args_closure


class OWLQNState(eqx.Module):
    """State for the OWLQN solver.

    This is a JAX PyTree (via eqx.Module) that holds all mutable state
    needed across OWLQN iterations. (f_val, grad, pseudo_grad) are always
    evaluated at the current iterate.

    Attributes:
        step_count: Current iteration number.
        f_val: Regularized objective loss(x_k) + C * ||x_k||_1.
        grad: Gradient of the smooth loss at x_k.
        pseudo_grad: Pseudo-gradient of the regularized objective at x_k.
        history: Ring buffer of (s, y, rho) triples.
        aux: Auxiliary output of the last accepted oracle evaluation.
        line_search_failed: Whether the last line search found no
            acceptable step.
        n_evals: Total number of oracle evaluations.
    """

    step_count: Int[Array, ""]
    f_val: Float[Array, ""]
    grad: Float[Array, " n"]
    pseudo_grad: Float[Array, " n"]
    history: LBFGSHistory
    aux: Any
    line_search_failed: Bool[Array, ""]
    n_evals: Int[Array, ""]


class OWLQN(optx.AbstractMinimiser):
    """Orthant-Wise Limited-memory Quasi-Newton minimiser.

    Minimises a smooth loss plus an L1 penalty of strength ``l1_strength``.
    Solutions are genuinely sparse: coordinates are driven to exactly zero
    by the orthant projection in the line search.

    Convergence is declared when the 2-norm of the pseudo-gradient drops
    below ``config.min_gradient_norm``. The solver also stops after
    ``config.max_iterations`` steps or when a line search fails.

    Attributes:
        l1_strength: L1 regularization strength C >= 0.
        config: Solver tunables (history size, line search constants,
            stopping thresholds).
        value_and_grad_fn: Optional oracle ``(x, args) -> (loss, grad)``.
            When given, the objective ``fn`` is never called and the
            auxiliary output is None.
        norm: Norm used on the pseudo-gradient for the stopping test.

    Example:
        >>> import jax.numpy as jnp
        >>> import optimistix as optx
        >>> from owlqn_jax import OWLQN
        >>>
        >>> def objective(x, args):
        ...     return 0.5 * jnp.sum((x - 1.0) ** 2)
        >>>
        >>> solver = OWLQN(l1_strength=0.5)
        >>> sol = optx.minimise(objective, solver, jnp.zeros(3), max_steps=None)
    """

    l1_strength: float = 0.0
    config: OWLQNConfig = eqx.field(default_factory=OWLQNConfig)
    value_and_grad_fn: Optional[ValueAndGradFn] = eqx.field(static=True, default=None)

    # Norm function for convergence checking (required by AbstractMinimiser)
    norm: Callable = eqx.field(static=True, default=optx.two_norm)

    def __check_init__(self):
        if isinstance(self.l1_strength, (int, float)) and self.l1_strength < 0:
            raise ValueError(
                f"l1_strength must be non-negative, got {self.l1_strength}"
            )

    @property
    def rtol(self) -> float:
        return 0.0

    @property
    def atol(self) -> float:
        return self.config.min_gradient_norm

    def _l1_strength(self, y: Float[Array, " n"]) -> Float[Array, ""]:
        return jnp.asarray(self.l1_strength, dtype=y.dtype)

    def _smooth_evaluation(
        self,
        fn: ObjectiveFn,
        y: Float[Array, " n"],
        args: Any,
    ) -> Evaluation:
        """Evaluate loss and gradient using the user oracle or AD."""
        if self.value_and_grad_fn is not None:
            f_val, grad = self.value_and_grad_fn(y, args)
            return Evaluation(f_val=f_val, grad=grad, aux=None)
        (f_val, aux), grad = jax.value_and_grad(fn, has_aux=True)(y, args)
        return Evaluation(f_val=f_val, grad=grad, aux=aux)

    def _build_regularized_evaluation(
        self,
        fn: ObjectiveFn,
        args: Any,
        l1_strength: Float[Array, ""],
    ) -> Callable[[Float[Array, " n"]], Evaluation]:
        """Return x -> Evaluation(loss(x) + C * ||x||_1, grad(x), aux)."""
        smooth = args_closure(lambda x, a: self._smooth_evaluation(fn, x, a), args)

        def evaluate(x: Float[Array, " n"]) -> Evaluation:
            return regularized_objective(smooth, x, l1_strength)

        return evaluate

    def init(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        f_struct: Any,
        aux_struct: Any,
        tags: frozenset[object],
    ) -> OWLQNState:
        """Initialize the OWLQN solver state.

        Evaluates the regularized objective and smooth gradient at the
        starting point, computes the pseudo-gradient and allocates an
        empty history ring buffer.

        Args:
            fn: Objective function with signature fn(y, args) -> (f_val, aux).
            y: Initial parameter values, a non-empty 1-D array.
            args: Additional arguments passed to fn.
            options: Runtime options dictionary.
            f_struct: Structure of function output (for type inference).
            aux_struct: Structure of auxiliary output.
            tags: Lineax tags for the problem.

        Returns:
            Initial OWLQNState.

        Raises:
            ValueError: If y is not a non-empty 1-D array, or if the oracle
                returns a gradient whose shape differs from y.
        """
        if y.ndim != 1 or y.shape[0] < 1:
            raise ValueError(
                f"OWLQN expects a non-empty 1-D parameter vector, got shape {y.shape}"
            )

        l1_strength = self._l1_strength(y)
        evaluate = self._build_regularized_evaluation(fn, args, l1_strength)
        evaluation = evaluate(y)

        if evaluation.grad.shape != y.shape:
            raise ValueError(
                f"Gradient shape {evaluation.grad.shape} does not match "
                f"parameter shape {y.shape}"
            )

        return OWLQNState(
            step_count=jnp.asarray(0, dtype=jnp.int32),
            f_val=evaluation.f_val,
            grad=evaluation.grad,
            pseudo_grad=pseudo_gradient(y, evaluation.grad, l1_strength),
            history=history_init(y.shape[0], self.config.history_size, dtype=y.dtype),
            aux=evaluation.aux,
            line_search_failed=jnp.asarray(False),
            n_evals=jnp.asarray(1, dtype=jnp.int32),
        )

    def step(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: OWLQNState,
        tags: frozenset[object],
    ) -> tuple[Float[Array, " n"], OWLQNState, Any]:
        """Perform one OWLQN iteration.

        This method:
        1. Computes d = -H @ pg with the two-loop recursion.
        2. Restores a descent direction via orthant projection if needed.
        3. Runs the orthant-constrained line search.
        4. Pushes the (s, y) pair into history if the search succeeded.
        5. Recomputes the pseudo-gradient at the new point.

        Args:
            fn: Objective function.
            y: Current parameter values.
            args: Additional arguments.
            options: Runtime options.
            state: Current solver state.
            tags: Lineax tags.

        Returns:
            Tuple of (new_y, new_state, aux).
        """
        l1_strength = self._l1_strength(y)
        evaluate = self._build_regularized_evaluation(fn, args, l1_strength)

        # Step 1-2: quasi-Newton direction made consistent with the orthant
        direction = -two_loop_recursion(state.history, state.pseudo_grad)
        direction = descent_direction(direction, state.pseudo_grad)

        # Step 3: line search confined to the current orthant
        ls_result = orthant_line_search(
            evaluate,
            x=y,
            f_val=state.f_val,
            grad=state.grad,
            aux=state.aux,
            pseudo_grad=state.pseudo_grad,
            direction=direction,
            alpha=self.config.line_search_alpha,
            beta=self.config.line_search_beta,
            max_steps=self.config.max_line_search_steps,
            orthant_constrained=l1_strength > 0,
        )
        y_new = ls_result.y

        # Step 4: history update from the smooth gradient
        appended = history_append(
            state.history,
            y_new - y,
            ls_result.grad - state.grad,
            curvature_threshold=self.config.curvature_threshold,
        )
        new_history = jax.tree_util.tree_map(
            lambda new, old: jnp.where(ls_result.success, new, old),
            appended,
            state.history,
        )

        # Step 5: pseudo-gradient at the new point
        new_pseudo_grad = pseudo_gradient(y_new, ls_result.grad, l1_strength)

        new_state = OWLQNState(
            step_count=state.step_count + 1,
            f_val=ls_result.f_val,
            grad=ls_result.grad,
            pseudo_grad=new_pseudo_grad,
            history=new_history,
            aux=ls_result.aux,
            line_search_failed=~ls_result.success,
            n_evals=state.n_evals + ls_result.n_evals,
        )

        return y_new, new_state, ls_result.aux

    def terminate(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        args: Any,
        options: dict[str, Any],
        state: OWLQNState,
        tags: frozenset[object],
    ) -> tuple[Bool[Array, ""], Any]:
        """Check if the solver should terminate.

        Stops when the pseudo-gradient norm is below the threshold
        (converged), when the last line search failed, or when the
        iteration budget is exhausted.

        Args:
            fn: Objective function.
            y: Current parameter values.
            args: Additional arguments.
            options: Runtime options.
            state: Current solver state.
            tags: Lineax tags.

        Returns:
            Tuple of (done, result) where done is a bool indicating
            termination and result is the termination status code.
        """
        converged = self.norm(state.pseudo_grad) < self.atol
        line_search_failed = state.line_search_failed
        max_iters_reached = state.step_count >= self.config.max_iterations

        done = converged | line_search_failed | max_iters_reached

        result = jax.lax.cond(
            converged,
            lambda: optx.RESULTS.successful,
            lambda: jax.lax.cond(
                line_search_failed,
                lambda: optx.RESULTS.nonlinear_divergence,
                lambda: jax.lax.cond(
                    max_iters_reached,
                    lambda: optx.RESULTS.max_steps_reached,
                    lambda: optx.RESULTS.successful,  # Still running
                ),
            ),
        )

        return done, result

    def postprocess(
        self,
        fn: Callable,
        y: Float[Array, " n"],
        aux: Any,
        args: Any,
        options: dict[str, Any],
        state: OWLQNState,
        tags: frozenset[object],
        result: Any,
    ) -> tuple[Float[Array, " n"], Any, dict[str, Any]]:
        """Post-process the optimization result.

        Args:
            fn: Objective function.
            y: Final parameter values.
            aux: Auxiliary output from last function evaluation.
            args: Additional arguments.
            options: Runtime options.
            state: Final solver state.
            tags: Lineax tags.
            result: Termination result code.

        Returns:
            Tuple of (y, aux, stats) where stats is a dictionary
            containing solver statistics.
        """
        stats = {
            "num_steps": state.step_count,
            "num_evaluations": state.n_evals,
            "final_objective": state.f_val,
            "final_pseudo_grad_norm": self.norm(state.pseudo_grad),
            "num_nonzero": jnp.count_nonzero(y),
        }

        return y, aux, stats
