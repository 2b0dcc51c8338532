"""Unit tests for the orthant-constrained backtracking line search."""

import jax
import jax.numpy as jnp
import numpy as np

from owlqn_jax.linesearch import orthant_line_search
from owlqn_jax.objective import Evaluation, regularized_objective
from owlqn_jax.orthant import pseudo_gradient

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


def _quadratic(target, l1_strength):
    """Regularized evaluator for 0.5 * ||x - target||^2 + C * ||x||_1."""

    def smooth(x):
        return Evaluation(
            f_val=0.5 * jnp.sum((x - target) ** 2), grad=x - target, aux=None
        )

    def evaluate(x):
        return regularized_objective(smooth, x, l1_strength)

    return evaluate


def _search(evaluate, x, l1_strength, direction=None, **kwargs):
    start = evaluate(x)
    pg = pseudo_gradient(x, start.grad, l1_strength)
    if direction is None:
        direction = -pg
    return orthant_line_search(
        evaluate,
        x=x,
        f_val=start.f_val,
        grad=start.grad,
        aux=start.aux,
        pseudo_grad=pg,
        direction=direction,
        **kwargs,
    )


class TestOrthantLineSearch:
    """Tests for the backtracking search."""

    def test_accepts_unit_step(self):
        """A Newton step on a unit quadratic is accepted at t = 1."""
        target = jnp.array([1.0, -2.0, 3.0])
        evaluate = _quadratic(target, 0.0)
        result = _search(evaluate, jnp.zeros(3), 0.0)

        assert bool(result.success)
        assert int(result.n_evals) == 1
        np.testing.assert_allclose(result.step_size, 1.0)
        np.testing.assert_allclose(result.y, target)
        np.testing.assert_allclose(result.f_val, 0.0, atol=1e-12)
        np.testing.assert_allclose(result.grad, jnp.zeros(3), atol=1e-12)

    def test_backtracks_on_overshoot(self):
        """A direction four times too long needs to be halved twice."""
        target = jnp.array([1.0, 1.0])
        evaluate = _quadratic(target, 0.0)
        x = jnp.zeros(2)
        result = _search(evaluate, x, 0.0, direction=4.0 * target)

        assert bool(result.success)
        assert int(result.n_evals) == 3
        np.testing.assert_allclose(result.step_size, 0.25)
        np.testing.assert_allclose(result.y, target)

    def test_sufficient_decrease_holds(self):
        target = jnp.array([0.5, -1.5, 2.0, 0.1])
        evaluate = _quadratic(target, 0.3)
        x = jnp.array([1.0, 0.0, -0.5, 0.2])
        start = evaluate(x)
        pg = pseudo_gradient(x, start.grad, 0.3)
        result = _search(evaluate, x, 0.3, direction=-3.0 * pg)

        assert bool(result.success)
        bound = start.f_val + 0.1 * jnp.dot(result.y - x, pg)
        assert float(result.f_val) <= float(bound)

    def test_trial_points_do_not_cross_zero(self):
        """Coordinates stop at zero instead of changing sign."""
        target = jnp.array([-1.0, 2.0])
        evaluate = _quadratic(target, 0.1)
        x = jnp.array([1.0, 1.0])
        result = _search(evaluate, x, 0.1, direction=jnp.array([-2.0, 1.0]))

        assert bool(result.success)
        assert float(result.y[0]) == 0.0
        assert float(result.y[1]) > 0.0

    def test_zero_coordinate_with_zero_pseudo_gradient_stays_zero(self):
        """|grad_i| <= C at x_i = 0 pins the coordinate for this step."""
        target = jnp.array([0.05, 2.0])
        evaluate = _quadratic(target, 0.1)
        x = jnp.zeros(2)
        result = _search(evaluate, x, 0.1, direction=jnp.array([1.0, 1.9]))

        assert bool(result.success)
        assert float(result.y[0]) == 0.0
        np.testing.assert_allclose(result.y[1], 1.9)

    def test_failure_returns_start_point(self):
        """No acceptable step within max_steps is reported, not looped on."""
        x = jnp.array([1.0, -1.0])

        def evaluate(y):
            # Every trial is worse than the start
            return Evaluation(f_val=jnp.sum(y**2) + 10.0, grad=2.0 * y, aux=None)

        start_f = jnp.sum(x**2)
        grad = 2.0 * x
        result = orthant_line_search(
            evaluate,
            x=x,
            f_val=start_f,
            grad=grad,
            aux=None,
            pseudo_grad=grad,
            direction=-grad,
            max_steps=7,
        )

        assert not bool(result.success)
        assert int(result.n_evals) == 7
        np.testing.assert_array_equal(result.y, x)
        np.testing.assert_allclose(result.f_val, start_f)
        np.testing.assert_array_equal(result.grad, grad)

    def test_aux_follows_accepted_point(self):
        target = jnp.array([1.0, 2.0])

        def evaluate(x):
            return Evaluation(
                f_val=0.5 * jnp.sum((x - target) ** 2),
                grad=x - target,
                aux={"sum": jnp.sum(x)},
            )

        x = jnp.zeros(2)
        start = evaluate(x)
        result = orthant_line_search(
            evaluate,
            x=x,
            f_val=start.f_val,
            grad=start.grad,
            aux=start.aux,
            pseudo_grad=start.grad,
            direction=-start.grad,
        )
        np.testing.assert_allclose(result.aux["sum"], 3.0)

    def test_is_jittable(self):
        target = jnp.array([1.0, -2.0, 3.0])
        evaluate = _quadratic(target, 0.5)

        @jax.jit
        def run(x):
            return _search(evaluate, x, 0.5)

        result = run(jnp.zeros(3))
        assert bool(result.success)
        np.testing.assert_allclose(result.y, [0.5, -1.5, 2.5])
