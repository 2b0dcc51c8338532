"""Unit tests for the pseudo-gradient, orthant projection and the
regularized objective wrapper."""

import jax
import jax.numpy as jnp
import numpy as np

from owlqn_jax.objective import Evaluation, l1_norm, regularized_objective
from owlqn_jax.orthant import (
    descent_direction,
    line_search_orthant,
    project_onto_orthant,
    pseudo_gradient,
)

# Enable 64-bit precision for numerical accuracy
jax.config.update("jax_enable_x64", True)


class TestPseudoGradient:
    """Tests for the minimum-norm subgradient."""

    def test_nonzero_coordinates(self):
        """pg_i = grad_i + C * sign(x_i) wherever x_i != 0."""
        x = jnp.array([1.5, -2.0, 0.3])
        grad = jnp.array([0.2, 0.4, -1.0])
        pg = pseudo_gradient(x, grad, 0.5)
        np.testing.assert_allclose(pg, [0.7, -0.1, -0.5])

    def test_zero_coordinate_zero_gradient(self):
        """At x_i = 0 with grad_i = 0 and C > 0 zero is a subgradient."""
        x = jnp.zeros(3)
        grad = jnp.zeros(3)
        pg = pseudo_gradient(x, grad, 1.0)
        np.testing.assert_array_equal(pg, [0.0, 0.0, 0.0])

    def test_zero_coordinate_cases(self):
        """Left derivative, right derivative, and the bracketing case."""
        x = jnp.zeros(4)
        grad = jnp.array([2.0, -3.0, 0.5, -1.0])
        pg = pseudo_gradient(x, grad, 1.0)
        # gm = 1 > 0; gp = -2 < 0; [−0.5, 1.5] and [−2, 0] bracket zero
        np.testing.assert_array_equal(pg, [1.0, -2.0, 0.0, 0.0])

    def test_zero_strength_is_gradient(self):
        """With C = 0 the pseudo-gradient is the plain gradient."""
        x = jnp.array([0.0, 1.0, -1.0, 0.0])
        grad = jnp.array([0.3, -0.2, 0.1, -0.4])
        pg = pseudo_gradient(x, grad, 0.0)
        np.testing.assert_array_equal(pg, grad)

    def test_array_strength(self):
        """C may be given as a 0-d array."""
        x = jnp.array([0.0, 2.0])
        grad = jnp.array([3.0, 1.0])
        pg = pseudo_gradient(x, grad, jnp.array(1.0))
        np.testing.assert_array_equal(pg, [2.0, 2.0])

    def test_integer_strength(self):
        """C may be given as a Python int."""
        x = jnp.array([0.0, 2.0])
        grad = jnp.array([3.0, 1.0])
        pg = pseudo_gradient(x, grad, 1)
        np.testing.assert_array_equal(pg, [2.0, 2.0])


class TestOrthantProjection:
    """Tests for sign-based projection."""

    def test_zeroes_disagreeing_signs(self):
        v = jnp.array([1.0, -2.0, 3.0, -4.0, 5.0])
        reference = jnp.array([2.0, 1.0, -1.0, -3.0, 0.0])
        projected = project_onto_orthant(v, reference)
        np.testing.assert_array_equal(projected, [1.0, 0.0, 0.0, -4.0, 0.0])

    def test_idempotent(self):
        """Projecting an already-projected vector changes nothing."""
        key_v, key_r = jax.random.split(jax.random.PRNGKey(0))
        v = jax.random.normal(key_v, (50,))
        reference = jax.random.normal(key_r, (50,))
        once = project_onto_orthant(v, reference)
        twice = project_onto_orthant(once, reference)
        np.testing.assert_array_equal(once, twice)

    def test_line_search_orthant(self):
        """Zero coordinates take the sign of -pg, others keep their own."""
        x = jnp.array([1.0, 0.0, -2.0, 0.0])
        pg = jnp.array([5.0, 3.0, 5.0, -0.5])
        np.testing.assert_array_equal(
            line_search_orthant(x, pg), [1.0, -3.0, -2.0, 0.5]
        )


class TestDescentDirection:
    """Tests for restoring a descent direction."""

    def test_descent_direction_unchanged(self):
        pg = jnp.array([1.0, -1.0, 2.0])
        direction = jnp.array([-1.0, 2.0, 0.5])
        np.testing.assert_array_equal(descent_direction(direction, pg), direction)

    def test_ascent_direction_projected(self):
        """Coordinates disagreeing with -pg are dropped."""
        pg = jnp.array([1.0, -1.0, 2.0])
        direction = jnp.array([-1.0, 1.0, 5.0])
        result = descent_direction(direction, pg)
        np.testing.assert_array_equal(result, [-1.0, 1.0, 0.0])
        assert jnp.dot(result, pg) < 0

    def test_falls_back_to_steepest_descent(self):
        """A direction with nothing left after projection becomes -pg."""
        pg = jnp.array([1.0, -1.0])
        direction = jnp.array([2.0, -3.0])
        result = descent_direction(direction, pg)
        np.testing.assert_array_equal(result, [-1.0, 1.0])


class TestRegularizedObjective:
    """Tests for the L1 wrapper around the smooth oracle."""

    def test_value_and_gradient(self):
        target = jnp.array([1.0, -2.0, 3.0])

        def evaluate(x):
            return Evaluation(
                f_val=0.5 * jnp.sum((x - target) ** 2), grad=x - target, aux="aux"
            )

        x = jnp.array([0.5, -1.0, 0.0])
        result = regularized_objective(evaluate, x, 2.0)

        expected_smooth = 0.5 * (0.25 + 1.0 + 9.0)
        np.testing.assert_allclose(result.f_val, expected_smooth + 2.0 * 1.5)
        # The L1 term contributes no gradient
        np.testing.assert_array_equal(result.grad, x - target)
        assert result.aux == "aux"

    def test_l1_norm(self):
        np.testing.assert_allclose(l1_norm(jnp.array([1.0, -2.0, 0.0, 0.5])), 3.5)
