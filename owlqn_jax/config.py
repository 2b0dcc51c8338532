"""Tunable parameters of the OWLQN solver."""

import equinox as eqx


class OWLQNConfig(eqx.Module):
    """Configuration for the OWLQN solver.

    All fields are static so that a config can be closed over by jitted
    code and used for array shapes (``history_size``) and loop bounds.

    Attributes:
        history_size: Number of (s, y) pairs kept for the two-loop recursion.
        line_search_alpha: Sufficient-decrease constant of the Armijo test.
        line_search_beta: Step shrink factor of the backtracking search.
        max_iterations: Maximum number of outer iterations.
        min_gradient_norm: Convergence threshold on the pseudo-gradient
            2-norm.
        max_line_search_steps: Maximum number of trial points per line search.
        curvature_threshold: Pairs with ``y.s <= threshold * |s| |y|`` are
            stored without any contribution to the Hessian approximation.
    """

    history_size: int = eqx.field(static=True, default=10)
    line_search_alpha: float = eqx.field(static=True, default=0.1)
    line_search_beta: float = eqx.field(static=True, default=0.5)
    max_iterations: int = eqx.field(static=True, default=300)
    min_gradient_norm: float = eqx.field(static=True, default=1e-4)
    max_line_search_steps: int = eqx.field(static=True, default=50)
    curvature_threshold: float = eqx.field(static=True, default=1e-10)

    def __check_init__(self):
        if self.history_size < 1:
            raise ValueError(f"history_size must be >= 1, got {self.history_size}")
        if not 0.0 < self.line_search_alpha < 1.0:
            raise ValueError(
                f"line_search_alpha must lie in (0, 1), got {self.line_search_alpha}"
            )
        if not 0.0 < self.line_search_beta < 1.0:
            raise ValueError(
                f"line_search_beta must lie in (0, 1), got {self.line_search_beta}"
            )
        if self.max_iterations < 0:
            raise ValueError(
                f"max_iterations must be non-negative, got {self.max_iterations}"
            )
        if self.min_gradient_norm < 0.0:
            raise ValueError(
                f"min_gradient_norm must be non-negative, got {self.min_gradient_norm}"
            )
        if self.max_line_search_steps < 1:
            raise ValueError(
                "max_line_search_steps must be >= 1, "
                f"got {self.max_line_search_steps}"
            )
        if self.curvature_threshold < 0.0:
            raise ValueError(
                "curvature_threshold must be non-negative, "
                f"got {self.curvature_threshold}"
            )
