"""OWLQN-JAX: Orthant-Wise Limited-memory Quasi-Newton in pure JAX.

This package provides an implementation of the OWLQN algorithm (Andrew & Gao,
2007) using JAX and the Optimistix framework, for minimising a smooth loss
plus an L1 penalty C * ||x||_1. Typical use is fitting sparse
L1-regularized log-linear (maximum-entropy) models.
"""

from owlqn_jax.config import OWLQNConfig
from owlqn_jax.driver import IterationInfo, OWLQNResult, optimize
from owlqn_jax.history import (
    LBFGSHistory,
    history_append,
    history_init,
    two_loop_recursion,
)
from owlqn_jax.linesearch import LineSearchResult, orthant_line_search
from owlqn_jax.maxent import (
    LogLinearData,
    accuracy,
    heldout_log_likelihood,
    heldout_metrics,
    log_linear_loss,
    log_linear_predict,
    num_weights,
)
from owlqn_jax.objective import Evaluation, l1_norm, regularized_objective
from owlqn_jax.orthant import (
    descent_direction,
    line_search_orthant,
    project_onto_orthant,
    pseudo_gradient,
)
from owlqn_jax.solver import OWLQN, OWLQNState
from owlqn_jax.types import ObjectiveFn, SolverResult, ValueAndGradFn

__all__ = [
    # Main solver
    "OWLQN",
    "OWLQNState",
    "OWLQNConfig",
    "optimize",
    "OWLQNResult",
    "IterationInfo",
    # Types
    "ObjectiveFn",
    "ValueAndGradFn",
    "SolverResult",
    # L-BFGS history
    "LBFGSHistory",
    "history_init",
    "history_append",
    "two_loop_recursion",
    # Orthant operations
    "pseudo_gradient",
    "project_onto_orthant",
    "line_search_orthant",
    "descent_direction",
    # Objective and line search
    "Evaluation",
    "l1_norm",
    "regularized_objective",
    "LineSearchResult",
    "orthant_line_search",
    # Log-linear model
    "LogLinearData",
    "log_linear_loss",
    "log_linear_predict",
    "heldout_log_likelihood",
    "heldout_metrics",
    "accuracy",
    "num_weights",
]
