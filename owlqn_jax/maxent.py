"""Log-linear (maximum-entropy) model loss for OWLQN.

A multinomial log-linear model scores class k for feature vector f as

    p(k | f) = exp(f^T W[:, k]) / sum_j exp(f^T W[:, j])

with W of shape (num_features, num_classes). The optimizer works on the
flattened weights, so every function here takes a 1-D ``weights`` vector and
reshapes it using the static feature count of the data.

:func:`log_linear_loss` is the smooth part of the training objective: the
mean negative log-likelihood plus an optional L2 term. The L1 term is added
by the solver.
"""

from typing import NamedTuple

import jax
import jax.numpy as jnp
from beartype import beartype
from jaxtyping import Array, Float, Int, jaxtyped

from owlqn_jax.types import Scalar


class LogLinearData(NamedTuple):
    """Dense dataset for a log-linear model.

    Attributes:
        features: Feature matrix, one row per event.
        labels: Integer class label of each event.
        l2_strength: Smooth L2 regularization strength (default 0).
    """

    features: Float[Array, "events features"]
    labels: Int[Array, " events"]
    l2_strength: float = 0.0


def num_weights(num_features: int, num_classes: int) -> int:
    """Length of the flattened weight vector."""
    return num_features * num_classes


def _weight_matrix(
    weights: Float[Array, " n"], data: LogLinearData
) -> Float[Array, "features classes"]:
    num_features = data.features.shape[1]
    if weights.shape[0] % num_features != 0:
        raise ValueError(
            f"Weight vector of length {weights.shape[0]} is not a multiple of "
            f"the feature count {num_features}"
        )
    return weights.reshape(num_features, -1)


@jaxtyped(typechecker=beartype)
def log_linear_predict(
    weights: Float[Array, " n"], data: LogLinearData
) -> Float[Array, "events classes"]:
    """Per-event class log-probabilities."""
    logits = data.features @ _weight_matrix(weights, data)
    return jax.nn.log_softmax(logits, axis=-1)


def _mean_log_likelihood(weights: Float[Array, " n"], data: LogLinearData) -> Scalar:
    """Mean log-likelihood of the labels under the model."""
    log_probs = log_linear_predict(weights, data)
    picked = jnp.take_along_axis(log_probs, data.labels[:, None], axis=-1)
    return jnp.mean(picked)


def log_linear_loss(weights: Float[Array, " n"], data: LogLinearData) -> Scalar:
    """Smooth training loss: mean negative log-likelihood + L2 penalty.

    Usable directly as the ``fn`` of :func:`owlqn_jax.optimize` with
    ``args=data``.
    """
    loss = -_mean_log_likelihood(weights, data)
    if data.l2_strength:
        loss = loss + 0.5 * data.l2_strength * jnp.sum(weights**2)
    return loss


def heldout_log_likelihood(weights: Float[Array, " n"], data: LogLinearData) -> Scalar:
    """Mean log-likelihood on a held-out set (no regularization)."""
    return _mean_log_likelihood(weights, data)


def accuracy(weights: Float[Array, " n"], data: LogLinearData) -> Scalar:
    """Fraction of events whose most probable class is the label."""
    predicted = jnp.argmax(log_linear_predict(weights, data), axis=-1)
    return jnp.mean(predicted == data.labels)


def heldout_metrics(
    weights: Float[Array, " n"], data: LogLinearData
) -> dict[str, Scalar]:
    """Held-out log-likelihood and accuracy, for ``optimize(heldout_fn=...)``."""
    return {
        "heldout_logl": heldout_log_likelihood(weights, data),
        "accuracy": accuracy(weights, data),
    }
