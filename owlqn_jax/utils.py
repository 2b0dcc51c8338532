from typing import Any, Callable, TypeVar

import jax

T = TypeVar("T")
R = TypeVar("R")


def args_closure(fn: Callable[[jax.Array, T], R], args: T) -> Callable[[jax.Array], R]:
    def wrapped(x: jax.Array) -> R:
        return fn(x, args)

    return wrapped


def without_aux(fn: Callable[[jax.Array, Any], jax.Array]) -> Callable:
    """Adapt fn(x, args) -> loss to the fn(x, args) -> (loss, aux) convention."""

    def wrapped(x: jax.Array, args: Any) -> tuple[jax.Array, None]:
        return fn(x, args), None

    return wrapped
