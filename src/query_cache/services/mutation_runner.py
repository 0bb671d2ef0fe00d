"""Mutation runner.

Runs a write operation with lifecycle hooks, in this order:

    on_mutate(variables) -> context
    mutation_fn(variables)
    on_success(result, variables, context)  or  on_error(error, variables, context)
    on_settled(result, error, variables, context)

Exactly one of ``on_success``/``on_error`` fires, ``on_settled`` always fires
last, also when the mutation is cancelled. Writes are never retried.
"""

import asyncio
import inspect
import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from query_cache.errors import MutationError

logger = logging.getLogger(__name__)

V = TypeVar("V")
R = TypeVar("R")


@dataclass
class MutationHooks(Generic[V, R]):
    """Optional lifecycle callbacks. Each may be a plain or an async function."""

    on_mutate: Callable[[V], Any] | None = None
    on_success: Callable[[R, V, Any], Any] | None = None
    on_error: Callable[[BaseException, V, Any], Any] | None = None
    on_settled: Callable[[R | None, BaseException | None, V, Any], Any] | None = None


async def _invoke(fn: Callable[..., Any] | None, *args: Any) -> Any:
    if fn is None:
        return None
    result = fn(*args)
    if inspect.isawaitable(result):
        result = await result
    return result


class MutationRunner:
    """Executes mutations and their hooks as sequential awaited steps.

    Example:
        ```python
        runner = MutationRunner()
        created = await runner.run(
            source.add_post,
            post,
            MutationHooks(on_settled=lambda *_: client.invalidate_queries(["posts"])),
        )
        ```
    """

    def __init__(self) -> None:
        self._pending = 0

    @property
    def pending_count(self) -> int:
        """Number of mutations that have not settled yet."""
        return self._pending

    async def run(
        self,
        mutation_fn: Callable[[V], Any],
        variables: V,
        hooks: MutationHooks[V, Any] | None = None,
    ) -> Any:
        """Run a mutation.

        If ``on_mutate`` raises, the write is skipped and ``on_error``
        receives that exception (with ``context=None``).

        Args:
            mutation_fn: The write, called with ``variables``
            variables: Input of the write
            hooks: Lifecycle callbacks

        Returns:
            The result of ``mutation_fn``

        Raises:
            MutationError: After ``on_error`` and ``on_settled`` ran
            asyncio.CancelledError: Re-raised unwrapped, after the same hooks
        """
        hooks = hooks or MutationHooks()
        context: Any = None
        self._pending += 1

        try:
            try:
                context = await _invoke(hooks.on_mutate, variables)
                result = await _invoke(mutation_fn, variables)
            except Exception as e:
                logger.warning("Mutation failed: %s", e)
                try:
                    await _invoke(hooks.on_error, e, variables, context)
                finally:
                    await _invoke(hooks.on_settled, None, e, variables, context)

                if isinstance(e, MutationError):
                    raise
                raise MutationError(f"Mutation failed: {e}", cause=e) from e
            except asyncio.CancelledError as e:
                logger.info("Mutation cancelled")
                try:
                    await _invoke(hooks.on_error, e, variables, context)
                finally:
                    await _invoke(hooks.on_settled, None, e, variables, context)
                raise

            try:
                await _invoke(hooks.on_success, result, variables, context)
            finally:
                await _invoke(hooks.on_settled, result, None, variables, context)

            return result
        finally:
            self._pending -= 1
