"""Runtime loader for verified source code.

Tracks each load with a small state machine and turns source text into a
live source instance by trying the runtime's materialization strategies in
order.
"""

import asyncio
import logging
import re
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, TypeVar

from plugins.base import BaseSource
from plugins.errors import LoadError
from plugins.runtime import RuntimeClass, resolve_runtime, strategy_names
from plugins.strategies import MaterializationStrategy, build_strategies

logger = logging.getLogger(__name__)

DEFAULT_LOAD_TIMEOUT = 30.0

T = TypeVar("T")


class LoadState(str, Enum):
    """Lifecycle of a single source load."""

    UNLOADED = "unloaded"
    DOWNLOADED = "downloaded"
    VERIFIED = "verified"
    VALIDATED = "validated"
    MATERIALIZING = "materializing"
    INSTANTIATED = "instantiated"
    REGISTERED = "registered"
    FAILED = "failed"


@dataclass
class Transition:
    """Defines a valid state transition."""

    from_state: LoadState
    to_state: LoadState


TRANSITIONS: list[Transition] = [
    Transition(LoadState.UNLOADED, LoadState.DOWNLOADED),
    Transition(LoadState.DOWNLOADED, LoadState.VERIFIED),
    Transition(LoadState.VERIFIED, LoadState.VALIDATED),
    Transition(LoadState.VALIDATED, LoadState.MATERIALIZING),
    Transition(LoadState.MATERIALIZING, LoadState.INSTANTIATED),
    Transition(LoadState.INSTANTIATED, LoadState.REGISTERED),
]

TERMINAL_STATES = {LoadState.REGISTERED, LoadState.FAILED}

_TRANSITION_MAP: dict[LoadState, set[LoadState]] = {}
for _t in TRANSITIONS:
    _TRANSITION_MAP.setdefault(_t.from_state, set()).add(_t.to_state)


@dataclass
class LoadAttempt:
    """Record of one install attempt moving through the load states."""

    source_id: str
    state: LoadState = LoadState.UNLOADED
    error: BaseException | None = None
    history: list[tuple[LoadState, datetime]] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.history:
            self.history.append((self.state, datetime.now(timezone.utc)))

    def can_advance(self, to_state: LoadState) -> bool:
        if to_state == LoadState.FAILED:
            return self.state not in TERMINAL_STATES
        return to_state in _TRANSITION_MAP.get(self.state, set())

    def advance(self, to_state: LoadState) -> None:
        """Move to the next state.

        Raises:
            ValueError: If the transition is not allowed
        """
        if not self.can_advance(to_state):
            raise ValueError(
                f"Invalid load transition for '{self.source_id}': {self.state.value} -> {to_state.value}"
            )
        self.state = to_state
        self.history.append((to_state, datetime.now(timezone.utc)))

    def fail(self, error: BaseException) -> None:
        """Mark the attempt failed, recording the error."""
        if self.state in TERMINAL_STATES:
            return
        self.error = error
        self.advance(LoadState.FAILED)

    @property
    def failed(self) -> bool:
        return self.state == LoadState.FAILED

    @property
    def states(self) -> list[LoadState]:
        return [state for state, _ in self.history]


def module_name_for(source_id: str, version: str | None = None) -> str:
    """Build a throwaway module name for a source."""
    raw = f"{source_id}_{version}" if version else source_id
    safe = re.sub(r"\W", "_", raw)
    return f"_remote_source_{safe}"


def run_detached(func: Callable[..., T], *args: Any) -> "asyncio.Future[T]":
    """Run func on a daemon thread and return a future for its result.

    Unlike the default executor, an abandoned call never holds up
    interpreter or event loop shutdown.
    """
    loop = asyncio.get_running_loop()
    future: asyncio.Future[T] = loop.create_future()

    def _settle(result: Any, error: BaseException | None) -> None:
        if future.done():
            return
        if error is not None:
            future.set_exception(error)
        else:
            future.set_result(result)

    def _target() -> None:
        try:
            result, error = func(*args), None
        except Exception as e:
            result, error = None, e
        try:
            loop.call_soon_threadsafe(_settle, result, error)
        except RuntimeError:
            logger.debug("Event loop closed before %s finished", getattr(func, "__qualname__", func))

    threading.Thread(target=_target, name="source-loader", daemon=True).start()
    return future


class RuntimeLoader:
    """Materializes and instantiates source code.

    Strategy order comes from the runtime class, detected once per process
    unless overridden.
    """

    def __init__(
        self,
        runtime: RuntimeClass | str | None = None,
        load_timeout: float = DEFAULT_LOAD_TIMEOUT,
        strategies: list[MaterializationStrategy] | None = None,
    ) -> None:
        """Initialize the loader.

        Args:
            runtime: Runtime class or "auto"/None to detect it
            load_timeout: Per-strategy time limit in seconds
            strategies: Explicit strategy list (overrides the runtime order)
        """
        self.runtime = runtime if isinstance(runtime, RuntimeClass) else resolve_runtime(runtime)
        self.load_timeout = load_timeout
        self.strategies = strategies if strategies is not None else build_strategies(strategy_names(self.runtime))

    @property
    def strategy_names(self) -> list[str]:
        return [strategy.name for strategy in self.strategies]

    async def materialize(self, code: str, source_id: str, version: str | None = None) -> type[BaseSource]:
        """Turn source text into its exported source class.

        Strategies are tried in order; the first usable class wins. A
        strategy that runs past the load timeout ends the load: its thread
        cannot be stopped, so the code is not executed again by the next
        strategy.

        Raises:
            LoadError: If every strategy failed or one timed out, with one
                reason per strategy tried
        """
        module_name = module_name_for(source_id, version)
        reasons: list[str] = []

        for strategy in self.strategies:
            try:
                constructor = await asyncio.wait_for(
                    run_detached(strategy.materialize, code, module_name),
                    timeout=self.load_timeout,
                )
            except asyncio.TimeoutError:
                reason = f"{strategy.name}: timed out after {self.load_timeout}s"
                logger.warning("Strategy timed out for %s, abandoning load", source_id)
                reasons.append(reason)
                raise LoadError(
                    f"Materialization timed out: {'; '.join(reasons)}",
                    source_id=source_id,
                    reasons=reasons,
                )
            except Exception as e:
                reason = f"{strategy.name}: {type(e).__name__}: {e}"
            else:
                logger.debug("Materialized %s with %s strategy", source_id, strategy.name)
                return constructor

            logger.warning("Strategy failed for %s: %s", source_id, reason)
            reasons.append(reason)

        raise LoadError(
            f"All materialization strategies failed: {'; '.join(reasons) or 'no strategies configured'}",
            source_id=source_id,
            reasons=reasons,
        )

    def instantiate(self, constructor: type[BaseSource], source_id: str) -> BaseSource:
        """Construct the source exactly once.

        Raises:
            LoadError: If the constructor raises
        """
        try:
            return constructor()
        except Exception as e:
            raise LoadError(
                f"Source constructor failed: {type(e).__name__}: {e}",
                source_id=source_id,
                reasons=[str(e)],
            ) from e

    async def load(self, code: str, source_id: str, version: str | None = None) -> BaseSource:
        """Materialize and instantiate in one step."""
        constructor = await self.materialize(code, source_id, version)
        return self.instantiate(constructor, source_id)
