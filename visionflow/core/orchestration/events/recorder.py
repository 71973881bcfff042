"""Event recording and observer fan-out for a single flow run."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from visionflow.core.logging import get_logger
from visionflow.core.orchestration.events.events import (
    Event,
    FlowCancelled,
    FlowCompleted,
    FlowStarted,
    NodeCancelled,
    NodeCompleted,
    NodeFailed,
)
from visionflow.core.utils.concurrency import call_maybe_async

logger = get_logger(__name__)

ObserverFunc = Callable[[Event], Any]

DEFAULT_OBSERVER_TIMEOUT = 5.0


@dataclass(frozen=True, slots=True)
class ObserverRegistration:
    """An observer callable plus its optional event-type filter."""

    handler: ObserverFunc
    event_types: tuple[type[Event], ...] | None = None
    timeout: float | None = DEFAULT_OBSERVER_TIMEOUT
    observer_id: str = ""

    @classmethod
    def create(
        cls,
        handler: ObserverFunc,
        event_types: Iterable[type[Event]] | type[Event] | None = None,
        timeout: float | None = DEFAULT_OBSERVER_TIMEOUT,
        observer_id: str | None = None,
    ) -> ObserverRegistration:
        if isinstance(event_types, type):
            event_types = (event_types,)
        return cls(
            handler=handler,
            event_types=tuple(event_types) if event_types is not None else None,
            timeout=timeout,
            observer_id=observer_id or uuid.uuid4().hex,
        )

    def accepts(self, event: Event) -> bool:
        return self.event_types is None or isinstance(event, self.event_types)


def _log_level(event: Event) -> str:
    if isinstance(event, NodeFailed):
        return "ERROR" if event.critical else "WARNING"
    if isinstance(event, FlowCompleted):
        return "INFO" if event.success else "ERROR"
    if isinstance(event, (FlowStarted, FlowCancelled, NodeCancelled, NodeCompleted)):
        return "INFO"
    return "DEBUG"


class EventRecorder:
    """Collects the events of one run and notifies observers.

    Observer failures and timeouts are logged and never reach the run.

    Examples
    --------
    Example usage::

        seen = []
        recorder = EventRecorder([ObserverRegistration.create(seen.append)])
        await recorder.emit(WaveStarted(run_id="r1", wave_index=0, nodes=("a",)))
        assert recorder.events == seen
    """

    def __init__(self, observers: Iterable[ObserverRegistration] = ()) -> None:
        self.events: list[Event] = []
        self._observers = tuple(observers)
        self._lock = asyncio.Lock()

    async def emit(self, event: Event) -> None:
        async with self._lock:
            self.events.append(event)
        logger.log(_log_level(event), event.log_message())

        targets = [obs for obs in self._observers if obs.accepts(event)]
        if targets:
            await asyncio.gather(*(self._notify(obs, event) for obs in targets))

    async def _notify(self, observer: ObserverRegistration, event: Event) -> None:
        try:
            async with asyncio.timeout(observer.timeout):
                await call_maybe_async(observer.handler, event)
        except TimeoutError:
            logger.warning(
                "Observer {observer} timed out handling {event}",
                observer=observer.observer_id,
                event=type(event).__name__,
            )
        except Exception as e:
            logger.warning(
                "Observer {observer} failed for {event}: {error}",
                observer=observer.observer_id,
                event=type(event).__name__,
                error=e,
            )

    def of_type(self, *event_types: type[Event]) -> list[Event]:
        return [event for event in self.events if isinstance(event, event_types)]
