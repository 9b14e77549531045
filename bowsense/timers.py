from __future__ import annotations

import asyncio
from typing import Callable, Protocol

from .errors import SchedulerUnavailableError


class Cancellable(Protocol):
    def cancel(self) -> None: ...


class Scheduler(Protocol):
    """Anything with ``call_later``; an asyncio event loop qualifies."""

    def call_later(self, delay: float, callback: Callable[[], object]) -> Cancellable: ...


def resolve_scheduler(scheduler: Scheduler | None) -> Scheduler:
    """Return ``scheduler``, or the running event loop when none is given.

    Called at construction time so a missing scheduler fails there rather
    than halfway through a transport change.
    """

    if scheduler is not None:
        return scheduler
    try:
        return asyncio.get_running_loop()
    except RuntimeError as exc:
        raise SchedulerUnavailableError(
            "A scheduler is required outside a running event loop; "
            "pass scheduler= (an asyncio loop works)"
        ) from exc
