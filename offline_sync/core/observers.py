"""Synchronous multi-subscriber observer lists.

Status observers must see transitions synchronously and in the order they
happened, so unlike the async event bus, callbacks here are plain callables
invoked inline by the publisher.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Generic, ParamSpec

logger = logging.getLogger(__name__)

P = ParamSpec("P")

Unsubscribe = Callable[[], None]


class ObserverList(Generic[P]):
    """Ordered set of callbacks sharing one signature.

    Example:
        ```python
        progress: ObserverList[[int, int]] = ObserverList("sync_progress")
        unsubscribe = progress.subscribe(lambda current, total: print(current, total))
        progress.notify(1, 3)
        unsubscribe()
        ```

    """

    def __init__(self, name: str) -> None:
        self._name = name
        self._callbacks: list[Callable[P, None]] = []

    def subscribe(self, callback: Callable[P, None]) -> Unsubscribe:
        """Register ``callback`` and return a function that removes it again."""
        self._callbacks.append(callback)
        logger.debug(
            "observer_subscribed",
            extra={"observer_list": self._name, "total_observers": len(self._callbacks)},
        )

        def _unsubscribe() -> None:
            self.unsubscribe(callback)

        return _unsubscribe

    def unsubscribe(self, callback: Callable[P, None]) -> None:
        try:
            self._callbacks.remove(callback)
        except ValueError:
            logger.debug("observer_not_found", extra={"observer_list": self._name})

    def notify(self, *args: P.args, **kwargs: P.kwargs) -> None:
        """Call every observer in subscription order.

        A failing observer is logged and skipped; the rest still run.
        """
        # Copy so observers may unsubscribe themselves while being notified.
        for callback in list(self._callbacks):
            try:
                callback(*args, **kwargs)
            except Exception as exc:
                logger.exception(
                    "observer_callback_failed",
                    extra={
                        "observer_list": self._name,
                        "callback": getattr(callback, "__name__", repr(callback)),
                        "error": str(exc),
                    },
                )

    def clear(self) -> None:
        count = len(self._callbacks)
        self._callbacks.clear()
        if count:
            logger.debug("observers_cleared", extra={"observer_list": self._name, "count": count})

    def __len__(self) -> int:
        return len(self._callbacks)
