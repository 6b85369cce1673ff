"""Ordered extension points around provider operations.

Collaborators register callbacks against a named event. Callbacks run
synchronously in registration order; the first one that raises aborts the
remaining callbacks and the operation that fired the event.
"""
from __future__ import annotations

from collections import defaultdict
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import HostctlError

Callback = Callable[..., Any]


class HookError(HostctlError):
    """Raised when a registered callback fails with a non-hostctl error."""


@dataclass
class HookRegistry:
    """Registry of callbacks keyed by event name."""

    _callbacks: dict[str, list[Callback]] = field(default_factory=lambda: defaultdict(list))

    def register(self, event: str, callback: Callback, *, first: bool = False) -> None:
        """Attach *callback* to *event*; ``first`` puts it ahead of the others."""
        if first:
            self._callbacks[event].insert(0, callback)
        else:
            self._callbacks[event].append(callback)

    def unregister(self, event: str, callback: Callback) -> None:
        """Detach *callback* from *event* when registered."""
        callbacks = self._callbacks.get(event)
        if callbacks and callback in callbacks:
            callbacks.remove(callback)

    def callbacks(self, event: str) -> list[Callback]:
        """Return a copy of the callbacks registered for *event*."""
        return list(self._callbacks.get(event, ()))

    def trigger(self, event: str, *args: Any) -> None:
        """Invoke every callback registered for *event* with *args*."""
        for callback in self.callbacks(event):
            self._invoke(event, callback, *args)

    def pipe(self, event: str, value: str, *args: Any) -> str:
        """Thread *value* through the callbacks of *event*.

        A callback returning ``None`` leaves the value untouched; any other
        return value replaces it for the next callback.
        """
        for callback in self.callbacks(event):
            result = self._invoke(event, callback, value, *args)
            if result is not None:
                value = result
        return value

    def clear(self, event: str | None = None) -> None:
        """Drop callbacks for *event*, or for every event when omitted."""
        if event is None:
            self._callbacks.clear()
        else:
            self._callbacks.pop(event, None)

    @staticmethod
    def _invoke(event: str, callback: Callback, *args: Any) -> Any:
        try:
            return callback(*args)
        except HostctlError:
            raise
        except Exception as exc:
            name = getattr(callback, "__qualname__", repr(callback))
            raise HookError(f"Callback {name} for event '{event}' failed: {exc}") from exc


__all__ = ["Callback", "HookError", "HookRegistry"]
