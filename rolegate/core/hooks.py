"""
Lifecycle hooks for actors and role memberships.

Events fired by the RBAC services:
- actor.created: a new actor was registered (the default-role policy listens here)
- role.assigned: a role was assigned to an actor
- role.revoked: a role was removed from an actor

Handlers are async callables receiving keyword arguments (actor, role, db).

```python
@hooks.on("role.assigned")
async def audit_assignment(actor, role, **kwargs):
    ...
```
"""
from __future__ import annotations

from typing import Callable, Any, Awaitable
from dataclasses import dataclass, field
from enum import IntEnum
from collections import defaultdict
import logging

logger = logging.getLogger(__name__)

Handler = Callable[..., Awaitable[Any]]


class HookPriority(IntEnum):
    """Hook execution priority (lower runs first)."""
    FIRST = 0
    EARLY = 25
    NORMAL = 50
    LATE = 75
    LAST = 100


@dataclass
class Hook:
    name: str
    handler: Handler
    priority: HookPriority = HookPriority.NORMAL
    source: str = ""  # Module that registered this

    @property
    def label(self) -> str:
        return self.source or getattr(self.handler, "__qualname__", repr(self.handler))


@dataclass
class HookResult:
    """Outcome of one trigger() call."""
    hook_name: str
    results: list[Any] = field(default_factory=list)
    errors: list[tuple[str, Exception]] = field(default_factory=list)
    stopped: bool = False


class HookManager:
    """Registry of async handlers keyed by event name."""

    def __init__(self):
        self._hooks: dict[str, list[Hook]] = defaultdict(list)

    def register(
        self,
        name: str,
        handler: Handler,
        *,
        priority: HookPriority = HookPriority.NORMAL,
        source: str = "",
    ) -> Hook:
        hook = Hook(name=name, handler=handler, priority=priority, source=source)
        handlers = self._hooks[name]
        handlers.append(hook)
        # Stable sort keeps registration order within a priority
        handlers.sort(key=lambda h: h.priority)

        logger.debug("Registered hook %s -> %s (priority=%s)", name, hook.label, int(priority))
        return hook

    def on(self, name: str, *, priority: HookPriority = HookPriority.NORMAL) -> Callable[[Handler], Handler]:
        """Decorator form of register()."""
        def decorator(handler: Handler) -> Handler:
            self.register(name, handler, priority=priority)
            return handler
        return decorator

    def unregister(self, name: str, handler: Handler) -> bool:
        handlers = self._hooks.get(name, [])
        remaining = [hook for hook in handlers if hook.handler is not handler]
        if len(remaining) == len(handlers):
            return False
        self._hooks[name] = remaining
        return True

    def has_handler(self, name: str, handler: Handler) -> bool:
        return any(hook.handler is handler for hook in self._hooks.get(name, []))

    def handlers(self, name: str) -> list[Hook]:
        return list(self._hooks.get(name, []))

    async def trigger(self, name: str, *, stop_on_error: bool = False, **kwargs: Any) -> HookResult:
        """
        Run every handler for an event.

        A failing handler is logged and recorded on the result; the operation
        that fired the event carries on unless stop_on_error is set.
        """
        result = HookResult(hook_name=name)

        for hook in self.handlers(name):
            try:
                result.results.append(await hook.handler(**kwargs))
            except Exception as e:
                result.errors.append((hook.label, e))
                logger.error("Hook %s handler %s failed: %s", name, hook.label, e)

                if stop_on_error:
                    result.stopped = True
                    break

        return result

    def clear(self, name: str | None = None) -> None:
        if name:
            self._hooks.pop(name, None)
        else:
            self._hooks.clear()


# Global hook manager
hooks = HookManager()
