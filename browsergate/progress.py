# browsergate/progress.py
"""
Progress notifications for long-running tool calls.

The recovery engine reports each attempt, recovery action and terminal
outcome into a `ProgressSink`. `ProgressNotifier` is the stock sink: it fans
updates out to per-token and global subscribers and never lets a subscriber's
exception reach the tool call.
"""
from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Dict, List, Optional, Protocol, Set, Union

from browsergate.utils.aio import call_maybe_async
from browsergate.utils.logger import setup_logger

logger = setup_logger(__name__)

Token = Union[str, int]


@dataclass(frozen=True)
class ProgressUpdate:
    progress_token: Token
    progress: float
    total: Optional[float] = 100
    message: Optional[str] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def failed(self) -> bool:
        return self.progress < 0


ProgressHandler = Callable[[ProgressUpdate], Union[None, Awaitable[None]]]


class ProgressSink(Protocol):
    """Anything the core can emit start/update/complete/fail notifications into."""

    async def start_operation(self, token: Token, message: Optional[str] = None) -> None: ...

    async def update_progress(
        self,
        token: Token,
        progress: float,
        *,
        total: Optional[float] = None,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None: ...

    async def complete_operation(self, token: Token, message: Optional[str] = None) -> None: ...

    async def fail_operation(self, token: Token, error: str) -> None: ...


class ProgressNotifier:
    """Manages progress subscribers and the set of in-flight operations."""

    def __init__(self) -> None:
        self._handlers: Dict[Token, Set[ProgressHandler]] = {}
        self._global_handlers: Set[ProgressHandler] = set()
        self._active: Dict[Token, ProgressUpdate] = {}

    def subscribe(self, token: Token, handler: ProgressHandler) -> Callable[[], None]:
        """Subscribe to updates for one token. Returns an unsubscribe callable."""
        self._handlers.setdefault(token, set()).add(handler)

        def _unsubscribe() -> None:
            handlers = self._handlers.get(token)
            if handlers is None:
                return
            handlers.discard(handler)
            if not handlers:
                del self._handlers[token]

        return _unsubscribe

    def subscribe_all(self, handler: ProgressHandler) -> Callable[[], None]:
        self._global_handlers.add(handler)
        return lambda: self._global_handlers.discard(handler)

    async def start_operation(self, token: Token, message: Optional[str] = None) -> None:
        update = ProgressUpdate(
            progress_token=token,
            progress=0,
            total=100,
            message=message or "Starting operation...",
        )
        self._active[token] = update
        await self._notify(update)

    async def update_progress(
        self,
        token: Token,
        progress: float,
        *,
        total: Optional[float] = None,
        message: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> None:
        existing = self._active.get(token)
        if existing is None:
            update = ProgressUpdate(
                progress_token=token,
                progress=progress,
                total=total if total is not None else 100,
                message=message,
                metadata=dict(metadata or {}),
            )
        else:
            update = replace(
                existing,
                progress=progress,
                total=total if total is not None else existing.total,
                message=message if message is not None else existing.message,
                metadata=dict(metadata) if metadata is not None else existing.metadata,
            )
        self._active[token] = update
        await self._notify(update)

    async def complete_operation(self, token: Token, message: Optional[str] = None) -> None:
        existing = self._active.pop(token, None)
        total = existing.total if existing is not None else 100
        await self._notify(
            ProgressUpdate(
                progress_token=token,
                progress=total or 100,
                total=total,
                message=message or "Operation completed",
            )
        )

    async def fail_operation(self, token: Token, error: str) -> None:
        self._active.pop(token, None)
        await self._notify(
            ProgressUpdate(
                progress_token=token,
                progress=-1,
                total=None,
                message=f"Error: {error}",
                metadata={"error": True},
            )
        )

    def get_progress(self, token: Token) -> Optional[ProgressUpdate]:
        return self._active.get(token)

    def get_active_operations(self) -> List[ProgressUpdate]:
        return list(self._active.values())

    def cleanup(self) -> None:
        self._handlers.clear()
        self._global_handlers.clear()
        self._active.clear()

    async def _notify(self, update: ProgressUpdate) -> None:
        targets = list(self._handlers.get(update.progress_token, ())) + list(
            self._global_handlers
        )
        for handler in targets:
            try:
                await call_maybe_async(handler, update)
            except Exception as e:
                logger.error(
                    "Progress handler error for %s: %s", update.progress_token, e
                )
