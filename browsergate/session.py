# browsergate/session.py
"""
Per-session state, keyed explicitly by session id.

A `SessionContext` bundles everything one browser session needs: its
workflow validator, its recovery engine (and therefore its retry budgets),
its progress notifier, its driver, and the lock the gateway holds while a
tool call runs. Nothing here is module-global; two sessions never share
counters or history.
"""
from __future__ import annotations

import asyncio
import threading
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Dict, List, Optional

from browsergate.driver import BrowserDriver
from browsergate.progress import ProgressNotifier
from browsergate.recovery.engine import RecoveryEngine
from browsergate.schemas.settings import GatewaySettings
from browsergate.utils.config import load_settings
from browsergate.utils.logger import release_session_files, setup_logger
from browsergate.workflow.validator import WorkflowValidator

logger = setup_logger(__name__)

DEFAULT_SESSION_ID = "default"

DriverFactory = Callable[[str], Optional[BrowserDriver]]


@dataclass
class SessionContext:
    session_id: str
    validator: WorkflowValidator
    engine: RecoveryEngine
    notifier: ProgressNotifier
    driver: Optional[BrowserDriver] = None
    lock: asyncio.Lock = field(default_factory=asyncio.Lock)

    @classmethod
    def create(
        cls,
        session_id: str,
        settings: GatewaySettings,
        driver: Optional[BrowserDriver] = None,
        **engine_kwargs: Any,
    ) -> "SessionContext":
        return cls(
            session_id=session_id,
            validator=WorkflowValidator.from_settings(settings.workflow),
            engine=RecoveryEngine.from_settings(settings.recovery, **engine_kwargs),
            notifier=ProgressNotifier(),
            driver=driver,
        )

    def reset(self) -> None:
        """Forget workflow progress and retry budgets (the browser went away)."""
        self.validator.reset()
        self.engine.reset_state()


class SessionRegistry:
    """Creates `SessionContext`s on first use and hands the same one back afterwards."""

    def __init__(
        self,
        settings: Optional[GatewaySettings] = None,
        driver_factory: Optional[DriverFactory] = None,
        *,
        sleep: Optional[Callable[[float], Awaitable[Any]]] = None,
    ):
        """
        :param settings: Validated settings; loaded from browsergate.yaml when omitted.
        :type settings: Optional[GatewaySettings]
        :param driver_factory: Called with the session id to build that session's driver.
        :type driver_factory: Optional[DriverFactory]
        :param sleep: Delay coroutine handed to every session's recovery engine.
        """
        self.settings = settings or load_settings()
        self._driver_factory = driver_factory
        self._engine_kwargs = {"sleep": sleep} if sleep is not None else {}
        self._sessions: Dict[str, SessionContext] = {}
        self._lock = threading.Lock()

    def get(self, session_id: str = DEFAULT_SESSION_ID) -> SessionContext:
        with self._lock:
            ctx = self._sessions.get(session_id)
            if ctx is None:
                driver = self._driver_factory(session_id) if self._driver_factory else None
                ctx = SessionContext.create(
                    session_id, self.settings, driver, **self._engine_kwargs
                )
                self._sessions[session_id] = ctx
                logger.info("Created session '%s'", session_id)
            return ctx

    def drop(self, session_id: str) -> Optional[SessionContext]:
        with self._lock:
            ctx = self._sessions.pop(session_id, None)
        if ctx is not None:
            ctx.notifier.cleanup()
            release_session_files(session_id)
            logger.info("Dropped session '%s'", session_id)
        return ctx

    def sessions(self) -> List[str]:
        with self._lock:
            return list(self._sessions)
