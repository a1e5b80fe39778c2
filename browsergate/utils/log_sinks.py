# browsergate/utils/log_sinks.py
"""
Per-call log correlation and per-session log files.

The gateway binds the session id and tool name of the call it is running
(`bind_call`); `SessionIdFilter` copies both onto every record emitted while
the call is in flight, including records from the recovery loop and the
progress notifier. `JsonlFileHandler` then routes each record to
`<logs_dir>/<session_id>.jsonl`, keeping one open stream per session until
the session is released.
"""
import contextvars
import logging
import re
from contextlib import contextmanager
from pathlib import Path
from typing import IO, Dict, Iterator, Optional

session_id_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "session_id", default=None
)
tool_name_context: contextvars.ContextVar[Optional[str]] = contextvars.ContextVar(
    "tool_name", default=None
)

_UNSAFE_CHARS = re.compile(r"[^A-Za-z0-9._-]")


@contextmanager
def bind_call(session_id: str, tool_name: Optional[str] = None) -> Iterator[None]:
    """Tag every record logged inside the block with this session and tool."""
    session_token = session_id_context.set(session_id)
    tool_token = tool_name_context.set(tool_name)
    try:
        yield
    finally:
        tool_name_context.reset(tool_token)
        session_id_context.reset(session_token)


class SessionIdFilter(logging.Filter):
    """Stamps `session_id` and `tool_name` from the bound call onto each record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.session_id = session_id_context.get()
        record.tool_name = tool_name_context.get()
        return True


def session_log_name(session_id: str) -> str:
    """File name for a session's log, confined to logs_dir whatever the id contains."""
    safe = _UNSAFE_CHARS.sub("_", session_id).lstrip(".")
    return f"{safe or '_'}.jsonl"


class JsonlFileHandler(logging.Handler):
    """Writes records that belong to a session into that session's JSON-lines file.

    Records logged outside any session are left to the console handler.
    """

    def __init__(self, logs_dir: str):
        """
        :param logs_dir: Directory receiving one file per session; created if missing.
        :type logs_dir: str
        """
        super().__init__()
        self.logs_dir = Path(logs_dir)
        self.logs_dir.mkdir(parents=True, exist_ok=True)
        self._streams: Dict[str, IO[str]] = {}
        self.addFilter(SessionIdFilter())

    def path_for(self, session_id: str) -> Path:
        return self.logs_dir / session_log_name(session_id)

    def emit(self, record: logging.LogRecord) -> None:
        session_id = getattr(record, "session_id", None)
        if not session_id:
            return
        try:
            line = self.format(record)
            with self.lock:
                stream = self._streams.get(session_id)
                if stream is None:
                    stream = self.path_for(session_id).open("a", encoding="utf-8")
                    self._streams[session_id] = stream
                stream.write(line + "\n")
                stream.flush()
        except Exception:
            self.handleError(record)

    def release(self, session_id: str) -> None:
        """Close the stream of a finished session; a later record reopens it."""
        with self.lock:
            stream = self._streams.pop(session_id, None)
        if stream is not None:
            stream.close()

    def open_sessions(self):
        with self.lock:
            return sorted(self._streams)

    def close(self) -> None:
        with self.lock:
            streams = list(self._streams.values())
            self._streams.clear()
        for stream in streams:
            stream.close()
        super().close()
