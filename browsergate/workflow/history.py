# browsergate/workflow/history.py
"""
Capped, append-only log of tool invocations for one session.

Used for summaries and diagnostics only; gating decisions never look at it.
"""
from __future__ import annotations

from collections import Counter, deque
from typing import Any, Deque, Dict, Iterator, List, Mapping, Optional

from browsergate.schemas.session import ExecutionRecord


class ExecutionHistory:
    """Keeps the most recent `limit` execution records."""

    def __init__(self, limit: int = 50):
        if limit < 1:
            raise ValueError("history limit must be at least 1")
        self.limit = limit
        self._records: Deque[ExecutionRecord] = deque(maxlen=limit)
        self._dropped = 0

    def __len__(self) -> int:
        return len(self._records)

    def __iter__(self) -> Iterator[ExecutionRecord]:
        return iter(list(self._records))

    def append(self, record: ExecutionRecord) -> None:
        if len(self._records) == self.limit:
            self._dropped += 1
        self._records.append(record)

    def clear(self) -> None:
        self._records.clear()
        self._dropped = 0

    def recent(self, n: int = 5) -> List[ExecutionRecord]:
        """The last `n` records, oldest first."""
        if n <= 0:
            return []
        return list(self._records)[-n:]

    def last(self) -> Optional[ExecutionRecord]:
        return self._records[-1] if self._records else None

    def failures(self) -> List[ExecutionRecord]:
        return [r for r in self._records if not r.success]

    def repeated_failure(
        self, tool_name: str, args: Optional[Mapping[str, Any]] = None, k: int = 3
    ) -> bool:
        """
        True if the last `k` records are all failures of `tool_name` with
        exactly these (redacted) arguments: the agent is stuck in a loop.
        """
        if k <= 0 or len(self._records) < k:
            return False
        wanted = dict(args) if args is not None else None
        for record in self.recent(k):
            if record.success or record.tool_name != tool_name:
                return False
            if wanted is not None and record.args != wanted:
                return False
        return True

    def stats(self) -> Dict[str, Any]:
        records = list(self._records)
        total = len(records)
        successes = sum(1 for r in records if r.success)
        per_tool: Dict[str, Dict[str, int]] = {}
        for r in records:
            bucket = per_tool.setdefault(r.tool_name, {"success": 0, "failure": 0})
            bucket["success" if r.success else "failure"] += 1
        last_failure = next((r for r in reversed(records) if not r.success), None)
        return {
            "total": total,
            "successes": successes,
            "failures": total - successes,
            "success_rate": (successes / total) if total else None,
            "dropped": self._dropped,
            "per_tool": per_tool,
            "most_failed": [
                name
                for name, _ in Counter(
                    r.tool_name for r in records if not r.success
                ).most_common(3)
            ],
            "last_failure": last_failure.model_dump() if last_failure else None,
        }
