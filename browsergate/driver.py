# browsergate/driver.py
"""
The browser driver contract.

browsergate never launches or scripts a browser itself. A session is handed
an object implementing `BrowserDriver`; the tool bodies call it and the
gateway wires `reload` and `restart` into the recovery engine as the refresh
and restart callbacks.

Drivers should raise `DriverError(kind, message)` for the failure classes in
`ErrorKind`; anything else is classified by message text.
"""
from __future__ import annotations

from typing import Any, Dict, Optional, Protocol, runtime_checkable


@runtime_checkable
class BrowserDriver(Protocol):
    async def launch(self, **options: Any) -> None: ...

    async def close(self) -> None: ...

    async def restart(self) -> None:
        """Relaunch the browser and, where possible, reopen the last URL."""
        ...

    async def reload(self) -> None: ...

    async def goto(
        self, url: str, *, wait_until: str = "load", timeout_ms: int = 30000
    ) -> Dict[str, Any]:
        """Navigate and return at least {"url": ..., "title": ...}."""
        ...

    async def content(self, *, content_type: str = "text", selector: Optional[str] = None) -> str: ...

    async def find_selector(
        self, text: str, *, element_type: Optional[str] = None, exact: bool = False
    ) -> Optional[str]:
        """A CSS selector for the element whose text matches, or None."""
        ...

    async def click(self, selector: str) -> None: ...

    async def type_text(self, selector: str, text: str, *, delay_ms: int = 0) -> None: ...

    async def select_option(self, selector: str, value: str) -> None: ...

    async def wait_for(
        self, *, selector: Optional[str] = None, timeout_ms: int = 5000
    ) -> None: ...

    async def screenshot(
        self, *, path: Optional[str] = None, full_page: bool = False, selector: Optional[str] = None
    ) -> str:
        """Path of the written file, or base64 PNG data when no path is given."""
        ...

    async def solve_captcha(self, kind: str = "auto") -> Dict[str, Any]: ...
