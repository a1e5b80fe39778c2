# browsergate/tests/conftest.py
"""Shared fixtures: a scripted browser driver and a gateway wired to it."""
from unittest.mock import AsyncMock

import pytest

from browsergate.gateway import Gateway
from browsergate.registry import reset_registry_for_tests
from browsergate.schemas.settings import GatewaySettings
from browsergate.session import SessionRegistry


class FakeDriver:
    """In-memory BrowserDriver whose methods are AsyncMocks tests can script."""

    def __init__(self):
        self.launch = AsyncMock(return_value=None)
        self.close = AsyncMock(return_value=None)
        self.restart = AsyncMock(return_value=None)
        self.reload = AsyncMock(return_value=None)
        self.goto = AsyncMock(
            side_effect=lambda url, **_kw: {"url": url, "title": "Example Domain"}
        )
        self.content = AsyncMock(
            return_value="Example Domain\nThis domain is for use in examples.\nMore information..."
        )
        self.find_selector = AsyncMock(return_value="a[href='https://www.iana.org/domains/example']")
        self.click = AsyncMock(return_value=None)
        self.type_text = AsyncMock(return_value=None)
        self.select_option = AsyncMock(return_value=None)
        self.wait_for = AsyncMock(return_value=None)
        self.screenshot = AsyncMock(return_value="/tmp/page.png")
        self.solve_captcha = AsyncMock(return_value={"solved": True, "kind": "recaptcha"})


@pytest.fixture
def driver():
    return FakeDriver()


@pytest.fixture
def no_sleep():
    return AsyncMock(return_value=None)


@pytest.fixture
def sessions(driver, no_sleep):
    return SessionRegistry(GatewaySettings(), driver_factory=lambda _sid: driver, sleep=no_sleep)


@pytest.fixture
def gateway(sessions):
    reset_registry_for_tests()
    yield Gateway(sessions)
    reset_registry_for_tests()
