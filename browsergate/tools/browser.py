# browsergate/tools/browser.py
"""
Browser tools exposed to the agent.

Each tool is a thin adapter: validate arguments with its input model, call the
session's driver, shape a short result. Workflow gating and recovery happen
in the gateway around these bodies, never inside them.
"""

import re
from typing import Any, Dict, Literal, Optional
from urllib.parse import urlparse

from pydantic import BaseModel, Field, field_validator, model_validator

from browsergate.driver import BrowserDriver
from browsergate.exceptions import DriverError, ErrorKind
from browsergate.registry import tool
from browsergate.utils.logger import setup_logger
from browsergate.utils.redact import redact_url

logger = setup_logger(__name__)

_ALLOWED_SCHEMES = ("http", "https", "file", "about", "data")


class BrowserInitInput(BaseModel):
    """Input model for starting the browser.

    :ivar headless: Run without a visible window.
    :vartype headless: bool
    :ivar proxy: Optional proxy URL (credentials are redacted in logs).
    :vartype proxy: Optional[str]
    :ivar user_agent: Optional user agent override.
    :vartype user_agent: Optional[str]
    """

    headless: bool = Field(False, description="Run without a visible window.")
    proxy: Optional[str] = Field(None, description="Proxy URL, e.g. http://host:8080")
    user_agent: Optional[str] = Field(None, description="User agent override.")


class BrowserCloseInput(BaseModel):
    pass


class NavigateInput(BaseModel):
    url: str = Field(..., description="Absolute URL to open.")
    wait_until: Literal["load", "domcontentloaded", "networkidle0", "networkidle2"] = Field(
        "load", description="Load event to wait for."
    )
    timeout_ms: int = Field(30000, gt=0, description="Navigation timeout in milliseconds.")

    @field_validator("url")
    @classmethod
    def _absolute_url(cls, v: str) -> str:
        scheme = urlparse(v).scheme.lower()
        if scheme not in _ALLOWED_SCHEMES:
            raise ValueError(
                f"url must start with one of: {', '.join(s + ':' for s in _ALLOWED_SCHEMES)}"
            )
        return v


class GetContentInput(BaseModel):
    type: Literal["html", "text"] = Field("text", description="Rendered text or raw HTML.")
    selector: Optional[str] = Field(None, description="Restrict to this element.")


class FindSelectorInput(BaseModel):
    text: str = Field(..., min_length=1, description="Visible text of the element.")
    element_type: Optional[str] = Field(None, description="Tag name filter, e.g. 'button'.")
    exact: bool = Field(False, description="Require an exact text match.")


class ClickInput(BaseModel):
    selector: str = Field(..., min_length=1)


class TypeInput(BaseModel):
    selector: str = Field(..., min_length=1)
    text: str = Field(..., description="Text to type.")
    delay_ms: int = Field(0, ge=0, description="Delay between keystrokes.")


class SelectOptionInput(BaseModel):
    selector: str = Field(..., min_length=1)
    value: str


class WaitInput(BaseModel):
    selector: Optional[str] = Field(None, description="Wait for this element; omit to sleep.")
    timeout_ms: int = Field(5000, gt=0)


class ScreenshotInput(BaseModel):
    path: Optional[str] = Field(None, description="File to write; base64 is returned otherwise.")
    full_page: bool = False
    selector: Optional[str] = None


class SolveCaptchaInput(BaseModel):
    kind: Literal["auto", "recaptcha", "hcaptcha", "turnstile"] = "auto"


class SearchContentInput(BaseModel):
    query: str = Field(..., min_length=1, description="Keyword or regular expression.")
    type: Literal["text", "regex"] = "text"
    case_sensitive: bool = False
    whole_word: bool = False
    context: int = Field(50, ge=0, description="Characters of context around each match.")
    selector: Optional[str] = Field(None, description="Restrict the search to this element.")

    @model_validator(mode="after")
    def _compilable(self) -> "SearchContentInput":
        if self.type == "regex":
            try:
                re.compile(self.query)
            except re.error as e:
                raise ValueError(f"invalid regular expression: {e}")
        return self

    def compile(self) -> re.Pattern:
        pattern = self.query if self.type == "regex" else re.escape(self.query)
        if self.whole_word:
            pattern = rf"\b(?:{pattern})\b"
        return re.compile(pattern, 0 if self.case_sensitive else re.IGNORECASE)


MAX_SEARCH_MATCHES = 100


@tool(
    "browser_init",
    BrowserInitInput,
    category="session",
    tags=["browser", "lifecycle"],
)
async def browser_init(input_data: BrowserInitInput, driver: BrowserDriver) -> str:
    """Start the browser for this session."""
    logger.info(
        "Initializing browser",
        extra={"headless": input_data.headless, "proxy": redact_url(input_data.proxy or "")},
    )
    await driver.launch(**input_data.model_dump(exclude_none=True))
    return (
        "Browser initialized.\n"
        "Next step: use navigate to load a web page, then get_content to analyze it, "
        "then find_selector before interacting. Workflow validation prevents blind "
        "selector guessing."
    )


@tool("browser_close", BrowserCloseInput, category="session", tags=["browser", "lifecycle"])
async def browser_close(input_data: BrowserCloseInput, driver: BrowserDriver) -> str:
    """Close the browser and end the session's workflow."""
    await driver.close()
    return "Browser closed. Workflow state reset; call browser_init to start again."


@tool("navigate", NavigateInput, category="navigation", tags=["browser"], recoverable=True)
async def navigate(input_data: NavigateInput, driver: BrowserDriver) -> Dict[str, Any]:
    """Open a URL in the current page."""
    page = await driver.goto(
        input_data.url, wait_until=input_data.wait_until, timeout_ms=input_data.timeout_ms
    )
    return {"url": page.get("url", input_data.url), "title": page.get("title")}


@tool("get_content", GetContentInput, category="content", tags=["browser"], recoverable=True)
async def get_content(input_data: GetContentInput, driver: BrowserDriver) -> str:
    """Return the page's rendered text or HTML."""
    return await driver.content(content_type=input_data.type, selector=input_data.selector)


@tool("find_selector", FindSelectorInput, category="content", tags=["browser"], recoverable=True)
async def find_selector(input_data: FindSelectorInput, driver: BrowserDriver) -> str:
    """Find a CSS selector for an element by its visible text."""
    selector = await driver.find_selector(
        input_data.text, element_type=input_data.element_type, exact=input_data.exact
    )
    if not selector:
        raise DriverError(
            ErrorKind.ELEMENT_NOT_FOUND,
            f"Element not found for text {input_data.text!r}",
            suggested_action="Check the text against get_content output, or relax exact matching.",
        )
    return selector


@tool("click", ClickInput, category="interaction", tags=["browser"], recoverable=True)
async def click(input_data: ClickInput, driver: BrowserDriver) -> str:
    """Click an element."""
    await driver.click(input_data.selector)
    return f"Clicked {input_data.selector}"


@tool("type", TypeInput, category="interaction", tags=["browser"], recoverable=True)
async def type_text(input_data: TypeInput, driver: BrowserDriver) -> str:
    """Type text into an element."""
    await driver.type_text(input_data.selector, input_data.text, delay_ms=input_data.delay_ms)
    return f"Typed {len(input_data.text)} character(s) into {input_data.selector}"


@tool("select_option", SelectOptionInput, category="interaction", tags=["browser"], recoverable=True)
async def select_option(input_data: SelectOptionInput, driver: BrowserDriver) -> str:
    """Choose an option in a select element."""
    await driver.select_option(input_data.selector, input_data.value)
    return f"Selected {input_data.value!r} in {input_data.selector}"


@tool("wait", WaitInput, category="interaction", tags=["browser"], recoverable=True)
async def wait(input_data: WaitInput, driver: BrowserDriver) -> str:
    """Wait for an element, or for a fixed time when no selector is given."""
    await driver.wait_for(selector=input_data.selector, timeout_ms=input_data.timeout_ms)
    if input_data.selector:
        return f"Element {input_data.selector} is present"
    return f"Waited {input_data.timeout_ms}ms"


@tool("screenshot", ScreenshotInput, category="content", tags=["browser"], recoverable=True)
async def screenshot(input_data: ScreenshotInput, driver: BrowserDriver) -> str:
    """Capture the page or one element."""
    return await driver.screenshot(
        path=input_data.path, full_page=input_data.full_page, selector=input_data.selector
    )


@tool("solve_captcha", SolveCaptchaInput, category="captcha", tags=["browser", "captcha"])
async def solve_captcha(input_data: SolveCaptchaInput, driver: BrowserDriver) -> Dict[str, Any]:
    """Hand the current page's CAPTCHA to the driver's solver."""
    return await driver.solve_captcha(input_data.kind)


@tool("search_content", SearchContentInput, category="content", tags=["browser"], recoverable=True)
async def search_content(input_data: SearchContentInput, driver: BrowserDriver) -> Dict[str, Any]:
    """Search the page text for a keyword or regular expression."""
    text = await driver.content(content_type="text", selector=input_data.selector)
    ctx = input_data.context
    matches = []
    total = 0
    for m in input_data.compile().finditer(text):
        total += 1
        if len(matches) < MAX_SEARCH_MATCHES:
            matches.append(
                {
                    "match": m.group(0),
                    "index": m.start(),
                    "context": text[max(0, m.start() - ctx) : m.end() + ctx],
                }
            )
    return {"total_matches": total, "matches": matches}
