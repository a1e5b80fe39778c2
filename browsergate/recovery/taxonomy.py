# browsergate/recovery/taxonomy.py
"""
Default error taxonomy, in priority order (first match wins).

Each row handles a tagged `ErrorKind` directly and also carries a text
pattern for exceptions raised by code that does not speak `DriverError`
(Chrome's net::ERR_* strings, Node-style errno names, CDP protocol messages).
"""
import re
from typing import List

from browsergate.exceptions import ErrorKind
from browsergate.schemas.recovery import RecoveryAction, RecoveryStrategy

NETWORK_PATTERN = re.compile(
    r"ECONNRESET|ECONNREFUSED|ENOTFOUND|ETIMEDOUT|EAI_AGAIN|EPIPE"
    r"|net::ERR_|socket hang up|network (?:error|changed|is unreachable)"
    r"|connection (?:reset|refused|closed|aborted)"
)

NAVIGATION_TIMEOUT_PATTERN = re.compile(
    r"navigation timeout|navigation .*timed? ?out|waiting for navigation"
    r"|page load timeout|timed out receiving message from renderer"
)

SESSION_LOST_PATTERN = re.compile(
    r"session closed|target closed|browser (?:has )?disconnected|browser is closed"
    r"|execution context was destroyed|cannot find context|frame (?:was )?detached"
    r"|invalid session id|no such window|Protocol error"
)

ELEMENT_NOT_FOUND_PATTERN = re.compile(
    r"element not found|no such element|no node found|failed to find element"
    r"|waiting for selector .* failed|not (?:visible|interactable)"
)

RATE_LIMIT_PATTERN = re.compile(
    r"\b429\b|too many requests|rate.?limit|quota exceeded|slow down"
)

BOT_DETECTION_PATTERN = re.compile(
    r"captcha|recaptcha|hcaptcha|turnstile|cloudflare|verify you are human"
    r"|verifying you are human|bot detect|access denied|are you a robot"
)


def default_strategies() -> List[RecoveryStrategy]:
    """Fresh copies of the default rows; callers may mutate their own list."""
    return [
        RecoveryStrategy(
            strategy_id="default:network",
            description="transient network failure",
            pattern=NETWORK_PATTERN,
            kinds=(ErrorKind.NETWORK,),
            action=RecoveryAction.RETRY,
            max_retries=3,
            delay=1.0,
        ),
        RecoveryStrategy(
            strategy_id="default:navigation-timeout",
            description="navigation timeout",
            pattern=NAVIGATION_TIMEOUT_PATTERN,
            kinds=(ErrorKind.NAVIGATION_TIMEOUT,),
            action=RecoveryAction.REFRESH,
            max_retries=2,
            delay=2.0,
        ),
        RecoveryStrategy(
            strategy_id="default:session-lost",
            description="browser session or context destroyed",
            pattern=SESSION_LOST_PATTERN,
            kinds=(ErrorKind.SESSION_LOST,),
            action=RecoveryAction.RESTART_BROWSER,
            max_retries=1,
            delay=2.0,
        ),
        RecoveryStrategy(
            strategy_id="default:element-not-found",
            description="element not found",
            pattern=ELEMENT_NOT_FOUND_PATTERN,
            kinds=(ErrorKind.ELEMENT_NOT_FOUND,),
            action=RecoveryAction.RETRY,
            max_retries=2,
            delay=0.5,
        ),
        RecoveryStrategy(
            strategy_id="default:rate-limit",
            description="rate limited",
            pattern=RATE_LIMIT_PATTERN,
            kinds=(ErrorKind.RATE_LIMITED,),
            action=RecoveryAction.RETRY,
            max_retries=2,
            delay=5.0,
        ),
        RecoveryStrategy(
            strategy_id="default:bot-detection",
            description="bot detection or CAPTCHA",
            pattern=BOT_DETECTION_PATTERN,
            kinds=(ErrorKind.BOT_DETECTED,),
            action=RecoveryAction.SKIP,
            max_retries=0,
        ),
    ]


# Hints attached to skipped failures, by strategy id.
SKIP_HINTS = {
    "default:bot-detection": (
        "Bot detection or a CAPTCHA blocked the page. Retrying will not help; "
        "run solve_captcha, then repeat the original tool."
    ),
}
