"""
CAPTCHA Gate

Waits for a reCAPTCHA challenge to be marked solved. Nothing here solves the
challenge: a human operator (or an external service) is expected to do that
while the workflow holds. The gate only polls the response field the widget
fills in once the challenge is resolved.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from playwright.async_api import Error as PlaywrightError

from browser.driver import PageDriver
from core.errors import DriverTimeoutError

logger = logging.getLogger(__name__)

RECAPTCHA_RESPONSE_ID = "g-recaptcha-response-100000"

RECAPTCHA_SOLVED_PROBE = """
(fieldId) => {
    const candidates = [
        document.getElementById(fieldId),
        ...document.querySelectorAll('textarea[name="g-recaptcha-response"]'),
    ];
    return candidates.some((field) => field && field.value && field.value.length > 0);
}
"""


@dataclass
class CaptchaGateResult:
    """Outcome of waiting on the CAPTCHA gate."""
    solved: bool
    waited_seconds: float = 0.0
    error: Optional[str] = None


async def wait_for_captcha(page: PageDriver, timeout_ms: int = 15000,
                           field_id: str = RECAPTCHA_RESPONSE_ID) -> CaptchaGateResult:
    """Poll the response field until it holds a token or ``timeout_ms`` elapses."""
    started = time.monotonic()
    try:
        await page.wait_for_function(RECAPTCHA_SOLVED_PROBE, arg=field_id, timeout=timeout_ms)
    except DriverTimeoutError:
        waited = time.monotonic() - started
        logger.debug(f"CAPTCHA not confirmed after {waited:.1f}s")
        return CaptchaGateResult(solved=False, waited_seconds=waited, error="timeout")
    except PlaywrightError as e:
        # Frame reloads and mid-poll navigations land here; the caller carries on unconfirmed
        waited = time.monotonic() - started
        logger.warning(f"CAPTCHA check failed after {waited:.1f}s: {e}")
        return CaptchaGateResult(solved=False, waited_seconds=waited, error=str(e))

    return CaptchaGateResult(solved=True, waited_seconds=time.monotonic() - started)


async def hold_for_resolution(pause_seconds: float,
                              sleep: Callable[[float], Awaitable[None]] = asyncio.sleep) -> None:
    """
    Hold the workflow so the challenge can be resolved externally.

    This is a plain cancellable sleep: cancelling the surrounding task ends it.
    """
    logger.warning(f"Waiting {pause_seconds:.0f}s for the CAPTCHA to be resolved")
    await sleep(pause_seconds)
