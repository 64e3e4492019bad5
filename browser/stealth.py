"""
Stealth Browser Engines

Fixed engine order for the portal workflow, with per-engine launch and context
profiles and the fingerprint-normalization script installed before any
navigation.

Features:
- EngineA (Chromium): full stealth profile, custom user agent and launch flags
- EngineB (Firefox): webdriver pref disabled, Firefox user agent override
- EngineC (WebKit): stock profile with the basic fingerprint patches
- ``engine_session``: launches one engine and always closes it on exit
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Tuple

from playwright.async_api import Browser, async_playwright

from browser.driver import PageDriver, PlaywrightPageDriver
from core.models import BrowserType, EngineDescriptor, HumanProfile

logger = logging.getLogger(__name__)

CHROME_USER_AGENT = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
FIREFOX_USER_AGENT = "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:131.0) Gecko/20100101 Firefox/131.0"

PORTAL_LOCALE = "es-MX"
PORTAL_TIMEZONE = "America/Mexico_City"
VIEWPORT = {"width": 1366, "height": 768}

ENGINE_A = EngineDescriptor(
    name="EngineA",
    browser_type=BrowserType.CHROMIUM,
    user_agent=CHROME_USER_AGENT,
    profile=HumanProfile.STRONG,
    launch_args=(
        "--lang=es-MX,es",
        "--ignore-certificate-errors",
        "--ignore-certificate-errors-spki-list",
        "--window-position=0,0",
        "--disable-dev-shm-usage",
        "--no-sandbox",
        "--disable-setuid-sandbox",
        "--disable-infobars",
        "--disable-features=IsolateOrigins,site-per-process",
        "--disable-web-security",
        "--disable-blink-features=AutomationControlled",
        f"--user-agent={CHROME_USER_AGENT}",
    ),
)

ENGINE_B = EngineDescriptor(
    name="EngineB",
    browser_type=BrowserType.FIREFOX,
    user_agent=FIREFOX_USER_AGENT,
    profile=HumanProfile.STANDARD,
    firefox_user_prefs={
        "dom.webdriver.enabled": False,
        "useAutomationExtension": False,
        "general.useragent.override": FIREFOX_USER_AGENT,
        "intl.accept_languages": "es-MX,es,en-US,en",
    },
)

ENGINE_C = EngineDescriptor(
    name="EngineC",
    browser_type=BrowserType.WEBKIT,
    user_agent=None,
    profile=HumanProfile.BASIC,
)

# Fallback sequence. Not configurable at runtime.
ENGINE_ORDER: Tuple[EngineDescriptor, ...] = (ENGINE_A, ENGINE_B, ENGINE_C)


_WEBDRIVER_PATCH = """
Object.defineProperty(navigator, 'webdriver', { get: () => undefined });
"""

_NAVIGATOR_PATCH = """
Object.defineProperty(navigator, 'languages', { get: () => ['es-MX', 'es', 'en-US', 'en'] });
Object.defineProperty(navigator, 'hardwareConcurrency', { get: () => 8 });
Object.defineProperty(navigator, 'deviceMemory', { get: () => 8 });
Object.defineProperty(navigator, 'plugins', {
    get: () => [{
        0: { type: 'application/x-google-chrome-pdf', suffixes: 'pdf', description: 'Portable Document Format' },
        description: 'Portable Document Format',
        filename: 'internal-pdf-viewer',
        length: 1,
        name: 'Chrome PDF Plugin',
    }],
});
"""

_CHROME_RUNTIME_PATCH = """
window.chrome = { runtime: {}, loadTimes: function() {}, csi: function() {}, app: {} };

const originalQuery = window.navigator.permissions.query;
window.navigator.permissions.query = (parameters) => (
    parameters.name === 'notifications'
        ? Promise.resolve({ state: 'prompt' })
        : originalQuery(parameters)
);

// Keep the patched query looking native
const originalToString = Function.prototype.toString;
Function.prototype.toString = function() {
    if (this === window.navigator.permissions.query) {
        return 'function query() { [native code] }';
    }
    return originalToString.call(this);
};
"""


def stealth_script(profile: HumanProfile) -> str:
    """JavaScript patches for an engine's human-profile strength."""
    parts = [_WEBDRIVER_PATCH]
    if profile in (HumanProfile.STANDARD, HumanProfile.STRONG):
        parts.append(_NAVIGATOR_PATCH)
    if profile == HumanProfile.STRONG:
        parts.append(_CHROME_RUNTIME_PATCH)
    return "\n".join(parts)


def launch_options(engine: EngineDescriptor, headless: bool = True) -> Dict[str, Any]:
    options: Dict[str, Any] = {"headless": headless}
    if engine.launch_args:
        options["args"] = list(engine.launch_args)
    if engine.firefox_user_prefs:
        options["firefox_user_prefs"] = dict(engine.firefox_user_prefs)
    if engine.channel:
        options["channel"] = engine.channel
    return options


def context_options(engine: EngineDescriptor) -> Dict[str, Any]:
    options: Dict[str, Any] = {
        "viewport": dict(VIEWPORT),
        "locale": PORTAL_LOCALE,
        "timezone_id": PORTAL_TIMEZONE,
        "accept_downloads": True,
        "ignore_https_errors": True,
        "extra_http_headers": {
            "Accept-Language": "es-MX,es;q=0.9,en;q=0.8",
            "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,*/*;q=0.8",
            "Upgrade-Insecure-Requests": "1",
        },
        "color_scheme": "light",
        "device_scale_factor": 1,
        "has_touch": False,
        "is_mobile": False,
        "java_script_enabled": True,
    }
    # WebKit rejects the geolocation permission grant
    if engine.browser_type != BrowserType.WEBKIT:
        options["permissions"] = ["geolocation"]
    if engine.user_agent:
        options["user_agent"] = engine.user_agent
    return options


async def _close_quietly(browser: Browser, engine: EngineDescriptor) -> None:
    try:
        await browser.close()
        logger.debug(f"[{engine.name}] browser closed")
    except Exception as e:
        logger.warning(f"[{engine.name}] error while closing browser: {e}")


@asynccontextmanager
async def engine_session(engine: EngineDescriptor, headless: bool = True) -> AsyncIterator[PageDriver]:
    """
    Launch ``engine`` with its stealth profile and yield a page driver.

    The browser process is closed on every exit path.
    """
    async with async_playwright() as playwright:
        launcher = getattr(playwright, engine.browser_type.value)
        logger.info(f"[{engine.name}] launching {engine.browser_type.value} (headless={headless})")
        browser = await launcher.launch(**launch_options(engine, headless))
        try:
            context = await browser.new_context(**context_options(engine))
            await context.add_init_script(stealth_script(engine.profile))
            page = await context.new_page()
            yield PlaywrightPageDriver(page)
        finally:
            await _close_quietly(browser, engine)


def describe_engines() -> List[Dict[str, str]]:
    """Engine order as plain dicts, for logs and the health endpoint."""
    return [
        {"name": e.name, "browser": e.browser_type.value, "profile": e.profile.value}
        for e in ENGINE_ORDER
    ]
