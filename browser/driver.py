"""
Page Driver Abstraction

The automation state machine only talks to a ``PageDriver``. The Playwright
implementation lives here; tests provide a scripted fake.

All timeouts are in milliseconds, like Playwright. Every bounded wait raises
``DriverTimeoutError`` when it expires.
"""

import logging
from abc import ABC, abstractmethod
from pathlib import Path
from typing import Any, Dict, Optional, Pattern, Union

from playwright.async_api import Page
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from core.errors import DriverTimeoutError

logger = logging.getLogger(__name__)

UrlMatcher = Union[str, Pattern[str]]


class PageDriver(ABC):
    """Capabilities the portal workflow needs from a browser page."""

    @property
    @abstractmethod
    def url(self) -> str:
        pass

    @abstractmethod
    async def goto(self, url: str, wait_until: str = "domcontentloaded", timeout: int = 30000) -> None:
        pass

    @abstractmethod
    async def wait_for_load_state(self, state: str = "networkidle", timeout: int = 30000) -> None:
        pass

    @abstractmethod
    async def wait_for_selector(self, selector: str, state: str = "visible", timeout: int = 15000) -> None:
        pass

    @abstractmethod
    async def wait_for_url(self, url: UrlMatcher, timeout: int = 30000) -> None:
        pass

    @abstractmethod
    async def wait_for_function(self, expression: str, arg: Any = None, timeout: int = 30000) -> None:
        pass

    @abstractmethod
    async def bounding_box(self, selector: str) -> Optional[Dict[str, float]]:
        pass

    @abstractmethod
    async def click(self, selector: str, *, force: bool = False, delay: float = 0, timeout: int = 10000) -> None:
        pass

    @abstractmethod
    async def fill(self, selector: str, value: str) -> None:
        pass

    @abstractmethod
    async def type_text(self, text: str, delay: float = 0) -> None:
        """Type into the focused element through the keyboard."""

    @abstractmethod
    async def set_input_files(self, selector: str, path: Union[str, Path]) -> None:
        pass

    @abstractmethod
    async def select_option(self, selector: str, value: str) -> None:
        pass

    @abstractmethod
    async def mouse_move(self, x: float, y: float) -> None:
        pass

    @abstractmethod
    async def evaluate(self, expression: str, arg: Any = None) -> Any:
        pass

    @abstractmethod
    async def content(self) -> str:
        pass

    @abstractmethod
    async def title(self) -> str:
        pass

    @abstractmethod
    async def screenshot(self, path: Union[str, Path], full_page: bool = True) -> None:
        pass

    @abstractmethod
    async def download(self, trigger_selector: str, save_path: Union[str, Path], timeout: int = 60000) -> Path:
        """Click ``trigger_selector``, wait for the download it starts and save it."""


class PlaywrightPageDriver(PageDriver):
    """``PageDriver`` backed by a Playwright ``Page``."""

    def __init__(self, page: Page):
        self.page = page

    @property
    def url(self) -> str:
        return self.page.url

    async def goto(self, url, wait_until="domcontentloaded", timeout=30000):
        try:
            await self.page.goto(url, wait_until=wait_until, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise DriverTimeoutError(f"Navigation to {url} timed out after {timeout}ms") from e

    async def wait_for_load_state(self, state="networkidle", timeout=30000):
        try:
            await self.page.wait_for_load_state(state, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise DriverTimeoutError(f"Load state '{state}' not reached within {timeout}ms") from e

    async def wait_for_selector(self, selector, state="visible", timeout=15000):
        try:
            await self.page.wait_for_selector(selector, state=state, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise DriverTimeoutError(f"Selector {selector} not {state} within {timeout}ms") from e

    async def wait_for_url(self, url, timeout=30000):
        try:
            await self.page.wait_for_url(url, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise DriverTimeoutError(f"URL did not match {url} within {timeout}ms") from e

    async def wait_for_function(self, expression, arg=None, timeout=30000):
        try:
            await self.page.wait_for_function(expression, arg=arg, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise DriverTimeoutError(f"Condition not met within {timeout}ms") from e

    async def bounding_box(self, selector):
        element = await self.page.query_selector(selector)
        if element is None:
            return None
        return await element.bounding_box()

    async def click(self, selector, *, force=False, delay=0, timeout=10000):
        try:
            await self.page.locator(selector).first.click(force=force, delay=delay, timeout=timeout)
        except PlaywrightTimeoutError as e:
            raise DriverTimeoutError(f"Click on {selector} timed out after {timeout}ms") from e

    async def fill(self, selector, value):
        await self.page.locator(selector).first.fill(value)

    async def type_text(self, text, delay=0):
        await self.page.keyboard.type(text, delay=delay)

    async def set_input_files(self, selector, path):
        await self.page.set_input_files(selector, str(path))

    async def select_option(self, selector, value):
        await self.page.select_option(selector, value)

    async def mouse_move(self, x, y):
        await self.page.mouse.move(x, y)

    async def evaluate(self, expression, arg=None):
        return await self.page.evaluate(expression, arg)

    async def content(self):
        return await self.page.content()

    async def title(self):
        return await self.page.title()

    async def screenshot(self, path, full_page=True):
        await self.page.screenshot(path=str(path), full_page=full_page)

    async def download(self, trigger_selector, save_path, timeout=60000):
        try:
            async with self.page.expect_download(timeout=timeout) as download_info:
                await self.page.click(trigger_selector)
            download = await download_info.value
        except PlaywrightTimeoutError as e:
            raise DriverTimeoutError(f"No download started within {timeout}ms") from e

        target = Path(save_path)
        target.parent.mkdir(parents=True, exist_ok=True)
        await download.save_as(str(target))
        logger.debug(f"Download saved to {target} (suggested name: {download.suggested_filename})")
        return target
