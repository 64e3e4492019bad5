#!/usr/bin/env python3
"""
Portal Automation State Machine

Drives one browser engine through the portal workflow:

    Init -> Navigated -> Uploading(n) -> TokenAcquired -> Returned
         -> Querying(m) -> CaptchaWait -> Downloaded

with ``UploadFailed`` / ``QueryFailed`` exits once a phase spends its retry
budget. The class is engine-agnostic: the engine descriptor and the session
factory that opens a page for it are parameters.

Usage:
    automation = PortalAutomation(job_id, ENGINE_A, files, captcha_pause=10)
    result = await automation.run("outputs/job.txt", "ops@example.com", FormatType.BOTH)
    print(result.token, result.download_path)
"""

import asyncio
import logging
import random
import re
from dataclasses import dataclass
from functools import partial
from pathlib import Path
from typing import AsyncContextManager, Awaitable, Callable, Dict, List, Optional, Pattern, Tuple, Union
from urllib.parse import urljoin

from browser.captcha_gate import hold_for_resolution, wait_for_captcha
from browser.driver import PageDriver
from browser.human import (
    approach_element,
    human_pause,
    scroll_human,
    simulate_human_activity,
    type_like_human,
)
from browser.stealth import engine_session
from core.diagnostics import capture_failure_snapshot
from core.errors import (
    DownloadUnavailableError,
    DriverTimeoutError,
    FormNotSubmittedError,
    PortalGenericError,
    PortalQueryError,
    SubmitControlError,
    TokenNotFoundError,
)
from core.file_manager import FileManager
from core.models import AutomationResult, AutomationState, EngineDescriptor, FormatType
from core.retry import PhaseRetryPolicy

logger = logging.getLogger(__name__)

SessionFactory = Callable[[EngineDescriptor], AsyncContextManager[PageDriver]]

SELECTORS = {
    "file_input": 'input[type="file"]',
    "email": 'input[type="email"][name="correo"]',
    "format": 'select[name="formato"]',
    "upload_submit": 'input[type="button"][value="Cargar archivo"]',
    "return_button": 'input[type="button"][value="Regresar"]',
    "home_link": 'a[href="inicio.do"]',
    "query_link": 'a[href="inicio2.do"]',
    "token": 'input[type="text"][name="token"]',
    "query_submit": 'input[type="button"][value="Consultar resultado"]',
    "download": 'input[type="button"][value="Descargar"]',
}

GENERIC_ERROR_MARKER = "Ha ocurrido un error al procesar su solicitud"
ERROR_TITLE_MARKER = "ERROR"
TOKEN_LABEL = "Token:"

UPLOAD_RESULT_URL: Pattern[str] = re.compile(r"/cep-scl/carga\w*\.do", re.IGNORECASE)

# Checked in order; the first pattern that matches wins.
TOKEN_PATTERNS: Tuple[Pattern[str], ...] = (
    re.compile(r"Token:\s*<strong>\s*([A-Za-z0-9]+)\s*</strong>", re.IGNORECASE),
    re.compile(r"<strong>\s*Token:?\s*</strong>\s*([A-Za-z0-9]+)", re.IGNORECASE),
    re.compile(r"Token\s*:\s*<b>\s*([A-Za-z0-9]+)\s*</b>", re.IGNORECASE),
    re.compile(r"Token\s*:\s*<span[^>]*>\s*([A-Za-z0-9]+)\s*</span>", re.IGNORECASE),
)

_MARKER_PROBE = """
(markers) => {
    const text = document.body ? document.body.innerText : '';
    return markers.some((marker) => text.includes(marker));
}
"""


def extract_token(content: str) -> Optional[str]:
    """Return the portal token from ``content`` using the first matching pattern."""
    for pattern in TOKEN_PATTERNS:
        match = pattern.search(content)
        if match:
            return match.group(1)
    return None


def is_submission_form(content: str) -> bool:
    """True when ``content`` is still the upload form."""
    return 'type="file"' in content and 'value="Cargar archivo"' in content


def classify_upload_response(content: str) -> str:
    """
    Turn the page shown after an upload into a token or a classified error.

    Raises:
        PortalGenericError: generic portal error, worth retrying
        FormNotSubmittedError: the form was never submitted
        TokenNotFoundError: no marker and no token
    """
    token = extract_token(content)
    if token:
        return token
    if GENERIC_ERROR_MARKER in content:
        raise PortalGenericError("Portal returned its generic error page after the upload")
    if is_submission_form(content):
        raise FormNotSubmittedError("Still on the submission form after submitting the upload")
    raise TokenNotFoundError("Token not found after submitting the upload")


async def first_signal(signals: Dict[str, Awaitable], timeout: float) -> Optional[str]:
    """
    Race named awaitables; return the name of the first to finish without error.

    Returns None when all of them fail or ``timeout`` seconds pass. The losers
    are cancelled.
    """
    tasks = {asyncio.ensure_future(awaitable): name for name, awaitable in signals.items()}
    pending = set(tasks)
    winner = None
    loop = asyncio.get_running_loop()
    deadline = loop.time() + timeout

    try:
        while pending and winner is None:
            remaining = deadline - loop.time()
            if remaining <= 0:
                break
            done, pending = await asyncio.wait(pending, timeout=remaining, return_when=asyncio.FIRST_COMPLETED)
            for task in done:
                if task.cancelled() or task.exception() is not None:
                    continue
                if winner is None:
                    winner = tasks[task]
    finally:
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)

    return winner


@dataclass
class AutomationConfig:
    """Portal location, bounded waits (ms) and phase retry settings."""
    portal_url: str = "https://www.banxico.org.mx/cep-scl/"
    headless: bool = True

    # Timeouts
    navigation_timeout: int = 30000
    network_idle_timeout: int = 30000
    element_timeout: int = 15000
    recovery_timeout: int = 30000
    upload_outcome_timeout: int = 30000
    upload_captcha_timeout: int = 10000
    captcha_confirm_timeout: int = 5000
    query_settle_timeout: int = 60000
    download_button_timeout: int = 20000
    download_timeout: int = 60000

    # Retry settings
    upload_max_attempts: int = 3
    upload_retry_delay: float = 5.0
    upload_retry_jitter: float = 2.0
    query_max_attempts: int = 3
    query_retry_delay: float = 6.0
    query_retry_jitter: float = 3.0

    @property
    def home_url(self) -> str:
        return urljoin(self.portal_url, "inicio.do")

    @property
    def query_url(self) -> str:
        return urljoin(self.portal_url, "inicio2.do")


class PortalAutomation:
    """One engine attempt at the upload -> token -> query -> download workflow."""

    def __init__(
        self,
        job_id: str,
        engine: EngineDescriptor,
        files: FileManager,
        captcha_pause: float,
        config: Optional[AutomationConfig] = None,
        session_factory: Optional[SessionFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: Optional[random.Random] = None,
    ):
        self.job_id = job_id
        self.engine = engine
        self.files = files
        self.captcha_pause = captcha_pause
        self.config = config or AutomationConfig()
        self.session_factory = session_factory or partial(engine_session, headless=self.config.headless)
        self.sleep = sleep
        self.rng = rng or random.Random()

        self.state = AutomationState.INIT
        self.history: List[AutomationState] = [AutomationState.INIT]
        self.upload_attempts = 0
        self.query_attempts = 0

        self.upload_policy = PhaseRetryPolicy(
            phase="upload",
            max_attempts=self.config.upload_max_attempts,
            base_delay=self.config.upload_retry_delay,
            jitter=self.config.upload_retry_jitter,
        )
        self.query_policy = PhaseRetryPolicy(
            phase="query",
            max_attempts=self.config.query_max_attempts,
            base_delay=self.config.query_retry_delay,
            jitter=self.config.query_retry_jitter,
        )

    # ---------- helpers ----------

    @property
    def _tag(self) -> str:
        return f"[{self.job_id}][{self.engine.name}]"

    def _enter(self, state: AutomationState) -> None:
        if state != self.state:
            logger.debug(f"{self._tag} {self.state.value} -> {state.value}")
        self.state = state
        self.history.append(state)

    async def _pause(self, min_sec: float, max_sec: float) -> None:
        await human_pause(min_sec, max_sec, rng=self.rng, sleep=self.sleep)

    async def _settle(self, page: PageDriver, timeout: int) -> None:
        try:
            await page.wait_for_load_state("networkidle", timeout=timeout)
        except DriverTimeoutError:
            logger.debug(f"{self._tag} network idle not reached within {timeout}ms, continuing")

    async def _go_home(self, page: PageDriver) -> None:
        """Back to the portal start page, by link or by URL."""
        try:
            await page.click(SELECTORS["home_link"], timeout=10000)
            await self.sleep(1.0)
        except Exception as e:
            logger.debug(f"{self._tag} home link unavailable ({e}), navigating directly")
            await page.goto(self.config.home_url, timeout=self.config.navigation_timeout)
            await self._settle(page, 10000)

    # ---------- entry point ----------

    async def run(self, input_file: Union[str, Path], email: str, fmt: FormatType) -> AutomationResult:
        """Run the whole workflow on this engine. The browser is always closed."""
        async with self.session_factory(self.engine) as page:
            try:
                await self._navigate(page)
                token = await self._upload_phase(page, input_file, email, fmt)
                await self._return_from_upload(page)
                download_path = await self._query_phase(page, email, token)
            except Exception as e:
                logger.error(f"{self._tag} attempt failed in state {self.state.value}: {e}")
                await capture_failure_snapshot(
                    page, self.files, self.job_id, f"{self.engine.name}_{self.state.value}"
                )
                raise

        return AutomationResult(
            token=token,
            download_path=download_path,
            engine=self.engine.name,
            upload_attempts=self.upload_attempts,
            query_attempts=self.query_attempts,
        )

    async def _navigate(self, page: PageDriver) -> None:
        logger.info(f"{self._tag} navigating to {self.config.portal_url}")
        await page.goto(self.config.portal_url, wait_until="domcontentloaded", timeout=self.config.navigation_timeout)
        await self._settle(page, self.config.network_idle_timeout)
        await self.sleep(3.0)
        self._enter(AutomationState.NAVIGATED)

    # ---------- upload phase ----------

    async def _upload_phase(self, page: PageDriver, input_file, email: str, fmt: FormatType) -> str:
        async def attempt(n: int) -> str:
            self.upload_attempts = n
            self._enter(AutomationState.UPLOADING)
            timeout = self.config.element_timeout if n == 1 else self.config.recovery_timeout
            return await self._upload_once(page, input_file, email, fmt, timeout)

        async def recover(n: int, error: BaseException) -> None:
            await self._go_home(page)

        try:
            token, attempts = await self.upload_policy.run(attempt, recover, sleep=self.sleep, rng=self.rng)
        except Exception:
            self._enter(AutomationState.UPLOAD_FAILED)
            raise

        logger.info(f"{self._tag} file uploaded (attempt {attempts}/{self.upload_policy.max_attempts})")
        self._enter(AutomationState.TOKEN_ACQUIRED)
        return token

    async def _upload_once(self, page: PageDriver, input_file, email: str, fmt: FormatType, timeout: int) -> str:
        await simulate_human_activity(page, rng=self.rng, sleep=self.sleep)

        file_input = SELECTORS["file_input"]
        await page.wait_for_selector(file_input, state="visible", timeout=timeout)
        if await approach_element(page, file_input, rng=self.rng, sleep=self.sleep):
            await self._pause(0.3, 0.8)
        await page.set_input_files(file_input, input_file)
        await self._pause(1.5, 3.5)

        email_input = SELECTORS["email"]
        await page.wait_for_selector(email_input, state="visible", timeout=timeout)
        await approach_element(page, email_input, rng=self.rng, sleep=self.sleep)
        await type_like_human(page, email_input, email, rng=self.rng, sleep=self.sleep)
        await self._pause(0.8, 2.3)
        await scroll_human(page, rng=self.rng, sleep=self.sleep)

        await page.wait_for_selector(SELECTORS["format"], state="visible", timeout=timeout)
        await page.select_option(SELECTORS["format"], fmt.portal_option)
        await self._pause(0.5, 1.3)
        await simulate_human_activity(page, rng=self.rng, sleep=self.sleep)

        await self._submit_upload(page, timeout)
        await self._await_upload_outcome(page)

        return classify_upload_response(await page.content())

    async def _submit_upload(self, page: PageDriver, timeout: int) -> None:
        submit = SELECTORS["upload_submit"]
        await page.wait_for_selector(submit, state="visible", timeout=timeout)
        if await approach_element(page, submit, rng=self.rng, sleep=self.sleep):
            await self._pause(1.0, 2.0)

        gate = await wait_for_captcha(page, self.config.upload_captcha_timeout)
        if not gate.solved:
            logger.debug(f"{self._tag} no solved CAPTCHA before upload, submitting anyway")

        try:
            await page.click(submit, delay=self.rng.uniform(20, 70))
        except Exception as e:
            logger.warning(f"{self._tag} upload click failed ({e}), retrying with a forced click")
            try:
                await page.click(submit, force=True)
            except Exception as forced_error:
                raise SubmitControlError(f"Could not click the upload button: {forced_error}") from forced_error

    async def _await_upload_outcome(self, page: PageDriver) -> None:
        timeout = self.config.upload_outcome_timeout
        winner = await first_signal(
            {
                "navigation": page.wait_for_url(UPLOAD_RESULT_URL, timeout=timeout),
                "marker": page.wait_for_function(
                    _MARKER_PROBE, arg=[TOKEN_LABEL, GENERIC_ERROR_MARKER], timeout=timeout
                ),
            },
            timeout=timeout / 1000,
        )
        if winner is None:
            logger.info(f"{self._tag} no upload outcome within {timeout / 1000:.0f}s, inspecting current page")
        else:
            logger.debug(f"{self._tag} upload outcome signalled by {winner}")
        await self._settle(page, 10000)
        await self.sleep(2.0)

    async def _return_from_upload(self, page: PageDriver) -> None:
        await self._pause(0.5, 1.5)
        try:
            await page.click(SELECTORS["return_button"])
        except Exception as e:
            logger.debug(f"{self._tag} return button unavailable ({e}), going home instead")
            await self._go_home(page)
        await self.sleep(2.0)
        self._enter(AutomationState.RETURNED)

    # ---------- query phase ----------

    async def _query_phase(self, page: PageDriver, email: str, token: str) -> str:
        async def attempt(n: int) -> str:
            self.query_attempts = n
            self._enter(AutomationState.QUERYING)
            return await self._query_once(page, email, token)

        async def recover(n: int, error: BaseException) -> None:
            await self._go_home(page)

        try:
            download_path, attempts = await self.query_policy.run(attempt, recover, sleep=self.sleep, rng=self.rng)
        except Exception:
            self._enter(AutomationState.QUERY_FAILED)
            raise

        logger.info(f"{self._tag} result downloaded (attempt {attempts}/{self.query_policy.max_attempts})")
        self._enter(AutomationState.DOWNLOADED)
        return download_path

    async def _open_query_view(self, page: PageDriver) -> None:
        try:
            await page.click(SELECTORS["query_link"], timeout=10000)
        except Exception as e:
            logger.debug(f"{self._tag} query link unavailable ({e}), navigating directly")
            await page.goto(self.config.query_url, timeout=self.config.navigation_timeout)
        await self._pause(1.5, 4.5)

    async def _query_once(self, page: PageDriver, email: str, token: str) -> str:
        await scroll_human(page, rng=self.rng, sleep=self.sleep)
        await self._open_query_view(page)
        await simulate_human_activity(page, rng=self.rng, sleep=self.sleep)
        await scroll_human(page, rng=self.rng, sleep=self.sleep)

        email_input = SELECTORS["email"]
        await page.wait_for_selector(email_input, state="visible", timeout=self.config.element_timeout)
        await page.click(email_input)
        await page.fill(email_input, email)
        await self.sleep(0.6)

        token_input = SELECTORS["token"]
        await page.click(token_input)
        await page.fill(token_input, token)
        await self.sleep(0.5)
        await scroll_human(page, rng=self.rng, sleep=self.sleep)

        self._enter(AutomationState.CAPTCHA_WAIT)
        await hold_for_resolution(self.captcha_pause, sleep=self.sleep)
        gate = await wait_for_captcha(page, self.config.captcha_confirm_timeout)
        if not gate.solved:
            logger.warning(f"{self._tag} CAPTCHA not confirmed, submitting the query anyway")

        submit = SELECTORS["query_submit"]
        await approach_element(page, submit, rng=self.rng, sleep=self.sleep)
        await page.click(submit)

        await self._settle(page, self.config.query_settle_timeout)
        await self.sleep(3.0)

        html = await page.content()
        title = await page.title()
        if ERROR_TITLE_MARKER in title or GENERIC_ERROR_MARKER in html:
            raise PortalQueryError("Portal reported an error for the result query")

        return await self._download(page)

    async def _download(self, page: PageDriver) -> str:
        download_button = SELECTORS["download"]
        timeout = self.config.download_button_timeout
        try:
            await page.wait_for_selector(download_button, state="visible", timeout=timeout)
        except DriverTimeoutError:
            html = await page.content()
            if GENERIC_ERROR_MARKER in html:
                raise DownloadUnavailableError("Portal reported an error and offered no download")
            raise PortalQueryError(f"Download button did not appear within {timeout / 1000:.0f}s")

        await scroll_human(page, rng=self.rng, sleep=self.sleep)
        await self._pause(0.3, 0.8)

        target = self.files.download_path(self.job_id)
        saved = await page.download(download_button, target, timeout=self.config.download_timeout)
        logger.info(f"{self._tag} archive saved to {saved}")
        return str(saved)
