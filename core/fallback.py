"""
Browser Fallback Orchestrator

Runs the portal automation against the fixed engine order, one engine at a
time, and stops at the first success. Each fallback waits a little longer
before starting and gives the operator more time on the CAPTCHA pause, since
later engines are only reached after earlier ones were flagged.

This is the only layer that spans engine types.
"""

import asyncio
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Awaitable, Callable, List, Optional, Tuple, Union

from browser.stealth import ENGINE_ORDER
from core.automation import AutomationConfig, PortalAutomation
from core.errors import AllEnginesFailedError, TokenNotFoundError
from core.file_manager import FileManager
from core.models import AutomationResult, EngineDescriptor, FormatType

logger = logging.getLogger(__name__)

AutomationFactory = Callable[[str, EngineDescriptor, float], PortalAutomation]


@dataclass
class EngineFallbackPolicy:
    """Engine order, inter-engine backoff and CAPTCHA pause escalation."""
    engines: Tuple[EngineDescriptor, ...] = ENGINE_ORDER
    base_delay: float = 5.0
    base_pause: float = 10.0
    escalated_pause: float = 20.0
    pause_step: float = 15.0

    def captcha_pause(self, index: int) -> float:
        """Pause for the engine at ``index`` (0-based): 10s, 20s, 35s, ..."""
        if index == 0:
            return self.base_pause
        return self.escalated_pause + self.pause_step * (index - 1)

    def backoff(self, index: int) -> float:
        """Wait after the engine at ``index`` failed."""
        return (index + 1) * self.base_delay


class BrowserFallbackOrchestrator:
    """Tries each engine in order until one completes the workflow."""

    def __init__(
        self,
        files: FileManager,
        policy: Optional[EngineFallbackPolicy] = None,
        automation_config: Optional[AutomationConfig] = None,
        automation_factory: Optional[AutomationFactory] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self.files = files
        self.policy = policy or EngineFallbackPolicy()
        self.automation_config = automation_config or AutomationConfig()
        self.automation_factory = automation_factory or self._default_factory
        self.sleep = sleep

    def _default_factory(self, job_id: str, engine: EngineDescriptor, captcha_pause: float) -> PortalAutomation:
        return PortalAutomation(
            job_id,
            engine,
            self.files,
            captcha_pause=captcha_pause,
            config=self.automation_config,
            sleep=self.sleep,
        )

    async def run_automation(
        self,
        job_id: str,
        input_file: Union[str, Path],
        email: str,
        fmt: FormatType,
    ) -> AutomationResult:
        """
        Run the workflow with engine fallback.

        Raises:
            AllEnginesFailedError: every engine failed; its message is the
                last engine's error
        """
        engines = self.policy.engines
        failures: List[Tuple[str, BaseException]] = []

        for index, engine in enumerate(engines):
            pause = self.policy.captcha_pause(index)
            logger.info(
                f"[{job_id}] engine attempt {index + 1}/{len(engines)}: {engine.name} "
                f"({engine.browser_type.value}), CAPTCHA pause {pause:.0f}s"
            )
            automation = self.automation_factory(job_id, engine, pause)

            try:
                result = await automation.run(input_file, email, fmt)
                if not result.token:
                    raise TokenNotFoundError("Automation finished without a token")
            except Exception as e:
                failures.append((engine.name, e))
                logger.error(f"[{job_id}] {engine.name} failed: {e}")
                if index < len(engines) - 1:
                    delay = self.policy.backoff(index)
                    logger.info(f"[{job_id}] waiting {delay:.0f}s before the next engine")
                    await self.sleep(delay)
                continue

            logger.info(
                f"[{job_id}] {engine.name} succeeded "
                f"(upload attempts: {result.upload_attempts}, query attempts: {result.query_attempts})"
            )
            return result

        raise AllEnginesFailedError(failures)
