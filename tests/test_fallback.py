"""
Engine fallback tests.
"""

import pytest

from browser.stealth import ENGINE_A, ENGINE_B, ENGINE_C, ENGINE_ORDER
from core.automation import AutomationConfig, PortalAutomation
from core.errors import (
    AllEnginesFailedError,
    FormNotSubmittedError,
    PhaseExhaustedError,
    TokenNotFoundError,
)
from core.fallback import BrowserFallbackOrchestrator, EngineFallbackPolicy
from core.models import AutomationResult, BrowserType, FormatType
from tests.fakes import FakeBrowsers, FakePortalPage

JOB_ID = "20240315-0900-T01"


class ScriptedAutomation:
    """Stands in for PortalAutomation; fails or succeeds as told."""

    def __init__(self, engine, outcome):
        self.engine = engine
        self.outcome = outcome

    async def run(self, input_file, email, fmt):
        if isinstance(self.outcome, BaseException):
            raise self.outcome
        return AutomationResult(token=self.outcome, download_path="/tmp/x.zip", engine=self.engine.name)


class RecordingFactory:
    def __init__(self, outcomes):
        self.outcomes = dict(outcomes)
        self.calls = []

    def __call__(self, job_id, engine, captcha_pause):
        self.calls.append((engine.name, captcha_pause))
        return ScriptedAutomation(engine, self.outcomes[engine.name])


@pytest.mark.unit
class TestEngineFallbackPolicy:

    def test_engine_order_is_fixed(self):
        assert ENGINE_ORDER == (ENGINE_A, ENGINE_B, ENGINE_C)
        assert [e.browser_type for e in ENGINE_ORDER] == [
            BrowserType.CHROMIUM, BrowserType.FIREFOX, BrowserType.WEBKIT
        ]

    def test_captcha_pause_escalates(self):
        policy = EngineFallbackPolicy()
        assert [policy.captcha_pause(i) for i in range(4)] == [10, 20, 35, 50]

    def test_backoff_grows_linearly(self):
        policy = EngineFallbackPolicy(base_delay=5)
        assert [policy.backoff(i) for i in range(3)] == [5, 10, 15]


@pytest.mark.unit
class TestOrchestrator:

    @pytest.mark.asyncio
    async def test_first_engine_success_stops(self, files, fake_sleep):
        factory = RecordingFactory({"EngineA": "TOKEN_A", "EngineB": "TOKEN_B", "EngineC": "TOKEN_C"})
        orchestrator = BrowserFallbackOrchestrator(files, automation_factory=factory, sleep=fake_sleep)

        result = await orchestrator.run_automation(JOB_ID, "in.txt", "ops@bank.mx", FormatType.BOTH)

        assert result.token == "TOKEN_A"
        assert factory.calls == [("EngineA", 10)]
        assert fake_sleep.calls == []

    @pytest.mark.asyncio
    async def test_falls_back_in_order_with_escalation(self, files, fake_sleep):
        factory = RecordingFactory({
            "EngineA": FormNotSubmittedError("A"),
            "EngineB": TokenNotFoundError("B"),
            "EngineC": "TOKEN_C",
        })
        orchestrator = BrowserFallbackOrchestrator(files, automation_factory=factory, sleep=fake_sleep)

        result = await orchestrator.run_automation(JOB_ID, "in.txt", "ops@bank.mx", FormatType.BOTH)

        assert result.token == "TOKEN_C"
        assert factory.calls == [("EngineA", 10), ("EngineB", 20), ("EngineC", 35)]
        assert fake_sleep.calls == [5, 10]

    @pytest.mark.asyncio
    async def test_all_engines_fail(self, files, fake_sleep):
        factory = RecordingFactory({
            "EngineA": FormNotSubmittedError("first"),
            "EngineB": FormNotSubmittedError("second"),
            "EngineC": TokenNotFoundError("Token not found after submitting the upload"),
        })
        orchestrator = BrowserFallbackOrchestrator(files, automation_factory=factory, sleep=fake_sleep)

        with pytest.raises(AllEnginesFailedError) as exc_info:
            await orchestrator.run_automation(JOB_ID, "in.txt", "ops@bank.mx", FormatType.BOTH)

        error = exc_info.value
        assert len(factory.calls) == len(ENGINE_ORDER)
        assert str(error) == "Token not found after submitting the upload"
        assert [name for name, _ in error.failures] == ["EngineA", "EngineB", "EngineC"]
        assert isinstance(error.last_error, TokenNotFoundError)
        # No wait after the last engine
        assert fake_sleep.calls == [5, 10]

    @pytest.mark.asyncio
    async def test_empty_token_counts_as_failure(self, files, fake_sleep):
        factory = RecordingFactory({"EngineA": "", "EngineB": "TOKEN_B", "EngineC": "TOKEN_C"})
        orchestrator = BrowserFallbackOrchestrator(files, automation_factory=factory, sleep=fake_sleep)

        result = await orchestrator.run_automation(JOB_ID, "in.txt", "ops@bank.mx", FormatType.BOTH)

        assert result.token == "TOKEN_B"


@pytest.mark.integration
class TestFallbackWithPortal:

    @pytest.mark.asyncio
    async def test_query_exhausted_on_first_engine(self, files, input_file, fake_sleep, rng):
        """EngineA spends its query budget; EngineB starts over and succeeds."""
        browsers = FakeBrowsers({
            "EngineA": FakePortalPage(query_outcomes=["error"] * 3),
            "EngineB": FakePortalPage(upload_outcomes=["token:FROMB1"]),
            "EngineC": FakePortalPage(),
        })
        config = AutomationConfig()
        pauses = []

        def factory(job_id, engine, captcha_pause):
            pauses.append(captcha_pause)
            return PortalAutomation(
                job_id, engine, files, captcha_pause,
                config=config, session_factory=browsers, sleep=fake_sleep, rng=rng,
            )

        orchestrator = BrowserFallbackOrchestrator(files, automation_factory=factory, sleep=fake_sleep)

        result = await orchestrator.run_automation(JOB_ID, input_file, "ops@bank.mx", FormatType.PDF)

        assert result.token == "FROMB1"
        assert result.engine == "EngineB"
        assert browsers.opened == ["EngineA", "EngineB"]
        assert browsers.closed == ["EngineA", "EngineB"]
        assert pauses == [10, 20]
        assert files.screenshot_path(JOB_ID, "EngineA_query_failed").exists()

    @pytest.mark.asyncio
    async def test_every_engine_exhausted(self, files, input_file, fake_sleep, rng):
        browsers = FakeBrowsers({
            name: FakePortalPage(upload_outcomes=["generic"] * 3)
            for name in ("EngineA", "EngineB", "EngineC")
        })

        def factory(job_id, engine, captcha_pause):
            return PortalAutomation(
                job_id, engine, files, captcha_pause,
                session_factory=browsers, sleep=fake_sleep, rng=rng,
            )

        orchestrator = BrowserFallbackOrchestrator(files, automation_factory=factory, sleep=fake_sleep)

        with pytest.raises(AllEnginesFailedError) as exc_info:
            await orchestrator.run_automation(JOB_ID, input_file, "ops@bank.mx", FormatType.BOTH)

        assert browsers.opened == ["EngineA", "EngineB", "EngineC"]
        assert isinstance(exc_info.value.last_error, PhaseExhaustedError)
        assert str(exc_info.value).startswith("Upload phase failed:")
