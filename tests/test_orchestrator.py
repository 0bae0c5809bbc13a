"""
Search orchestration: slots, deadlines, retries and outcome rules.
"""

import asyncio
import logging

import pytest

from core.error_handler import (
    CHALLENGE_NOT_CLEARED_MESSAGE,
    FORM_FAILED_MESSAGE,
    SERVER_BUSY_MESSAGE,
    TIMEOUT_MESSAGE,
    ChallengeBlocking,
    NavigationTimeout,
)
from core.extractor import ExtractionResult
from core.models import ExtractedRecord, SearchRequest
from core.orchestrator import (
    NO_RESULTS_MESSAGE,
    PLACEHOLDER_AMOUNT,
    PLACEHOLDER_ENTITY,
    OrchestratorConfig,
    SearchOrchestrator,
    build_outcome,
)
from core.session_driver import SessionReport
from core.slot_manager import SlotManager

ACME = ExtractedRecord(entity="Acme Bank", amount="OVER $500", raw_context="row")


def report(records=(), on_form_page=False, challenge_present=False, explicit_no_results=False):
    extraction = ExtractionResult(records=list(records), explicit_no_results=explicit_no_results)
    return SessionReport(
        records=list(records),
        extraction=extraction,
        on_form_page=on_form_page,
        challenge_present=challenge_present,
        url="https://missingmoney.com/app/results",
    )


class FakeDriver:
    """Driver stand-in that returns a report, raises, or hangs."""

    def __init__(self, result=None, error=None, hang=False):
        self.result = result
        self.error = error
        self.hang = hang
        self.closed = 0

    async def run(self):
        if self.hang:
            await asyncio.Event().wait()
        if self.error:
            raise self.error
        return self.result

    async def close(self):
        self.closed += 1


class DriverFactory:
    """Hands out the queued drivers and remembers the solver each one got."""

    def __init__(self, *drivers):
        self.drivers = list(drivers)
        self.created = []
        self.solvers = []

    def __call__(self, request, solver):
        driver = self.drivers.pop(0)
        self.created.append(driver)
        self.solvers.append(solver)
        return driver


def orchestrator_with(*drivers, **config):
    config.setdefault("retry_base_delay", 0)
    config.setdefault("retry_jitter", 0)
    factory = DriverFactory(*drivers)
    slots = SlotManager(capacity=config.pop("capacity", 1), queue_timeout=config.pop("queue_timeout", 5))
    return SearchOrchestrator(OrchestratorConfig(**config), slots, driver_factory=factory), factory


class TestBuildOutcome:

    def test_records_are_success(self):
        outcome = build_outcome(report([ACME]), solver_configured=False)
        assert outcome.success
        assert outcome.total_amount == 500.0

    def test_form_page_with_solver_is_final(self):
        outcome = build_outcome(report(on_form_page=True, challenge_present=True), solver_configured=True)
        assert not outcome.success
        assert outcome.error == FORM_FAILED_MESSAGE
        assert not outcome.retryable

    def test_form_page_without_challenge_is_final(self):
        outcome = build_outcome(report(on_form_page=True), solver_configured=False)
        assert outcome.error == FORM_FAILED_MESSAGE
        assert not outcome.retryable

    def test_form_page_blocked_by_challenge_without_solver_is_retryable(self):
        outcome = build_outcome(report(on_form_page=True, challenge_present=True), solver_configured=False)
        assert outcome.error == CHALLENGE_NOT_CLEARED_MESSAGE
        assert outcome.retryable

    def test_interstitial_still_showing_is_retryable(self):
        outcome = build_outcome(report(challenge_present=True), solver_configured=False)
        assert not outcome.success
        assert outcome.error == CHALLENGE_NOT_CLEARED_MESSAGE
        assert outcome.retryable
        assert outcome.results == []

    def test_challenge_wins_over_no_results_text(self):
        outcome = build_outcome(report(challenge_present=True, explicit_no_results=True), solver_configured=True)
        assert outcome.error == CHALLENGE_NOT_CLEARED_MESSAGE
        assert outcome.retryable

    def test_explicit_no_results(self):
        outcome = build_outcome(report(explicit_no_results=True), solver_configured=False)
        assert outcome.success
        assert outcome.results == []
        assert outcome.message == NO_RESULTS_MESSAGE

    def test_placeholder_when_nothing_readable(self):
        outcome = build_outcome(report(), solver_configured=False)
        assert outcome.success
        assert [(r.entity, r.amount) for r in outcome.results] == [(PLACEHOLDER_ENTITY, PLACEHOLDER_AMOUNT)]
        assert outcome.metadata["placeholder"] is True

    def test_placeholder_can_be_disabled(self):
        outcome = build_outcome(report(), solver_configured=False, placeholder_on_empty=False)
        assert outcome.results == []
        assert outcome.message == NO_RESULTS_MESSAGE


class TestSearch:

    @pytest.mark.asyncio
    async def test_success_closes_driver_and_frees_slot(self, search_request):
        driver = FakeDriver(result=report([ACME]))
        orchestrator, _ = orchestrator_with(driver)

        outcome = await orchestrator.search(search_request)

        assert outcome.success
        assert driver.closed == 1
        stats = orchestrator.get_stats()
        assert stats["successful"] == 1
        assert stats["active_searches"] == 0
        assert stats["slots"]["active"] == 0

    @pytest.mark.asyncio
    async def test_owner_name_kept_out_of_logs(self, search_request, caplog):
        orchestrator, _ = orchestrator_with(FakeDriver(result=report([ACME])))

        with caplog.at_level(logging.DEBUG, logger="core.orchestrator"):
            await orchestrator.search(search_request)

        assert search_request.request_id in caplog.text
        assert "Benjamin" not in caplog.text
        assert "Smith" not in caplog.text

    @pytest.mark.asyncio
    async def test_deadline_exceeded(self, search_request):
        driver = FakeDriver(hang=True)
        orchestrator, _ = orchestrator_with(driver, search_timeout=0.05)

        outcome = await orchestrator.search(search_request)

        assert not outcome.success
        assert outcome.error == TIMEOUT_MESSAGE
        assert outcome.retryable
        assert driver.closed == 1
        assert orchestrator.slots.active == 0
        assert orchestrator.get_stats()["timeouts"] == 1

    @pytest.mark.asyncio
    async def test_retryable_error_retried_once(self, search_request):
        first = FakeDriver(error=NavigationTimeout("net::ERR_CONNECTION_RESET"))
        second = FakeDriver(result=report([ACME]))
        orchestrator, factory = orchestrator_with(first, second)

        outcome = await orchestrator.search(search_request)

        assert outcome.success
        assert first.closed == 1 and second.closed == 1
        assert orchestrator.get_stats()["retries"] == 1

    @pytest.mark.asyncio
    async def test_retryable_error_after_last_attempt(self, search_request):
        drivers = [FakeDriver(error=NavigationTimeout("reset")) for _ in range(2)]
        orchestrator, _ = orchestrator_with(*drivers)

        outcome = await orchestrator.search(search_request)

        assert not outcome.success
        assert outcome.retryable
        assert outcome.to_dict()["error"] == NavigationTimeout.default_message

    @pytest.mark.asyncio
    async def test_non_retryable_error_not_retried(self, search_request):
        driver = FakeDriver(error=ChallengeBlocking())
        orchestrator, factory = orchestrator_with(driver, FakeDriver(result=report([ACME])))

        outcome = await orchestrator.search(search_request)

        assert not outcome.success
        assert not outcome.retryable
        assert len(factory.created) == 1

    @pytest.mark.asyncio
    async def test_unexpected_exception_classified(self, search_request):
        orchestrator, _ = orchestrator_with(FakeDriver(error=RuntimeError("spawn EAGAIN")), FakeDriver(error=RuntimeError("spawn EAGAIN")))

        outcome = await orchestrator.search(search_request)

        assert outcome.error == SERVER_BUSY_MESSAGE
        assert outcome.retryable

    @pytest.mark.asyncio
    async def test_empty_results_get_placeholder(self, search_request):
        orchestrator, _ = orchestrator_with(FakeDriver(result=report()))

        outcome = await orchestrator.search(search_request)

        assert outcome.success
        assert outcome.results[0].entity == PLACEHOLDER_ENTITY

    @pytest.mark.asyncio
    async def test_queue_timeout_reports_busy(self, search_request):
        orchestrator, _ = orchestrator_with(FakeDriver(result=report([ACME])), queue_timeout=0.05)
        held = await orchestrator.slots.acquire()
        try:
            outcome = await orchestrator.search(search_request)
        finally:
            orchestrator.slots.release(held)

        assert not outcome.success
        assert outcome.error == SERVER_BUSY_MESSAGE
        assert outcome.retryable
        assert orchestrator.get_stats()["queue_timeouts"] == 1


class TestSolverSelection:

    @pytest.mark.asyncio
    async def test_no_solver_unless_requested(self):
        orchestrator, factory = orchestrator_with(FakeDriver(result=report([ACME])), default_solver_key="k" * 32)
        await orchestrator.search(SearchRequest.create("Ben", "Smith", "Austin", "TX"))
        assert factory.solvers == [None]

    @pytest.mark.asyncio
    async def test_request_key_used(self):
        orchestrator, factory = orchestrator_with(FakeDriver(result=report([ACME])))
        await orchestrator.search(SearchRequest.create("Ben", "Smith", "Austin", "TX", True, "r" * 32))
        assert factory.solvers[0].api_key == "r" * 32

    @pytest.mark.asyncio
    async def test_server_key_when_request_has_none(self):
        orchestrator, factory = orchestrator_with(FakeDriver(result=report([ACME])), default_solver_key="s" * 32)
        await orchestrator.search(SearchRequest.create("Ben", "Smith", "Austin", "TX", True))
        assert factory.solvers[0].api_key == "s" * 32

    @pytest.mark.asyncio
    async def test_requested_without_any_key(self):
        orchestrator, factory = orchestrator_with(FakeDriver(result=report([ACME])))
        await orchestrator.search(SearchRequest.create("Ben", "Smith", "Austin", "TX", True))
        assert factory.solvers == [None]


def test_config_from_app_config():
    from api.config import AppConfig

    app_config = AppConfig()
    app_config.HUMAN_PACE = 0.0
    app_config.SEARCH_TIMEOUT_SECONDS = 120
    config = OrchestratorConfig.from_app_config(app_config)
    assert config.pace == 0.0
    assert config.search_timeout == 120
