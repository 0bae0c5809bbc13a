"""
Search Orchestrator - Ties slots, browser sessions and extraction together.

Usage:
    orchestrator = SearchOrchestrator(OrchestratorConfig(), SlotManager(capacity=3))
    outcome = await orchestrator.search(SearchRequest.create("Ben", "Smith", "Austin", "TX"))
    outcome.to_dict()
"""

import asyncio
import logging
import time
from typing import Any, Callable, Dict, Optional
from dataclasses import dataclass

from browser.captcha_manager import ChallengeManager
from browser.stealth_manager import StealthBrowserManager

from .captcha_solver import TWOCAPTCHA_API_URL, TurnstileSolver, mask_key
from .error_handler import (
    CHALLENGE_NOT_CLEARED_MESSAGE,
    FORM_FAILED_MESSAGE,
    TIMEOUT_MESSAGE,
    QueueTimeout,
    SearchError,
    classify_exception,
    retry_async,
)
from .form_filler import FormFiller
from .models import ExtractedRecord, SearchOutcome, SearchRequest
from .session_driver import SessionDriver, SessionReport
from .slot_manager import SlotManager

logger = logging.getLogger(__name__)

NO_RESULTS_MESSAGE = "No unclaimed funds found"
PLACEHOLDER_ENTITY = "Undisclosed Property"
PLACEHOLDER_AMOUNT = "$100"


@dataclass
class OrchestratorConfig:
    """Configuration for the search orchestrator."""
    # Deadlines
    search_timeout: float = 300.0
    max_attempts: int = 2
    retry_base_delay: float = 2.0
    retry_jitter: float = 1.0

    # Browser
    target_url: str = "https://missingmoney.com/app/claim-search"
    headless: bool = True
    launch_timeout: float = 60.0
    navigation_timeout: float = 30.0
    close_timeout: float = 5.0
    typing_delay_ms: int = 50
    pace: float = 1.0  # 0 disables human-like pauses
    artifacts_dir: Optional[str] = None

    # Challenge solving
    default_solver_key: Optional[str] = None  # used when a request opts in without a key
    solver_base_url: str = TWOCAPTCHA_API_URL
    solver_poll_interval: float = 3.0
    solver_max_polls: int = 40
    solver_request_timeout: float = 30.0
    challenge_solve_timeout: float = 150.0
    challenge_grace_seconds: float = 15.0

    # Outcome policy
    placeholder_on_empty: bool = True

    @classmethod
    def from_app_config(cls, app_config) -> "OrchestratorConfig":
        """Build from the process-wide AppConfig."""
        return cls(
            search_timeout=app_config.SEARCH_TIMEOUT_SECONDS,
            max_attempts=app_config.SEARCH_MAX_ATTEMPTS,
            retry_base_delay=app_config.RETRY_BASE_DELAY_SECONDS,
            target_url=app_config.TARGET_URL,
            headless=app_config.HEADLESS,
            launch_timeout=app_config.BROWSER_LAUNCH_TIMEOUT_SECONDS,
            navigation_timeout=app_config.NAVIGATION_TIMEOUT_SECONDS,
            close_timeout=app_config.BROWSER_CLOSE_TIMEOUT_SECONDS,
            typing_delay_ms=app_config.TYPING_DELAY_MS,
            pace=app_config.HUMAN_PACE,
            artifacts_dir=app_config.DEBUG_ARTIFACTS_DIR or None,
            default_solver_key=app_config.TWOCAPTCHA_API_KEY or None,
            solver_base_url=app_config.SOLVER_BASE_URL,
            solver_poll_interval=app_config.SOLVER_POLL_INTERVAL_SECONDS,
            solver_max_polls=app_config.SOLVER_MAX_POLLS,
            solver_request_timeout=app_config.SOLVER_REQUEST_TIMEOUT_SECONDS,
            challenge_solve_timeout=app_config.CHALLENGE_SOLVE_TIMEOUT_SECONDS,
            challenge_grace_seconds=app_config.CHALLENGE_GRACE_SECONDS,
            placeholder_on_empty=app_config.PLACEHOLDER_ON_EMPTY,
        )


DriverFactory = Callable[[SearchRequest, Optional[TurnstileSolver]], SessionDriver]


def build_outcome(report: SessionReport, solver_configured: bool, placeholder_on_empty: bool = True) -> SearchOutcome:
    """Turn what a completed session saw into the outcome returned to the caller."""
    metadata = {
        "url": report.url,
        "passes": dict(report.extraction.passes),
        "challenges": dict(report.challenges),
        "duration_seconds": round(report.duration_seconds, 2),
    }
    records = list(report.records)

    if records:
        return SearchOutcome(success=True, results=records, metadata=metadata)

    if report.on_form_page:
        if solver_configured or not report.challenge_present:
            return SearchOutcome.failure(FORM_FAILED_MESSAGE, retryable=False, **metadata)
        return SearchOutcome.failure(CHALLENGE_NOT_CLEARED_MESSAGE, retryable=True, **metadata)

    # An interstitial has no form, so on_form_page alone misses it
    if report.challenge_present:
        return SearchOutcome.failure(CHALLENGE_NOT_CLEARED_MESSAGE, retryable=True, **metadata)

    if report.extraction.explicit_no_results:
        return SearchOutcome(success=True, message=NO_RESULTS_MESSAGE, metadata=metadata)

    if not placeholder_on_empty:
        return SearchOutcome(success=True, message=NO_RESULTS_MESSAGE, metadata=metadata)

    placeholder = ExtractedRecord(
        entity=PLACEHOLDER_ENTITY,
        amount=PLACEHOLDER_AMOUNT,
        raw_context="No records could be read from the results page",
    )
    return SearchOutcome(success=True, results=[placeholder], metadata={**metadata, "placeholder": True})


class SearchOrchestrator:
    """
    Runs searches end to end.

    Coordinates:
    - Slot manager for bounded browser concurrency
    - One fresh browser session per attempt
    - Retries for retryable failures inside the overall deadline
    - Conversion of every failure into a SearchOutcome
    """

    def __init__(
        self,
        config: Optional[OrchestratorConfig] = None,
        slots: Optional[SlotManager] = None,
        driver_factory: Optional[DriverFactory] = None,
    ):
        self.config = config or OrchestratorConfig()
        self.slots = slots or SlotManager()
        self.driver_factory = driver_factory or self._default_driver
        self._active: Dict[str, SessionDriver] = {}
        self._stats = {
            "total_searches": 0,
            "successful": 0,
            "failed": 0,
            "timeouts": 0,
            "queue_timeouts": 0,
            "retries": 0,
        }

    def _solver_for(self, request: SearchRequest) -> Optional[TurnstileSolver]:
        if not request.use_challenge_solver:
            return None
        api_key = request.solver_api_key or self.config.default_solver_key
        if not api_key:
            logger.warning(f"[Orchestrator] {request.request_id}: solver requested but no API key available")
            return None
        logger.info(f"[Orchestrator] {request.request_id}: challenge solver enabled (key {mask_key(api_key)})")
        return TurnstileSolver(
            api_key=api_key,
            base_url=self.config.solver_base_url,
            poll_interval=self.config.solver_poll_interval,
            max_polls=self.config.solver_max_polls,
            request_timeout=self.config.solver_request_timeout,
        )

    def _default_driver(self, request: SearchRequest, solver: Optional[TurnstileSolver]) -> SessionDriver:
        browser_manager = StealthBrowserManager(
            headless=self.config.headless,
            launch_timeout=self.config.launch_timeout,
            close_timeout=self.config.close_timeout,
            artifacts_dir=self.config.artifacts_dir,
        )
        challenges = ChallengeManager(
            solver=solver,
            solve_timeout=self.config.challenge_solve_timeout,
            grace_seconds=self.config.challenge_grace_seconds,
        )
        return SessionDriver(
            request,
            browser_manager,
            challenges,
            form_filler=FormFiller(typing_delay_ms=self.config.typing_delay_ms, pace=self.config.pace),
            target_url=self.config.target_url,
            navigation_timeout=self.config.navigation_timeout,
            pace=self.config.pace,
        )

    async def search(self, request: SearchRequest) -> SearchOutcome:
        """Run one search. Never raises for search failures; the outcome carries them."""
        self._stats["total_searches"] += 1
        started = time.monotonic()
        logger.info(
            f"[Orchestrator] {request.request_id}: search in {request.state} "
            f"(slots {self.slots.active}/{self.slots.capacity}, queued {self.slots.queued})"
        )

        try:
            token = await self.slots.acquire()
        except QueueTimeout as e:
            self._stats["queue_timeouts"] += 1
            self._stats["failed"] += 1
            logger.warning(f"[Orchestrator] {request.request_id}: no browser slot: {e}")
            return SearchOutcome.failure(e.user_message, retryable=True)

        try:
            outcome = await asyncio.wait_for(self._search_with_retries(request), timeout=self.config.search_timeout)
        except asyncio.TimeoutError:
            self._stats["timeouts"] += 1
            logger.error(f"[Orchestrator] {request.request_id}: exceeded {self.config.search_timeout:.0f}s deadline")
            outcome = SearchOutcome.failure(TIMEOUT_MESSAGE, retryable=True)
        except SearchError as e:
            logger.error(f"[Orchestrator] {request.request_id}: {type(e).__name__}: {e}")
            outcome = SearchOutcome.failure(e.user_message, retryable=e.retryable, category=e.category.value)
        finally:
            self.slots.release(token)

        self._stats["successful" if outcome.success else "failed"] += 1
        logger.info(
            f"[Orchestrator] {request.request_id}: finished in {time.monotonic() - started:.1f}s "
            f"success={outcome.success} results={len(outcome.results)} total=${outcome.total_amount:,.2f}"
        )
        return outcome

    async def _search_with_retries(self, request: SearchRequest) -> SearchOutcome:
        def on_retry(attempt: int, error: BaseException):
            self._stats["retries"] += 1

        return await retry_async(
            lambda: self._attempt(request),
            max_attempts=self.config.max_attempts,
            base_delay=self.config.retry_base_delay,
            on_retry=on_retry,
            jitter=self.config.retry_jitter,
        )

    async def _attempt(self, request: SearchRequest) -> SearchOutcome:
        """One browser session, always closed before returning."""
        solver = self._solver_for(request)
        driver = self.driver_factory(request, solver)
        self._active[request.request_id] = driver
        try:
            report = await driver.run()
        except SearchError:
            raise
        except Exception as e:
            raise classify_exception(e) from e
        finally:
            try:
                await driver.close()
            except Exception as e:
                logger.warning(f"[Orchestrator] {request.request_id}: closing browser failed: {e}")
            self._active.pop(request.request_id, None)

        return build_outcome(report, solver is not None, self.config.placeholder_on_empty)

    def get_stats(self) -> Dict[str, Any]:
        """Get current statistics."""
        return {
            **self._stats,
            "active_searches": len(self._active),
            "slots": self.slots.stats(),
        }
