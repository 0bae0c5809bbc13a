"""
Session driver: one browser session walking the claim-search flow.

    LAUNCHING -> CONFIGURING -> NAVIGATING -> PRE_CHALLENGE_CHECK -> FORM_FILLING
    -> PRE_SUBMIT_CHALLENGE_CHECK -> SUBMITTING -> POST_SUBMIT_CHALLENGE_CHECK
    -> AWAITING_RESULTS -> EXTRACTING -> DONE

Any state can move to ABORTED on a timeout or fatal error. The driver never
closes its own browser; callers close it through ``close()``, which is safe to
call more than once.
"""

import asyncio
import random
import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from playwright.async_api import Page, TimeoutError as PlaywrightTimeoutError, Error as PlaywrightError

from browser.captcha_manager import ChallengeManager, ChallengeResolution
from browser.stealth_manager import BrowserSession, StealthBrowserManager

from .error_handler import NavigationTimeout, ResourceExhaustion, is_resource_exhaustion
from .extractor import ExtractionContext, ExtractionResult, ResultExtractor
from .form_filler import FillResult, FormFiller
from .models import ExtractedRecord, SearchRequest

logger = logging.getLogger(__name__)

RESULTS_SELECTOR = (
    'table, [class*="result"], [class*="claim"], [class*="table"], '
    '[id*="result"], [id*="claim"], tbody, [role="row"]'
)

RESULTS_TEXT_JS = """
() => {
    const text = document.body ? document.body.innerText : '';
    const hasAmount = /\\$[\\d,]+\\.?\\d*/.test(text);
    const hasIndicator = ['Amount', 'Property', 'Claim', 'Entity', 'Holder'].some(w => text.includes(w));
    return hasAmount && hasIndicator;
}
"""

RESULTS_VISIBLE_JS = """
() => {
    const rows = document.querySelectorAll('table tbody tr, [role="row"]');
    const text = document.body ? document.body.innerText.toLowerCase() : '';
    return rows.length > 0 || /returned\\s+\\d+\\s+unclaimed/.test(text) || text.includes('no unclaimed funds found');
}
"""

FORM_PRESENT_JS = """
() => {
    const input = document.querySelector('input[name*="lastName" i], input[id*="lastName" i], input[name*="last" i]');
    return !!input && input.offsetParent !== null;
}
"""

SUBMIT_FORM_JS = "form => (form.requestSubmit ? form.requestSubmit() : form.submit())"
SCROLL_TO_JS = "y => window.scrollTo(0, y === null ? document.body.scrollHeight : y)"

SUBMIT_SELECTORS = [
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Search")',
    'button:has-text("Submit")',
    'button:has-text("Find")',
    'button:has-text("Claim")',
    '[class*="submit"]',
    '[id*="submit"]',
    '[class*="search"]',
    '[id*="search"]',
    'button',
    'input[type="button"]',
]
SUBMIT_WORDS = ("search", "submit", "find", "claim")
ANY_SUBMIT_SELECTOR = 'button[type="submit"], input[type="submit"], button:has-text("Search")'


class DriverState(str, Enum):
    LAUNCHING = "launching"
    CONFIGURING = "configuring"
    NAVIGATING = "navigating"
    PRE_CHALLENGE_CHECK = "pre_challenge_check"
    FORM_FILLING = "form_filling"
    PRE_SUBMIT_CHALLENGE_CHECK = "pre_submit_challenge_check"
    SUBMITTING = "submitting"
    POST_SUBMIT_CHALLENGE_CHECK = "post_submit_challenge_check"
    AWAITING_RESULTS = "awaiting_results"
    EXTRACTING = "extracting"
    DONE = "done"
    ABORTED = "aborted"


@dataclass
class SessionReport:
    """What one completed session saw."""
    records: List[ExtractedRecord]
    extraction: ExtractionResult
    on_form_page: bool
    challenge_present: bool
    url: str = ""
    fill: Optional[FillResult] = None
    challenges: Dict[str, str] = field(default_factory=dict)
    states: List[str] = field(default_factory=list)
    duration_seconds: float = 0.0


class SessionDriver:
    """
    Drives one search through the claim-search form.

    Usage:
        driver = SessionDriver(request, browser_manager, challenges)
        try:
            report = await driver.run()
        finally:
            await driver.close()
    """

    def __init__(
        self,
        request: SearchRequest,
        browser_manager: StealthBrowserManager,
        challenges: ChallengeManager,
        form_filler: Optional[FormFiller] = None,
        extractor: Optional[ResultExtractor] = None,
        target_url: str = "https://missingmoney.com/app/claim-search",
        navigation_timeout: float = 30.0,
        results_timeout: float = 25.0,
        settle_seconds: float = 5.0,
        departure_polls: int = 30,
        pace: float = 1.0,
        sleep=asyncio.sleep,
    ):
        self.request = request
        self.browser_manager = browser_manager
        self.challenges = challenges
        self.form_filler = form_filler or FormFiller(pace=pace, sleep=sleep)
        self.extractor = extractor or ResultExtractor()
        self.target_url = target_url
        self.navigation_timeout = navigation_timeout
        self.results_timeout = results_timeout
        self.settle_seconds = settle_seconds
        self.departure_polls = departure_polls
        self.pace = pace
        self._sleep = sleep
        self.session: Optional[BrowserSession] = None
        self.state = DriverState.LAUNCHING
        self.history: List[str] = []
        self._closed = False

    @property
    def tag(self) -> str:
        return f"[Driver {self.request.request_id}]"

    def _transition(self, state: DriverState):
        previous = self.state
        self.state = state
        self.history.append(state.value)
        logger.info(f"{self.tag} {previous.value} -> {state.value}")

    async def _pause(self, min_sec: float, max_sec: float):
        if self.pace <= 0:
            return
        await self._sleep(random.uniform(min_sec, max_sec) * self.pace)

    async def run(self) -> SessionReport:
        """Walk the whole flow and return what the results page showed."""
        started = time.monotonic()
        self.history = [self.state.value]
        challenges: Dict[str, str] = {}
        try:
            self.session = await self.browser_manager.launch_session(f"mm_{self.request.request_id}")
            page = self.session.page

            self._transition(DriverState.CONFIGURING)
            page.set_default_timeout(self.navigation_timeout * 1000)

            self._transition(DriverState.NAVIGATING)
            await self._navigate(page)

            self._transition(DriverState.PRE_CHALLENGE_CHECK)
            challenges["pre_form"] = (await self.challenges.resolve(page, "pre-form")).value

            self._transition(DriverState.FORM_FILLING)
            fill = await self.form_filler.fill_search_form(page, self.request)
            await self.browser_manager.capture_screenshot(page, f"filled_{self.request.request_id}")

            self._transition(DriverState.PRE_SUBMIT_CHALLENGE_CHECK)
            challenges["pre_submit"] = await self._ensure_token(page)

            self._transition(DriverState.SUBMITTING)
            await self._pause(1.0, 2.0)
            await self._submit(page)

            self._transition(DriverState.POST_SUBMIT_CHALLENGE_CHECK)
            await self._pause(2.0, 3.0)
            resolution = await self.challenges.resolve(page, "post-submit", resubmit=True)
            challenges["post_submit"] = resolution.value
            if resolution in (ChallengeResolution.SOLVED, ChallengeResolution.CLEARED):
                await self._await_departure(page)

            self._transition(DriverState.AWAITING_RESULTS)
            await self._await_results(page)

            self._transition(DriverState.EXTRACTING)
            await self.browser_manager.capture_screenshot(page, f"results_{self.request.request_id}")
            await self.browser_manager.save_html(page, f"results_{self.request.request_id}")
            extraction = await self.extractor.extract(page, ExtractionContext.for_request(self.request))
            on_form_page = await self._on_form_page(page)
            challenge_present = (await self.challenges.detect(page)).present

            self._transition(DriverState.DONE)
            return SessionReport(
                records=extraction.records,
                extraction=extraction,
                on_form_page=on_form_page,
                challenge_present=challenge_present,
                url=page.url,
                fill=fill,
                challenges=challenges,
                states=list(self.history),
                duration_seconds=time.monotonic() - started,
            )
        except (Exception, asyncio.CancelledError) as e:
            logger.warning(f"{self.tag} Aborted in {self.state.value}: {type(e).__name__}: {e}")
            self._transition(DriverState.ABORTED)
            raise

    async def _navigate(self, page: Page):
        try:
            await page.goto(self.target_url, wait_until="domcontentloaded", timeout=self.navigation_timeout * 1000)
        except PlaywrightTimeoutError as e:
            raise NavigationTimeout(f"Loading {self.target_url} timed out") from e
        except PlaywrightError as e:
            if is_resource_exhaustion(e):
                raise ResourceExhaustion(str(e)) from e
            raise NavigationTimeout(f"Loading {self.target_url} failed: {e}") from e

        await self._pause(0.5, 0.8)
        await page.mouse.move(100, 100)
        await page.evaluate(SCROLL_TO_JS, 200)
        try:
            await page.wait_for_selector("input, form", timeout=2000)
        except PlaywrightTimeoutError:
            logger.info(f"{self.tag} Form not visible yet, continuing")

    async def _ensure_token(self, page: Page) -> str:
        """With a widget on the page and a solver configured, make sure a token is in place."""
        info = await self.challenges.detect(page)
        if not info.present:
            return ChallengeResolution.ABSENT.value
        if not self.challenges.is_configured():
            logger.info(f"{self.tag} Widget present, no solver configured; submitting anyway")
            return ChallengeResolution.UNRESOLVED.value

        if await self.challenges.has_valid_token(page):
            return ChallengeResolution.SOLVED.value
        logger.info(f"{self.tag} No response token before submit, solving")
        await self.challenges.solve_and_inject(page, info)
        if await self.challenges.has_valid_token(page):
            return ChallengeResolution.SOLVED.value
        logger.warning(f"{self.tag} Still no valid response token, submitting without it")
        return ChallengeResolution.UNRESOLVED.value

    async def _click_submit_button(self, page: Page) -> bool:
        for selector in SUBMIT_SELECTORS:
            try:
                button = await page.query_selector(selector)
                if not button or not await button.is_visible():
                    continue
                text = ((await button.text_content()) or "").lower()
                if not (any(word in text for word in SUBMIT_WORDS) or "submit" in selector or "search" in selector):
                    continue
                await button.scroll_into_view_if_needed()
                await self._pause(0.3, 0.6)
                box = await button.bounding_box()
                if box:
                    await page.mouse.move(box["x"] + box["width"] / 2, box["y"] + box["height"] / 2)
                    await self._pause(0.2, 0.4)
                await button.click()
                logger.info(f"{self.tag} Submitted via {selector}")
                return True
            except PlaywrightError as e:
                logger.debug(f"{self.tag} Submit selector {selector} failed: {e}")
        return False

    async def _submit(self, page: Page):
        """Button click, then form submission, then the Enter key."""
        url_before = page.url
        submitted = await self._click_submit_button(page)

        if not submitted:
            try:
                form = await page.query_selector("form")
                if form:
                    await form.evaluate(SUBMIT_FORM_JS)
                    submitted = True
                    logger.info(f"{self.tag} Submitted via form.submit()")
            except PlaywrightError as e:
                logger.debug(f"{self.tag} Direct form submission failed: {e}")

        if not submitted:
            await page.keyboard.press("Enter")
            logger.info(f"{self.tag} Submitted via Enter key")

        await self._pause(1.0, 2.0)
        if page.url != url_before or await self._results_visible(page):
            return

        logger.info(f"{self.tag} Page did not change after submit, clicking any visible submit control")
        for element in await page.query_selector_all(ANY_SUBMIT_SELECTOR):
            try:
                if await element.is_visible():
                    await element.click()
                    break
            except PlaywrightError:
                continue

    async def _results_visible(self, page: Page) -> bool:
        try:
            return bool(await page.evaluate(RESULTS_VISIBLE_JS))
        except PlaywrightError:
            return False

    async def _on_form_page(self, page: Page) -> bool:
        if "claim-search" not in (page.url or ""):
            return False
        try:
            return bool(await page.evaluate(FORM_PRESENT_JS)) and not await self._results_visible(page)
        except PlaywrightError:
            return False

    async def _await_departure(self, page: Page) -> bool:
        """After a post-submit challenge, poll for the results page."""
        for _ in range(self.departure_polls):
            url = page.url or ""
            if ("challenge" not in url and url.rstrip("/") != self.target_url.rstrip("/")) or await self._results_visible(page):
                logger.info(f"{self.tag} Left the form page: {url}")
                return True
            await self._pause(1.0, 2.0)
        logger.warning(f"{self.tag} Still on the form page after challenge; extracting anyway")
        return False

    async def _await_results(self, page: Page):
        timeout_ms = self.results_timeout * 1000
        waiters = [
            asyncio.ensure_future(page.wait_for_load_state("networkidle", timeout=timeout_ms)),
            asyncio.ensure_future(page.wait_for_selector(RESULTS_SELECTOR, timeout=timeout_ms)),
            asyncio.ensure_future(page.wait_for_function(RESULTS_TEXT_JS, timeout=timeout_ms)),
            asyncio.ensure_future(self._sleep(min(10.0, self.results_timeout))),
        ]
        try:
            await asyncio.wait(waiters, return_when=asyncio.FIRST_COMPLETED)
        finally:
            for waiter in waiters:
                if not waiter.done():
                    waiter.cancel()
            await asyncio.gather(*waiters, return_exceptions=True)

        try:
            await page.wait_for_load_state("networkidle", timeout=10000)
        except PlaywrightTimeoutError:
            logger.debug(f"{self.tag} Network did not go idle")

        await self._sleep(self.settle_seconds)
        await page.evaluate(SCROLL_TO_JS, None)
        await self._pause(1.5, 2.0)
        await page.evaluate(SCROLL_TO_JS, 0)
        await self._pause(0.8, 1.0)

    async def close(self):
        """Close the browser session. Safe to call more than once."""
        if self._closed:
            return
        self._closed = True
        if self.session is not None:
            await self.browser_manager.close_session(self.session)

    def get_status(self) -> Dict[str, Any]:
        return {
            "request_id": self.request.request_id,
            "state": self.state.value,
            "history": list(self.history),
        }
