"""
Session driver state machine against a scripted page.
"""

import asyncio

import pytest
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from browser.captcha_manager import DETECT_CHALLENGE_JS, INJECT_TOKEN_JS, READ_TOKEN_JS, ChallengeManager
from core.error_handler import CHALLENGE_NOT_CLEARED_MESSAGE, NavigationTimeout
from core.extractor import SNAPSHOT_JS
from core.orchestrator import build_outcome
from core.session_driver import FORM_PRESENT_JS, DriverState, SessionDriver

from fakes import FORM_URL, RESULTS_URL, FakeElement, FakePage, results_snapshot, search_form_page

ACME_ROW = ["Benjamin Smith", "", "", "Acme Bank", "...", "TX", "78701", "", "OVER $500"]
WIDGET = {"hasMessage": False, "iframes": [], "widgets": [{"tag": "DIV", "id": "cf-turnstile", "sitekey": "0x4AAAAAAADnPIDROrmt1Wwj"}]}


def results_flow_page(events=None):
    """Claim-search form whose Search button leads to a results page with one row."""
    page = search_form_page()
    events = events if events is not None else []

    def click():
        events.append("click")
        page.url = RESULTS_URL

    page.selectors['button[type="submit"]'] = FakeElement(tag="button", input_type="submit", text="Search", on_click=click)
    page.respond(SNAPSHOT_JS, results_snapshot([ACME_ROW]))
    return page


def make_driver(request, browser_manager, challenges=None, sleep=asyncio.sleep):
    return SessionDriver(
        request,
        browser_manager,
        challenges or ChallengeManager(sleep=sleep),
        pace=0,
        settle_seconds=0,
        sleep=sleep,
    )


class TestRun:

    @pytest.mark.asyncio
    async def test_walks_every_state_to_done(self, search_request, mock_browser_manager, sleep_recorder):
        page = results_flow_page()
        mock_browser_manager.launch_session.return_value.page = page
        driver = make_driver(search_request, mock_browser_manager, sleep=sleep_recorder)

        report = await driver.run()

        assert driver.history == [state.value for state in [
            DriverState.LAUNCHING,
            DriverState.CONFIGURING,
            DriverState.NAVIGATING,
            DriverState.PRE_CHALLENGE_CHECK,
            DriverState.FORM_FILLING,
            DriverState.PRE_SUBMIT_CHALLENGE_CHECK,
            DriverState.SUBMITTING,
            DriverState.POST_SUBMIT_CHALLENGE_CHECK,
            DriverState.AWAITING_RESULTS,
            DriverState.EXTRACTING,
            DriverState.DONE,
        ]]
        assert [(r.entity, r.value) for r in report.records] == [("Acme Bank", 500.0)]
        assert report.url == RESULTS_URL
        assert not report.on_form_page
        assert not report.challenge_present
        assert report.challenges == {"pre_form": "absent", "pre_submit": "absent", "post_submit": "absent"}
        assert page.default_timeout == 30000
        assert report.fill.succeeded("last_name")
        assert report.fill.succeeded("first_name")
        assert report.fill.filled_count == 4
        assert page.selectors['input[name*="lastName" i]'].value == "Smith"
        assert page.selectors['input[name*="firstName" i]'].value == "Benjamin"
        assert page.selectors['input[name*="city" i]'].value == "Austin"
        assert page.selectors['select[name*="state" i]'].selected == "TX"

    @pytest.mark.asyncio
    async def test_token_injected_before_submit(self, search_request, mock_browser_manager, mock_solver, sleep_recorder):
        events = []
        page = results_flow_page(events)
        token = {"value": ""}

        def inject(arg):
            events.append("inject")
            token["value"] = arg["token"]
            return {"injected": True, "created": False}

        page.respond(DETECT_CHALLENGE_JS, lambda arg: WIDGET if page.url != RESULTS_URL else {})
        page.respond(INJECT_TOKEN_JS, inject)
        page.respond(READ_TOKEN_JS, lambda arg: token["value"])
        mock_browser_manager.launch_session.return_value.page = page
        challenges = ChallengeManager(solver=mock_solver, sleep=sleep_recorder)
        driver = make_driver(search_request, mock_browser_manager, challenges, sleep=sleep_recorder)

        report = await driver.run()

        assert events == ["inject", "click"]
        assert report.challenges["pre_form"] == "solved"
        assert report.challenges["pre_submit"] == "solved"
        assert report.challenges["post_submit"] == "absent"
        assert mock_solver.solve.await_count == 1

    @pytest.mark.asyncio
    async def test_missed_widget_solved_at_pre_submit(self, search_request, mock_browser_manager, mock_solver, sleep_recorder):
        page = results_flow_page()
        token = {"value": ""}
        detections = iter([{}])

        def detect(arg):
            if page.url == RESULTS_URL:
                return {}
            return next(detections, WIDGET)

        def inject(arg):
            token["value"] = arg["token"]
            return {"injected": True, "created": True}

        page.respond(DETECT_CHALLENGE_JS, detect)
        page.respond(INJECT_TOKEN_JS, inject)
        page.respond(READ_TOKEN_JS, lambda arg: token["value"])
        mock_browser_manager.launch_session.return_value.page = page
        challenges = ChallengeManager(solver=mock_solver, sleep=sleep_recorder)

        report = await make_driver(search_request, mock_browser_manager, challenges, sleep=sleep_recorder).run()

        assert report.challenges["pre_form"] == "absent"
        assert report.challenges["pre_submit"] == "solved"

    @pytest.mark.asyncio
    async def test_form_submitted_directly_when_no_button(self, search_request, mock_browser_manager, sleep_recorder):
        page = search_form_page()
        form = FakeElement(tag="form", on_click=lambda: setattr(page, "url", RESULTS_URL))
        page.selectors["form"] = form
        page.respond(SNAPSHOT_JS, results_snapshot([ACME_ROW]))
        mock_browser_manager.launch_session.return_value.page = page

        report = await make_driver(search_request, mock_browser_manager, sleep=sleep_recorder).run()

        assert form.submitted
        assert report.url == RESULTS_URL

    @pytest.mark.asyncio
    async def test_still_on_form_page(self, search_request, mock_browser_manager, sleep_recorder):
        page = search_form_page()
        page.respond(FORM_PRESENT_JS, True)
        page.respond(SNAPSHOT_JS, results_snapshot([]))
        mock_browser_manager.launch_session.return_value.page = page

        report = await make_driver(search_request, mock_browser_manager, sleep=sleep_recorder).run()

        assert report.on_form_page
        assert report.records == []
        page.keyboard.press.assert_any_await("Enter")


class TestInterstitial:

    @pytest.mark.asyncio
    async def test_persistent_interstitial_without_solver_is_retryable(self, search_request, mock_browser_manager, sleep_recorder):
        page = FakePage(url=FORM_URL)
        page.respond(DETECT_CHALLENGE_JS, {"hasMessage": True})
        page.respond(SNAPSHOT_JS, {"bodyText": "Please wait while we verify your browser", "tables": [], "blocks": []})
        mock_browser_manager.launch_session.return_value.page = page
        challenges = ChallengeManager(grace_seconds=2, sleep=sleep_recorder)

        report = await make_driver(search_request, mock_browser_manager, challenges, sleep=sleep_recorder).run()
        outcome = build_outcome(report, solver_configured=False)

        assert report.challenge_present
        assert not report.on_form_page
        assert report.records == []
        assert report.challenges["pre_form"] == "unresolved"
        assert not outcome.success
        assert outcome.retryable
        assert outcome.error == CHALLENGE_NOT_CLEARED_MESSAGE
        assert outcome.results == []


class TestAbort:

    @pytest.mark.asyncio
    async def test_navigation_timeout(self, search_request, mock_browser_manager, fake_page, sleep_recorder):
        fake_page.goto_error = PlaywrightTimeoutError("Timeout 30000ms exceeded")
        driver = make_driver(search_request, mock_browser_manager, sleep=sleep_recorder)

        with pytest.raises(NavigationTimeout):
            await driver.run()

        assert driver.state == DriverState.ABORTED
        assert driver.history[-2:] == ["navigating", "aborted"]

    @pytest.mark.asyncio
    async def test_close_is_idempotent(self, search_request, mock_browser_manager, fake_page, sleep_recorder):
        fake_page.goto_error = PlaywrightTimeoutError("Timeout")
        driver = make_driver(search_request, mock_browser_manager, sleep=sleep_recorder)
        with pytest.raises(NavigationTimeout):
            await driver.run()

        await driver.close()
        await driver.close()
        mock_browser_manager.close_session.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_close_before_launch_does_nothing(self, search_request, mock_browser_manager):
        driver = make_driver(search_request, mock_browser_manager)
        await driver.close()
        mock_browser_manager.close_session.assert_not_awaited()
