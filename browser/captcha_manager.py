"""
Challenge Manager for Cloudflare Turnstile
Detects the anti-bot challenge on a page, solves it through the 2captcha
solver when one is configured, and injects the token back into the page.
"""

import re
import random
import asyncio
import logging
import time
from enum import Enum
from typing import Optional, Dict, Any, List
from dataclasses import dataclass, field

from playwright.async_api import Page

from core.captcha_solver import TurnstileSolver
from core.error_handler import ChallengeError
from core.models import ChallengeDescriptor

from .stealth_manager import READ_CAPTURED_PARAMS_JS

logger = logging.getLogger(__name__)

CHALLENGE_TEXTS = [
    "Please wait while we verify your browser",
    "Checking your browser",
]

DETECT_CHALLENGE_JS = """
() => {
    const text = document.body ? document.body.innerText : '';
    const info = {
        hasMessage: %s.some(t => text.includes(t)),
        iframes: [],
        widgets: []
    };
    document.querySelectorAll('iframe').forEach(iframe => {
        const src = iframe.getAttribute('src') || '';
        const id = iframe.getAttribute('id') || '';
        const name = iframe.getAttribute('name') || '';
        if (src.includes('cloudflare') || src.includes('challenge') || id.includes('cf-') || name.includes('cf-')) {
            info.iframes.push({src: src.substring(0, 200), id: id, name: name});
        }
    });
    document.querySelectorAll('[data-sitekey], [class*="cf-"], [id*="cf-"], [data-ray], [id*="turnstile"]').forEach(el => {
        info.widgets.push({
            tag: el.tagName,
            id: el.id || '',
            sitekey: el.getAttribute('data-sitekey') || ''
        });
    });
    return info;
}
""" % str(CHALLENGE_TEXTS).replace("'", '"')

TOKEN_INPUT_SELECTORS = [
    'input[name="cf-turnstile-response"]',
    'input[id*="cf-turnstile"]',
    'input[id*="turnstile"]',
    'input[name*="turnstile"]',
    'input[type="hidden"][name*="cf"]',
]

INJECT_TOKEN_JS = """
({ token, selectors }) => {
    let input = null;
    for (const selector of selectors) {
        input = document.querySelector(selector);
        if (input) break;
    }
    let created = false;
    if (!input) {
        input = document.createElement('input');
        input.type = 'hidden';
        input.name = 'cf-turnstile-response';
        (document.querySelector('form') || document.body).appendChild(input);
        created = true;
    }
    input.value = token;
    input.setAttribute('value', token);
    ['input', 'change', 'keyup'].forEach(type =>
        input.dispatchEvent(new Event(type, { bubbles: true, cancelable: true })));
    return { injected: true, created: created };
}
"""

PUBLISH_TOKEN_JS = """
(token) => {
    window.cfTurnstileToken = token;
    window.dispatchEvent(new CustomEvent('cf-turnstile-token', { detail: { token } }));
    if (typeof window.__challengeCallback === 'function') {
        try { window.__challengeCallback(token); return true; } catch (e) { return false; }
    }
    return false;
}
"""

READ_TOKEN_JS = """
(selectors) => {
    for (const selector of selectors) {
        const input = document.querySelector(selector);
        if (input && input.value) return input.value;
    }
    return window.cfTurnstileToken || '';
}
"""

RESUBMIT_JS = """
() => {
    for (const form of document.querySelectorAll('form')) {
        if (form.querySelector('input[name*="turnstile"], input[id*="turnstile"]')) {
            const button = form.querySelector('button[type="submit"], input[type="submit"], button:not([type])');
            if (button) { button.click(); return true; }
        }
    }
    return false;
}
"""

PAGE_TEXT_JS = "() => document.body ? document.body.innerText : ''"

SITEKEY_PATTERNS = [
    re.compile(r"""sitekey["\s:=]+([^"'\s]{20,})""", re.IGNORECASE),
    re.compile(r"""data-sitekey=["']([^"']+)["']""", re.IGNORECASE),
    re.compile(r'"sitekey":\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r'sitekey:\s*"([^"]+)"', re.IGNORECASE),
    re.compile(r"""sitekey=([^"'\s&]{20,})""", re.IGNORECASE),
]

MIN_SITEKEY_LENGTH = 20
MIN_TOKEN_LENGTH = 10


class ChallengeResolution(str, Enum):
    """How a challenge check ended."""
    ABSENT = "absent"
    SOLVED = "solved"
    CLEARED = "cleared"
    UNRESOLVED = "unresolved"


@dataclass
class ChallengeInfo:
    """What the detection query found on the page."""
    has_message: bool = False
    iframes: List[Dict[str, Any]] = field(default_factory=list)
    widgets: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def present(self) -> bool:
        return self.has_message or bool(self.iframes) or bool(self.widgets)

    @classmethod
    def from_dict(cls, data: Optional[Dict[str, Any]]) -> "ChallengeInfo":
        data = data or {}
        return cls(
            has_message=bool(data.get("hasMessage")),
            iframes=list(data.get("iframes") or []),
            widgets=list(data.get("widgets") or []),
        )


def find_sitekey_in_html(html: str) -> Optional[str]:
    """Last-resort sitekey lookup over raw page HTML."""
    for pattern in SITEKEY_PATTERNS:
        match = pattern.search(html or "")
        if match and len(match.group(1)) > MIN_SITEKEY_LENGTH:
            return match.group(1)
    return None


class ChallengeManager:
    """
    Turnstile challenge handling for one browser page.
    Solving is optional: without a solver the manager only waits for the
    challenge to clear on its own.
    """

    def __init__(
        self,
        solver: Optional[TurnstileSolver] = None,
        solve_timeout: float = 150.0,
        grace_seconds: float = 15.0,
        verify_iterations: int = 20,
        sleep=asyncio.sleep,
    ):
        self.solver = solver
        self.solve_timeout = solve_timeout
        self.grace_seconds = grace_seconds
        self.verify_iterations = verify_iterations
        self._sleep = sleep
        self.solved_count = 0
        self.failed_count = 0

    def is_configured(self) -> bool:
        """Check if a solver with a key is attached."""
        return self.solver is not None and self.solver.is_configured()

    async def _pause(self, min_sec: float, max_sec: float):
        await self._sleep(random.uniform(min_sec, max_sec))

    async def detect(self, page: Page) -> ChallengeInfo:
        """Look for challenge text, challenge iframes and widget elements."""
        try:
            return ChallengeInfo.from_dict(await page.evaluate(DETECT_CHALLENGE_JS))
        except Exception as e:
            logger.debug(f"[Challenge] Detection query failed: {e}")
            return ChallengeInfo()

    async def extract_descriptor(self, page: Page, info: Optional[ChallengeInfo] = None) -> Optional[ChallengeDescriptor]:
        """
        Build the solver descriptor: captured render params first, then a
        widget's data-sitekey, then a regex over the page HTML.
        """
        site_key = None
        action = c_data = page_data = None

        try:
            captured = await page.evaluate(READ_CAPTURED_PARAMS_JS)
        except Exception:
            captured = None
        if captured and captured.get("sitekey"):
            site_key = captured["sitekey"]
            action = captured.get("action")
            c_data = captured.get("cData")
            page_data = captured.get("chlPageData")
            logger.info("[Challenge] Using captured render parameters")

        if not site_key and info:
            for widget in info.widgets:
                key = widget.get("sitekey") or ""
                if len(key) > MIN_SITEKEY_LENGTH:
                    site_key = key
                    logger.info("[Challenge] Using data-sitekey from widget element")
                    break

        if not site_key:
            try:
                site_key = find_sitekey_in_html(await page.content())
            except Exception as e:
                logger.debug(f"[Challenge] Reading page HTML failed: {e}")
            if site_key:
                logger.info("[Challenge] Found sitekey in page HTML")

        if not site_key:
            return None
        return ChallengeDescriptor(
            site_key=site_key,
            page_url=page.url,
            action=action,
            c_data=c_data,
            page_data=page_data,
        )

    async def inject_token(self, page: Page, token: str) -> bool:
        """Write the token into the response field and publish it to page scripts."""
        result = await page.evaluate(INJECT_TOKEN_JS, {"token": token, "selectors": TOKEN_INPUT_SELECTORS})
        if result and result.get("created"):
            logger.info("[Challenge] No response field found, created cf-turnstile-response input")
        called = await page.evaluate(PUBLISH_TOKEN_JS, token)
        if called:
            logger.info("[Challenge] Invoked captured widget callback")
        return bool(result and result.get("injected"))

    async def read_token(self, page: Page) -> str:
        try:
            return await page.evaluate(READ_TOKEN_JS, TOKEN_INPUT_SELECTORS) or ""
        except Exception:
            return ""

    async def has_valid_token(self, page: Page) -> bool:
        return len(await self.read_token(page)) > MIN_TOKEN_LENGTH

    async def is_cleared(self, page: Page) -> bool:
        try:
            text = await page.evaluate(PAGE_TEXT_JS)
        except Exception:
            return False
        if any(t in (text or "") for t in CHALLENGE_TEXTS):
            return False
        return "challenge" not in (page.url or "")

    async def wait_until_clear(self, page: Page, iterations: Optional[int] = None) -> bool:
        """Poll for the challenge text and URL to disappear."""
        for _ in range(iterations or self.verify_iterations):
            if await self.is_cleared(page):
                return True
            await self._pause(1.0, 2.0)
        return False

    async def solve_and_inject(self, page: Page, info: Optional[ChallengeInfo] = None) -> Optional[str]:
        """
        Solve the challenge on the page and inject the token.

        Solver failures are logged and swallowed; returns the token or None.
        """
        if not self.is_configured():
            return None
        descriptor = await self.extract_descriptor(page, info)
        if not descriptor:
            logger.warning("[Challenge] Challenge present but no sitekey could be found")
            return None

        start = time.monotonic()
        try:
            result = await asyncio.wait_for(self.solver.solve(descriptor), timeout=self.solve_timeout)
        except asyncio.TimeoutError:
            self.failed_count += 1
            logger.warning(f"[Challenge] Solver gave no token within {self.solve_timeout:.0f}s")
            return None
        except ChallengeError as e:
            self.failed_count += 1
            logger.warning(f"[Challenge] Solver failed: {e}")
            return None

        self.solved_count += 1
        logger.info(f"[Challenge] Token received in {time.monotonic() - start:.1f}s")
        try:
            await self.inject_token(page, result.token)
        except Exception as e:
            logger.warning(f"[Challenge] Token injection failed: {e}")
            return None
        return result.token

    async def resolve(self, page: Page, stage: str, resubmit: bool = False) -> ChallengeResolution:
        """
        Run one challenge check.

        Args:
            page: Page to inspect.
            stage: Label used in logs (pre-form, pre-submit, post-submit).
            resubmit: Click the submit button of the form holding the token after injection.
        """
        info = await self.detect(page)
        if not info.present:
            logger.info(f"[Challenge] No challenge at {stage}")
            return ChallengeResolution.ABSENT

        logger.info(
            f"[Challenge] Challenge detected at {stage} "
            f"(message={info.has_message}, iframes={len(info.iframes)}, widgets={len(info.widgets)})"
        )

        if not self.is_configured():
            logger.info(f"[Challenge] No solver configured, waiting up to {self.grace_seconds:.0f}s")
            for _ in range(max(1, int(self.grace_seconds))):
                await self._sleep(1.0)
                if not (await self.detect(page)).present:
                    return ChallengeResolution.CLEARED
            return ChallengeResolution.UNRESOLVED

        token = await self.solve_and_inject(page, info)
        if not token:
            return ChallengeResolution.UNRESOLVED

        if resubmit:
            try:
                if await page.evaluate(RESUBMIT_JS):
                    logger.info("[Challenge] Form resubmitted with token")
            except Exception as e:
                logger.debug(f"[Challenge] Resubmission failed: {e}")

        await self._pause(3.0, 5.0)
        if await self.wait_until_clear(page):
            logger.info(f"[Challenge] Verification completed at {stage}")
        else:
            logger.warning(f"[Challenge] Challenge text still present at {stage} after token injection")
        return ChallengeResolution.SOLVED

    def get_stats(self) -> Dict[str, Any]:
        """Get challenge solving statistics."""
        return {
            "solved": self.solved_count,
            "failed": self.failed_count,
            "configured": self.is_configured(),
        }
