"""
Stealth Browser Manager
Launches local Playwright Chromium sessions with a fixed desktop fingerprint,
anti-detection patches and a Turnstile render hook.

Features:
- Launch budget with resource-exhaustion detection
- Fixed Chrome-on-macOS fingerprint (Austin, TX)
- Capture of Turnstile render parameters for the challenge solver
- Ordered, individually bounded cleanup
- Optional screenshot / HTML capture for debugging
"""

import asyncio
import logging
import uuid
from typing import Optional, Dict, Any
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path

from playwright.async_api import async_playwright, Page, Browser, BrowserContext, Playwright

from core.error_handler import LaunchTimeout, ResourceExhaustion, is_resource_exhaustion

logger = logging.getLogger(__name__)

USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36"
)

LAUNCH_ARGS = [
    "--no-sandbox",
    "--disable-setuid-sandbox",
    "--disable-blink-features=AutomationControlled",
    "--disable-dev-shm-usage",
    "--disable-accelerated-2d-canvas",
    "--no-first-run",
    "--no-zygote",
    "--disable-gpu",
    "--disable-web-security",
    "--disable-features=IsolateOrigins,site-per-process",
]

# Context options: one consistent desktop profile located in Austin, TX.
FINGERPRINT: Dict[str, Any] = {
    "viewport": {"width": 1920, "height": 1080},
    "user_agent": USER_AGENT,
    "locale": "en-US",
    "timezone_id": "America/Chicago",
    "permissions": ["geolocation"],
    "geolocation": {"latitude": 30.2672, "longitude": -97.7431},
    "color_scheme": "light",
    "extra_http_headers": {
        "Accept-Language": "en-US,en;q=0.9",
        "Accept-Encoding": "gzip, deflate, br",
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/avif,image/webp,image/apng,*/*;q=0.8",
        "Upgrade-Insecure-Requests": "1",
        "Sec-Fetch-Dest": "document",
        "Sec-Fetch-Mode": "navigate",
        "Sec-Fetch-Site": "none",
        "Sec-Fetch-User": "?1",
        "Cache-Control": "max-age=0",
    },
}

STEALTH_SCRIPT = """
    // Hide webdriver property
    Object.defineProperty(navigator, 'webdriver', {
        get: () => undefined
    });

    // Mock realistic plugins array
    Object.defineProperty(navigator, 'plugins', {
        get: () => {
            const plugins = [
                { name: 'Chrome PDF Plugin', filename: 'internal-pdf-viewer' },
                { name: 'Chrome PDF Viewer', filename: 'mhjfbmdgcfjbbpaeojofohoefgiehjai' },
                { name: 'Native Client', filename: 'internal-nacl-plugin' }
            ];
            plugins.length = 3;
            return plugins;
        }
    });

    // Mock languages
    Object.defineProperty(navigator, 'languages', {
        get: () => ['en-US', 'en']
    });

    // Match the macOS user agent
    Object.defineProperty(navigator, 'platform', {
        get: () => 'MacIntel'
    });

    Object.defineProperty(navigator, 'hardwareConcurrency', {
        get: () => 8
    });

    // Hide automation indicators
    window.chrome = {
        runtime: {},
        loadTimes: function() {},
        csi: function() {},
        app: {}
    };

    // Override permissions API
    const originalQuery = window.navigator.permissions.query;
    window.navigator.permissions.query = (parameters) => (
        parameters.name === 'notifications' ?
            Promise.resolve({ state: Notification.permission }) :
            originalQuery(parameters)
    );
"""

# Wraps turnstile.render (now, or once the widget library loads) and keeps the
# options it was called with in window.__challengeParams.
CHALLENGE_CAPTURE_SCRIPT = """
    (() => {
        const hook = (turnstile) => {
            if (!turnstile || turnstile.__captured) return;
            turnstile.__captured = true;
            const originalRender = turnstile.render;
            turnstile.render = function(container, options) {
                options = options || {};
                window.__challengeParams = {
                    sitekey: options.sitekey || null,
                    action: options.action || null,
                    cData: options.cData || null,
                    chlPageData: options.chlPageData || null,
                    hasCallback: typeof options.callback === 'function'
                };
                window.__challengeCallback = options.callback || null;
                if (originalRender) {
                    return originalRender.call(this, container, options);
                }
                return 'captured';
            };
        };
        if (window.turnstile) {
            hook(window.turnstile);
        } else {
            const timer = setInterval(() => {
                if (window.turnstile) {
                    hook(window.turnstile);
                    clearInterval(timer);
                }
            }, 100);
        }
    })();
"""

READ_CAPTURED_PARAMS_JS = "() => window.__challengeParams || null"


@dataclass
class BrowserSession:
    """Represents an active browser session."""
    session_id: str
    playwright: Playwright
    browser: Browser
    context: BrowserContext
    page: Page
    started_at: datetime = field(default_factory=datetime.now)
    closed: bool = False


class StealthBrowserManager:
    """
    Creates fingerprinted local browser sessions and tears them down.
    """

    def __init__(
        self,
        headless: bool = True,
        launch_timeout: float = 60.0,
        close_timeout: float = 5.0,
        artifacts_dir: Optional[str] = None,
        playwright_factory=async_playwright,
    ):
        """
        Initialize the browser manager.

        Args:
            headless: Launch Chromium without a display.
            launch_timeout: Seconds allowed for Playwright + Chromium startup.
            close_timeout: Seconds allowed for closing each resource.
            artifacts_dir: Directory for debug screenshots and HTML; disabled when empty.
            playwright_factory: Callable returning a Playwright context manager.
        """
        self.headless = headless
        self.launch_timeout = launch_timeout
        self.close_timeout = close_timeout
        self.artifacts_dir = Path(artifacts_dir) if artifacts_dir else None
        self.playwright_factory = playwright_factory
        self.active_sessions: Dict[str, BrowserSession] = {}

        if self.artifacts_dir:
            self.artifacts_dir.mkdir(parents=True, exist_ok=True)

    async def launch_session(self, session_id: Optional[str] = None) -> BrowserSession:
        """
        Start Playwright, launch Chromium and open a configured page.

        Raises:
            LaunchTimeout: startup did not finish within the launch budget
            ResourceExhaustion: the OS refused to spawn the browser
        """
        session_id = session_id or f"mm_{uuid.uuid4().hex[:8]}"
        playwright = None
        browser = None
        try:
            playwright = await asyncio.wait_for(self.playwright_factory().start(), timeout=self.launch_timeout)
            browser = await asyncio.wait_for(
                playwright.chromium.launch(headless=self.headless, args=LAUNCH_ARGS),
                timeout=self.launch_timeout,
            )
        except asyncio.TimeoutError as e:
            await self._close_partial(playwright, browser)
            raise LaunchTimeout(f"Browser did not start within {self.launch_timeout:.0f}s") from e
        except asyncio.CancelledError:
            await self._close_partial(playwright, browser)
            raise
        except Exception as e:
            await self._close_partial(playwright, browser)
            if is_resource_exhaustion(e):
                raise ResourceExhaustion(f"Browser launch failed: {e}") from e
            raise

        try:
            context = await browser.new_context(**FINGERPRINT)
            await context.add_init_script(STEALTH_SCRIPT)
            page = await context.new_page()
            await page.add_init_script(CHALLENGE_CAPTURE_SCRIPT)
        except (Exception, asyncio.CancelledError):
            await self._close_partial(playwright, browser)
            raise

        session = BrowserSession(
            session_id=session_id,
            playwright=playwright,
            browser=browser,
            context=context,
            page=page,
        )
        self.active_sessions[session_id] = session
        logger.info(f"[Browser] Session {session_id} launched (headless={self.headless})")
        return session

    async def _close_partial(self, playwright, browser) -> None:
        if browser is not None:
            await self._bounded_close("browser", browser.close())
        if playwright is not None:
            await self._bounded_close("playwright", playwright.stop())

    async def _bounded_close(self, label: str, closer) -> bool:
        try:
            await asyncio.wait_for(closer, timeout=self.close_timeout)
            return True
        except asyncio.TimeoutError:
            logger.warning(f"[Browser] Closing {label} timed out after {self.close_timeout:.0f}s")
        except Exception as e:
            logger.warning(f"[Browser] Closing {label} failed: {e}")
        return False

    async def close_session(self, session: BrowserSession) -> None:
        """Close page, context, browser and Playwright in order. Safe to call twice."""
        if session.closed:
            return
        session.closed = True
        await self._bounded_close("page", session.page.close())
        await self._bounded_close("context", session.context.close())
        await self._bounded_close("browser", session.browser.close())
        await self._bounded_close("playwright", session.playwright.stop())
        self.active_sessions.pop(session.session_id, None)
        logger.info(f"[Browser] Closed session: {session.session_id}")

    async def close_all(self):
        """Close all active sessions."""
        for session in list(self.active_sessions.values()):
            await self.close_session(session)

    async def read_captured_params(self, page: Page) -> Optional[Dict[str, Any]]:
        """Turnstile render options captured by the init script, if the widget rendered."""
        try:
            return await page.evaluate(READ_CAPTURED_PARAMS_JS)
        except Exception as e:
            logger.debug(f"[Browser] Reading captured challenge params failed: {e}")
            return None

    async def capture_screenshot(self, page: Page, name: str, full_page: bool = True) -> str:
        """Capture a screenshot with timestamp. No-op unless an artifacts directory is set."""
        if not self.artifacts_dir:
            return ""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.artifacts_dir / f"{name}_{timestamp}.png"

        try:
            await page.screenshot(path=str(filepath), full_page=full_page)
            logger.info(f"[Browser] Screenshot saved: {filepath}")
            return str(filepath)
        except Exception as e:
            logger.warning(f"[Browser] Screenshot failed: {e}")
            return ""

    async def save_html(self, page: Page, name: str) -> str:
        """Write the current page HTML. No-op unless an artifacts directory is set."""
        if not self.artifacts_dir:
            return ""
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        filepath = self.artifacts_dir / f"{name}_{timestamp}.html"

        try:
            filepath.write_text(await page.content(), encoding="utf-8")
            logger.info(f"[Browser] HTML saved: {filepath}")
            return str(filepath)
        except Exception as e:
            logger.warning(f"[Browser] Saving HTML failed: {e}")
            return ""

    def get_stats(self) -> Dict[str, Any]:
        """Get browser manager statistics."""
        return {
            "total_sessions": len(self.active_sessions),
            "headless": self.headless,
        }
