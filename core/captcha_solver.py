"""
CAPTCHA Solver - 2captcha Turnstile Integration

Submits Cloudflare Turnstile tasks to the 2captcha API v2 and polls for the
token. Used when a search request brings its own solver key.
"""

import os
import asyncio
import logging
from typing import Optional, Dict, Any

import aiohttp

from .error_handler import SolverError, SolverRejected, SolverTimeout
from .models import ChallengeDescriptor, SolverResult

logger = logging.getLogger(__name__)

# 2captcha API
TWOCAPTCHA_API_URL = os.getenv("SOLVER_BASE_URL", "https://api.2captcha.com")


def mask_key(api_key: Optional[str]) -> str:
    if not api_key:
        return "<none>"
    return f"{api_key[:6]}..."


class TurnstileSolver:
    """
    2captcha Turnstile solving service integration.

    Usage:
        solver = TurnstileSolver(api_key="...")
        result = await solver.solve(ChallengeDescriptor(
            site_key="0x4AAA...",
            page_url="https://missingmoney.com/app/claim-search"
        ))
    """

    def __init__(
        self,
        api_key: Optional[str],
        base_url: str = TWOCAPTCHA_API_URL,
        poll_interval: float = 3.0,
        max_polls: int = 40,
        request_timeout: float = 30.0,
        session: Optional[aiohttp.ClientSession] = None,
    ):
        self.api_key = api_key
        self.base_url = base_url.rstrip("/")
        self.poll_interval = poll_interval
        self.max_polls = max_polls
        self.request_timeout = request_timeout
        self._session = session

    def is_configured(self) -> bool:
        """Check if API key is configured."""
        return bool(self.api_key)

    async def _post(self, session: aiohttp.ClientSession, path: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        async with session.post(
            f"{self.base_url}/{path}",
            json=payload,
            timeout=aiohttp.ClientTimeout(total=self.request_timeout),
        ) as resp:
            if resp.status != 200:
                text = await resp.text()
                raise aiohttp.ClientResponseError(
                    resp.request_info, resp.history, status=resp.status, message=text[:200]
                )
            data = await resp.json(content_type=None)
        if not isinstance(data, dict):
            raise ValueError(f"Expected a JSON object from {path}, got {type(data).__name__}")
        return data

    async def solve(self, descriptor: ChallengeDescriptor) -> SolverResult:
        """
        Solve a Turnstile widget.

        Raises:
            SolverRejected: the task could not be created
            SolverTimeout: no token after the polling budget
            SolverError: the service reported a failure while polling
        """
        if not self.api_key:
            raise SolverRejected("No 2captcha API key configured")

        if self._session is not None:
            return await self._solve(self._session, descriptor)
        async with aiohttp.ClientSession() as session:
            return await self._solve(session, descriptor)

    async def _solve(self, session: aiohttp.ClientSession, descriptor: ChallengeDescriptor) -> SolverResult:
        task_id = await self._create_task(session, descriptor)

        for attempt in range(1, self.max_polls + 1):
            await asyncio.sleep(self.poll_interval)

            try:
                result = await self._post(session, "getTaskResult", {
                    "clientKey": self.api_key,
                    "taskId": task_id,
                })
            except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
                raise SolverError(f"Polling task {task_id} failed: {e}") from e

            if result.get("errorId", 0) != 0:
                raise SolverError(
                    f"Task {task_id} failed: {result.get('errorCode')} {result.get('errorDescription', '')}".strip()
                )

            status = result.get("status")
            if status == "processing":
                logger.debug(f"[2captcha] Task {task_id} processing ({attempt}/{self.max_polls})")
                continue
            if status == "ready":
                solution = result.get("solution")
                if not isinstance(solution, dict):
                    solution = {}
                token = solution.get("token")
                if not token:
                    raise SolverError(f"Task {task_id} ready without a token")
                logger.info(f"[2captcha] Turnstile solved after {attempt} polls (token length {len(token)})")
                return SolverResult(token=token, user_agent=solution.get("userAgent"))

            raise SolverError(f"Task {task_id} returned unexpected status: {status}")

        raise SolverTimeout(f"Task {task_id} not solved after {self.max_polls} polls")

    async def _create_task(self, session: aiohttp.ClientSession, descriptor: ChallengeDescriptor) -> Any:
        payload = {
            "clientKey": self.api_key,
            "task": descriptor.to_task(),
        }
        logger.info(
            f"[2captcha] Creating Turnstile task for {descriptor.page_url} "
            f"(sitekey {descriptor.site_key[:12]}..., key {mask_key(self.api_key)})"
        )
        try:
            data = await self._post(session, "createTask", payload)
        except (aiohttp.ClientError, asyncio.TimeoutError, ValueError) as e:
            raise SolverRejected(f"Create task request failed: {e}") from e

        if data.get("errorId", 0) != 0:
            raise SolverRejected(
                f"Create task rejected: {data.get('errorCode')} {data.get('errorDescription', '')}".strip()
            )
        task_id = data.get("taskId")
        if not task_id:
            raise SolverRejected(f"Create task returned no task id: {data}")

        logger.info(f"[2captcha] Task created: {task_id}")
        return task_id
