"""
Error taxonomy and retry helpers for search sessions.

Every failure the orchestrator can report is a SearchError carrying whether a
fresh attempt could succeed and the text shown to the user.
"""

import asyncio
import random
import logging
from enum import Enum
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

SERVER_BUSY_MESSAGE = "Server is busy processing other searches. Please try again in a few minutes."
CONNECTION_MESSAGE = "Temporary problem reaching missingmoney.com. Please try again."
TIMEOUT_MESSAGE = "The search took too long to complete. Please try again."
FORM_FAILED_MESSAGE = (
    "Form submission failed - still on the search form. "
    "The site's verification challenge may be blocking the search."
)
CHALLENGE_NOT_CLEARED_MESSAGE = (
    "The site's verification challenge did not clear. "
    "Please try again, or enable the 2captcha solver."
)

# OS-level messages seen when the host runs out of processes, threads or file handles.
# "spawn ... ENOENT" (browser not installed) must not match.
RESOURCE_EXHAUSTION_SIGNATURES = [
    "eagain",
    "enomem",
    "too many open files",
    "resource temporarily unavailable",
    "pthread_create",
    "out of memory",
]


class ErrorCategory(str, Enum):
    QUEUE = "queue"
    RESOURCE = "resource"
    NETWORK = "network"
    TIMEOUT = "timeout"
    CHALLENGE = "challenge"
    FORM = "form"
    UNKNOWN = "unknown"


class SearchError(Exception):
    """Base class for every error the orchestrator turns into an outcome."""

    category = ErrorCategory.UNKNOWN
    retryable = False
    default_message = "Search failed."

    def __init__(self, message: Optional[str] = None, user_message: Optional[str] = None):
        super().__init__(message or self.default_message)
        self.user_message = user_message or self.default_message


class QueueTimeout(SearchError):
    category = ErrorCategory.QUEUE
    retryable = True
    default_message = SERVER_BUSY_MESSAGE


class ResourceExhaustion(SearchError):
    category = ErrorCategory.RESOURCE
    retryable = True
    default_message = SERVER_BUSY_MESSAGE


class LaunchTimeout(SearchError):
    category = ErrorCategory.TIMEOUT
    retryable = True
    default_message = CONNECTION_MESSAGE


class NavigationTimeout(SearchError):
    category = ErrorCategory.NETWORK
    retryable = True
    default_message = CONNECTION_MESSAGE


class SearchTimeout(SearchError):
    category = ErrorCategory.TIMEOUT
    retryable = True
    default_message = TIMEOUT_MESSAGE


class ChallengeError(SearchError):
    category = ErrorCategory.CHALLENGE
    default_message = "Verification challenge could not be solved."


class SolverRejected(ChallengeError):
    """The solving service refused the task."""


class SolverTimeout(ChallengeError):
    """The solving service never produced a token."""


class SolverError(ChallengeError):
    """The solving service reported a failure while polling."""


class ChallengeBlocking(SearchError):
    category = ErrorCategory.FORM
    default_message = FORM_FAILED_MESSAGE


class SearchFailed(SearchError):
    category = ErrorCategory.UNKNOWN


def is_resource_exhaustion(error: BaseException) -> bool:
    text = str(error).lower()
    return any(signature in text for signature in RESOURCE_EXHAUSTION_SIGNATURES)


def classify_exception(error: BaseException) -> SearchError:
    """Map an arbitrary exception onto the taxonomy."""
    if isinstance(error, SearchError):
        return error
    if is_resource_exhaustion(error):
        return ResourceExhaustion(str(error))
    if isinstance(error, asyncio.TimeoutError) or type(error).__name__ == "TimeoutError":
        return SearchTimeout(str(error) or "operation timed out")
    if isinstance(error, (ConnectionError, OSError)):
        return NavigationTimeout(str(error))
    message = str(error) or type(error).__name__
    return SearchFailed(message, user_message=f"Search failed: {message}")


async def retry_async(
    func: Callable[[], Awaitable[T]],
    max_attempts: int = 2,
    base_delay: float = 2.0,
    should_retry: Callable[[BaseException], bool] = lambda e: getattr(e, "retryable", False),
    on_retry: Optional[Callable[[int, BaseException], None]] = None,
    jitter: float = 1.0,
) -> T:
    """
    Await ``func()`` until it succeeds or attempts run out.

    Backoff is exponential with up to ``jitter`` seconds added. Errors for
    which ``should_retry`` is false are raised immediately.
    """
    attempt = 0
    while True:
        attempt += 1
        try:
            return await func()
        except Exception as e:
            if attempt >= max_attempts or not should_retry(e):
                raise
            delay = base_delay * (2 ** (attempt - 1)) + random.uniform(0, jitter)
            logger.warning(f"[Retry] Attempt {attempt}/{max_attempts} failed: {e}; retrying in {delay:.1f}s")
            if on_retry:
                on_retry(attempt, e)
            await asyncio.sleep(delay)
