"""
Core components for the Missing Money search service.

Modules:
- slot_manager: Bounded, FIFO-fair browser slots
- captcha_solver: 2captcha Turnstile client
- form_filler: Human-paced claim-search form filling
- extractor: Multi-pass result extraction
- session_driver: One browser session through the search flow
- error_handler: Error taxonomy and retry helpers
- orchestrator: Ties everything together
"""

from .error_handler import ErrorCategory, SearchError
from .models import ExtractedRecord, SearchOutcome, SearchRequest
from .slot_manager import SlotManager

__all__ = [
    "ErrorCategory",
    "SearchError",
    "ExtractedRecord",
    "SearchOutcome",
    "SearchRequest",
    "SlotManager",
]
