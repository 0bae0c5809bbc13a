#!/usr/bin/env python3
"""
Unified Data Models for Missing Money Search

All shared data models are defined here to ensure consistency across the codebase.
"""

import re
import uuid
from typing import List, Optional, Dict, Any, Tuple
from dataclasses import dataclass, field

from .amounts import amount_value, normalize_amount, total_amount
from .names import full_state_name, normalize_first_name, normalize_last_name


# ============== Requests ==============

@dataclass(frozen=True)
class SearchRequest:
    """A validated search, immutable once accepted."""
    first_name: str
    last_name: str
    city: str
    state: str
    use_challenge_solver: bool = False
    solver_api_key: Optional[str] = None
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:8])

    @classmethod
    def create(
        cls,
        first_name: str,
        last_name: str,
        city: str,
        state: str,
        use_challenge_solver: bool = False,
        solver_api_key: Optional[str] = None,
    ) -> "SearchRequest":
        """Build a request with normalized names."""
        return cls(
            first_name=normalize_first_name(first_name),
            last_name=normalize_last_name(last_name),
            city=(city or "").strip(),
            state=(state or "").strip(),
            use_challenge_solver=bool(use_challenge_solver),
            solver_api_key=(solver_api_key or "").strip() or None,
        )

    @property
    def state_name(self) -> str:
        """Full state name as the form's dropdown lists it."""
        return full_state_name(self.state)

    @property
    def solver_enabled(self) -> bool:
        return self.use_challenge_solver and bool(self.solver_api_key)

    @property
    def owner_names(self) -> List[str]:
        """Name variants that identify the searched owner in result rows."""
        full = f"{self.first_name} {self.last_name}".strip()
        reverse = f"{self.last_name} {self.first_name}".strip()
        variants = [full.upper(), reverse.upper(), f"{self.last_name}, {self.first_name}".upper()]
        return [n for n in dict.fromkeys(variants) if n]


# ============== Challenge solving ==============

@dataclass(frozen=True)
class ChallengeDescriptor:
    """Parameters needed to solve one Turnstile widget."""
    site_key: str
    page_url: str
    action: Optional[str] = None
    c_data: Optional[str] = None
    page_data: Optional[str] = None

    def to_task(self) -> Dict[str, Any]:
        """Task body for the solving service."""
        task = {
            "type": "TurnstileTaskProxyless",
            "websiteURL": self.page_url,
            "websiteKey": self.site_key,
        }
        if self.action:
            task["action"] = self.action
        if self.c_data:
            task["data"] = self.c_data
        if self.page_data:
            task["pagedata"] = self.page_data
        return task


@dataclass
class SolverResult:
    """Token returned by the solving service."""
    token: str
    user_agent: Optional[str] = None


# ============== Results ==============

@dataclass
class ExtractedRecord:
    """One unclaimed-property row: the reporting business and the amount held."""
    entity: str
    amount: str
    raw_context: str = ""

    @property
    def value(self) -> float:
        """Dollar value used for totals."""
        return amount_value(self.amount) or 0.0

    def key(self) -> Tuple[str, str]:
        return (re.sub(r"\s+", " ", self.entity).strip().upper(), normalize_amount(self.amount))

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "entity": self.entity,
            "amount": self.amount,
            "value": self.value,
            "rawContext": self.raw_context,
        }


@dataclass
class SearchOutcome:
    """The single result shape returned for every search."""
    success: bool
    results: List[ExtractedRecord] = field(default_factory=list)
    message: Optional[str] = None
    error: Optional[str] = None
    retryable: Optional[bool] = None
    metadata: Dict[str, Any] = field(default_factory=dict)

    @property
    def total_amount(self) -> float:
        return total_amount(r.amount for r in self.results)

    @classmethod
    def failure(cls, error: str, retryable: bool = False, **metadata) -> "SearchOutcome":
        return cls(success=False, error=error, retryable=retryable, metadata=metadata)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to the JSON body returned by the API."""
        data: Dict[str, Any] = {
            "success": self.success,
            "results": [r.to_dict() for r in self.results],
            "totalAmount": self.total_amount,
        }
        if self.message is not None:
            data["message"] = self.message
        if self.error is not None:
            data["error"] = self.error
        if self.retryable is not None:
            data["retryable"] = self.retryable
        return data
