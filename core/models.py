#!/usr/bin/env python3
"""
Data Models for CEP Automation

Shared enums and records used by the browser automation, the job lifecycle
and the API layer.
"""

import random
import string
from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from core.errors import InvalidTransitionError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ============== Enums ==============

class JobStatus(str, Enum):
    """Job status values. Transitions only move forward."""
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


_ALLOWED_TRANSITIONS = {
    JobStatus.PENDING: {JobStatus.PROCESSING, JobStatus.FAILED},
    JobStatus.PROCESSING: {JobStatus.COMPLETED, JobStatus.FAILED},
    JobStatus.COMPLETED: set(),
    JobStatus.FAILED: set(),
}


class FormatType(str, Enum):
    """Output format requested from the portal."""
    PDF = "pdf"
    XML = "xml"
    BOTH = "both"

    @classmethod
    def _missing_(cls, value):
        if not isinstance(value, str):
            return None
        lowered = value.strip().lower()
        # The portal and older clients spell "both" in Spanish
        if lowered == "ambos":
            return cls.BOTH
        for member in cls:
            if member.value == lowered:
                return member
        return None

    @property
    def portal_option(self) -> str:
        """Value of the portal's <select name="formato"> option."""
        return PORTAL_FORMAT_OPTIONS[self]


PORTAL_FORMAT_OPTIONS = {
    FormatType.PDF: "1",
    FormatType.XML: "2",
    FormatType.BOTH: "3",
}


class BrowserType(str, Enum):
    """Playwright browser families."""
    CHROMIUM = "chromium"
    FIREFOX = "firefox"
    WEBKIT = "webkit"


class HumanProfile(str, Enum):
    """How many stealth countermeasures an engine gets."""
    STRONG = "strong"
    STANDARD = "standard"
    BASIC = "basic"


class AutomationState(str, Enum):
    """States of a single engine attempt against the portal."""
    INIT = "init"
    NAVIGATED = "navigated"
    UPLOADING = "uploading"
    TOKEN_ACQUIRED = "token_acquired"
    RETURNED = "returned"
    QUERYING = "querying"
    CAPTCHA_WAIT = "captcha_wait"
    DOWNLOADED = "downloaded"
    UPLOAD_FAILED = "upload_failed"
    QUERY_FAILED = "query_failed"


# ============== Data Models ==============

@dataclass(frozen=True)
class PaymentRecord:
    """One electronic payment as read from the data source."""
    payment_date: str
    tracking_key: str
    issuer_code: str
    receiver_code: str
    beneficiary_account: str
    amount: str

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "PaymentRecord":
        """Build from a data source row using the portal's column names."""
        return cls(
            payment_date=str(row.get("fecha_pago") or ""),
            tracking_key=str(row.get("clave_rastreo") or ""),
            issuer_code=str(row.get("clave_institucion_emisora") or ""),
            receiver_code=str(row.get("clave_institucion_receptora") or ""),
            beneficiary_account=str(row.get("cuenta_beneficiario") or ""),
            amount=str(row.get("monto") if row.get("monto") is not None else ""),
        )


@dataclass(frozen=True)
class EngineDescriptor:
    """A browser engine profile in the fallback order."""
    name: str
    browser_type: BrowserType
    user_agent: Optional[str]
    profile: HumanProfile
    launch_args: Tuple[str, ...] = ()
    firefox_user_prefs: Dict[str, Any] = field(default_factory=dict, compare=False)
    channel: Optional[str] = None


@dataclass
class AutomationResult:
    """Output of a successful automation run."""
    token: str
    download_path: str
    engine: str
    upload_attempts: int = 1
    query_attempts: int = 1


def generate_job_id(now: Optional[datetime] = None, rng: Optional[random.Random] = None) -> str:
    """
    Generate a job id in the format YYYYMMDD-HHMM-XXX.

    XXX is three random uppercase base-36 characters.
    """
    now = now or utcnow()
    rng = rng or random
    suffix = "".join(rng.choice(string.digits + string.ascii_uppercase) for _ in range(3))
    return f"{now.strftime('%Y%m%d')}-{now.strftime('%H%M')}-{suffix}"


@dataclass
class Job:
    """One end-to-end request for a payment-confirmation archive."""
    id: str
    email: str
    format: FormatType
    start_date: Optional[str] = None
    end_date: Optional[str] = None
    status: JobStatus = JobStatus.PENDING
    records_processed: Optional[int] = None
    input_file_path: Optional[str] = None
    token: Optional[str] = None
    result_reference: Optional[str] = None
    error: Optional[str] = None
    created_at: datetime = field(default_factory=utcnow)
    completed_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status in (JobStatus.COMPLETED, JobStatus.FAILED)

    @property
    def is_range(self) -> bool:
        return bool(self.start_date and self.end_date)

    def can_transition(self, new_status: JobStatus) -> bool:
        return new_status in _ALLOWED_TRANSITIONS[self.status]

    def transition(self, new_status: JobStatus) -> None:
        """Move to ``new_status``; raises on regressions and terminal states."""
        if not self.can_transition(new_status):
            raise InvalidTransitionError(
                f"Job {self.id}: cannot move from {self.status.value} to {new_status.value}"
            )
        self.status = new_status
        if self.is_terminal:
            self.completed_at = utcnow()

    def assign_token(self, token: str) -> None:
        """Set the portal token. It is set once and never changes."""
        if not token:
            raise ValueError("Token must be a non-empty string")
        if self.token and self.token != token:
            raise InvalidTransitionError(f"Job {self.id}: token already set")
        self.token = token

    def snapshot(self) -> "Job":
        return replace(self)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "job_id": self.id,
            "status": self.status.value,
            "email": self.email,
            "format": self.format.value,
            "start_date": self.start_date,
            "end_date": self.end_date,
            "records_processed": self.records_processed,
            "token": self.token,
            "result_reference": self.result_reference,
            "error": self.error,
            "created_at": self.created_at.isoformat(),
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "download_available": self.status == JobStatus.COMPLETED and bool(self.result_reference),
        }
