"""
Core components for CEP portal automation.

Modules:
- models: job, payment record and engine data types
- errors: exception hierarchy
- retry: phase retry policy
- automation: portal state machine for one browser engine
- fallback: engine fallback orchestrator
- job_store / job_manager: job records and their lifecycle
- file_manager / submission_file / diagnostics / dates: local helpers
"""

from .errors import (
    AllEnginesFailedError,
    CepAutomationError,
    JobNotFoundError,
    PhaseExhaustedError,
    PortalAutomationError,
)
from .models import (
    AutomationResult,
    AutomationState,
    BrowserType,
    EngineDescriptor,
    FormatType,
    Job,
    JobStatus,
    PaymentRecord,
)

__all__ = [
    "AllEnginesFailedError",
    "AutomationResult",
    "AutomationState",
    "BrowserType",
    "CepAutomationError",
    "EngineDescriptor",
    "FormatType",
    "Job",
    "JobNotFoundError",
    "JobStatus",
    "PaymentRecord",
    "PhaseExhaustedError",
    "PortalAutomationError",
]
