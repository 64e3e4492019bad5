"""
Error taxonomy for CEP automation.

Automation errors carry a ``retryable`` flag that the phase retry policy reads:
retryable errors are retried inside the same phase on the same engine, anything
else ends the engine attempt and is handed to the fallback orchestrator.
"""

from typing import List, Optional, Tuple


class CepAutomationError(Exception):
    """Base class for every error raised by this project."""


class DriverTimeoutError(CepAutomationError):
    """A bounded browser wait (selector, navigation, download...) expired."""


# ============== Portal automation ==============

class PortalAutomationError(CepAutomationError):
    """Failure while driving the portal workflow."""
    retryable = False


class PortalGenericError(PortalAutomationError):
    """The portal answered the upload with its generic error page."""
    retryable = True


class PortalQueryError(PortalAutomationError):
    """The portal rejected or did not complete the result query."""
    retryable = True


class FormNotSubmittedError(PortalAutomationError):
    """Still on the submission form after submitting - the upload never happened."""


class TokenNotFoundError(PortalAutomationError):
    """Upload finished without an error marker but no token could be extracted."""


class SubmitControlError(PortalAutomationError):
    """The submit control could not be clicked, not even with a forced click."""


class DownloadUnavailableError(PortalAutomationError):
    """The download control never appeared and the portal reported an error."""


class PhaseExhaustedError(PortalAutomationError):
    """A phase used up its retry budget."""

    def __init__(self, phase: str, attempts: int, last_error: BaseException):
        self.phase = phase
        self.attempts = attempts
        self.last_error = last_error
        # Attempt counts stay out of the message, it can reach the job's error field
        super().__init__(f"{phase.capitalize()} phase failed: {last_error}")


class AllEnginesFailedError(PortalAutomationError):
    """Every browser engine was tried and none completed the workflow."""

    def __init__(self, failures: List[Tuple[str, BaseException]]):
        self.failures = failures
        last = failures[-1][1] if failures else None
        message = str(last) if last else "Automation failed with every browser engine"
        super().__init__(message)

    @property
    def last_error(self) -> Optional[BaseException]:
        return self.failures[-1][1] if self.failures else None


# ============== Job pipeline ==============

class DataSourceError(CepAutomationError):
    """The payment data source query failed."""


class NoRecordsError(CepAutomationError):
    """The data source returned nothing for the requested dates."""


class SubmissionFileError(CepAutomationError):
    """A payment record could not be serialized into the submission file."""


class StorageError(CepAutomationError):
    """The downloaded artifact could not be handed off to remote storage."""


class InvalidTransitionError(CepAutomationError):
    """A job status change that would move backwards or leave a terminal state."""


class JobNotFoundError(CepAutomationError):
    pass


class JobAlreadyStartedError(CepAutomationError):
    pass
