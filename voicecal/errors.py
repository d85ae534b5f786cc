from __future__ import annotations


class VoicecalError(Exception):
    """Base error. ``status_code`` is what the HTTP layer answers with."""

    status_code = 500

    def __init__(self, message: str = "") -> None:
        super().__init__(message or self.__class__.__name__)
        self.message = message or self.__class__.__name__


class ValidationError(VoicecalError):
    status_code = 400


class UpstreamTimeout(VoicecalError):
    status_code = 504

    def __init__(self, label: str, seconds: float) -> None:
        super().__init__(f"{label} timed out after {seconds:g}s")
        self.label = label
        self.seconds = seconds


class UpstreamFailure(VoicecalError):
    status_code = 502


class NotFoundError(VoicecalError):
    status_code = 404


class StateConflict(VoicecalError):
    """Operation against state that is not there. Callers treat it as a no-op."""

    status_code = 409
