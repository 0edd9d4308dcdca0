"""
Errors Module - AttendAI QR Attendance Service

Exception types and rejection reasons shared by the credential issuer,
store and validator.

Business rejections (expired, already used, wrong event, ...) are never
raised; they travel back to the caller as a ValidationResult carrying one
of the RejectionReason values below. Exceptions are reserved for bad input
at issuance and for infrastructure failures.
"""

from typing import Optional


class AttendanceError(Exception):
    """Base class for attendance service errors."""


class InvalidRequest(AttendanceError):
    """
    Client error at issuance or at the HTTP boundary. No side effect.

    Args:
        message (str): Human readable description
        error_type (str): Machine readable error code
        status_code (int): HTTP status to surface to the caller
    """

    def __init__(self, message: str, error_type: str = 'invalid_request',
                 status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.error_type = error_type
        self.status_code = status_code

    def to_dict(self) -> dict:
        return {
            'success': False,
            'error': self.message,
            'error_type': self.error_type
        }


class DuplicateId(AttendanceError):
    """Raised by a credential store when the credential id already exists."""

    def __init__(self, credential_id: str):
        super().__init__(f"Credential already exists: {credential_id}")
        self.credential_id = credential_id


class StoreUnavailable(AttendanceError):
    """
    The backing store could not be reached. Retryable; callers must not
    report success when this is raised.
    """

    def __init__(self, message: str = 'Credential store unavailable',
                 cause: Optional[Exception] = None):
        super().__init__(message)
        self.cause = cause


class MalformedPayloadError(ValueError):
    """Raised by parse_payload for a scan that is not `<id>:<nonce>`."""


class RejectionReason:
    """Reasons a scanned credential can be rejected."""

    MALFORMED_PAYLOAD = 'malformed_payload'
    NOT_FOUND = 'not_found'
    NONCE_MISMATCH = 'nonce_mismatch'
    EVENT_MISMATCH = 'event_mismatch'
    EXPIRED = 'expired'
    ALREADY_CONSUMED = 'already_consumed'
    RECORD_WRITE_FAILED = 'record_write_failed'

    # Rejections that indicate somebody presented a real credential in the
    # wrong context; logged apart from plain lookups misses.
    TAMPERING = frozenset({NONCE_MISMATCH, EVENT_MISMATCH})


class ConsumeOutcome:
    """Outcomes of CredentialStore.try_consume."""

    SUCCESS = 'success'
    ALREADY_CONSUMED = 'already_consumed'
    NOT_FOUND = 'not_found'


REJECTION_MESSAGES = {
    RejectionReason.MALFORMED_PAYLOAD: 'This is not a valid attendance QR code.',
    RejectionReason.NOT_FOUND: 'QR code not recognised. Ask the student to generate a new one.',
    RejectionReason.NONCE_MISMATCH: 'QR code could not be verified.',
    RejectionReason.EVENT_MISMATCH: 'This QR code was issued for a different event.',
    RejectionReason.EXPIRED: 'This QR code has expired. Ask the student to generate a new one.',
    RejectionReason.ALREADY_CONSUMED: 'This QR code has already been used.',
    RejectionReason.RECORD_WRITE_FAILED: (
        'The QR code was accepted but attendance could not be saved. '
        'An administrator has been notified.'
    ),
}


def rejection_message(reason: str) -> str:
    """Return the scanner-facing message for a rejection reason."""
    return REJECTION_MESSAGES.get(reason, 'QR code rejected.')
