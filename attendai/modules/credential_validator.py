"""
Credential Validator Module - AttendAI QR Attendance Service

This module turns a scanned payload into either an attendance record or a
precise rejection.

A scan moves through Received -> Parsed -> Looked Up -> Checked and ends
Accepted or Rejected. Checks run in a fixed order and the first failure
stops the scan:

    1. parse            -> malformed_payload (the store is not touched)
    2. lookup           -> not_found
    3. nonce            -> nonce_mismatch
    4. event binding    -> event_mismatch
    5. expiry           -> expired
    6. consume (CAS)    -> already_consumed
    7. record write     -> record_write_failed (credential stays consumed)

Nothing is written before step 6. Step 6 is the store's compare-and-set,
so two concurrent scans of one valid credential produce one acceptance.
"""

import hmac
import logging
from dataclasses import dataclass
from typing import Callable, Optional

from attendai.modules.attendance_manager import AttendanceRecord
from attendai.modules.credential_issuer import current_millis, parse_payload
from attendai.modules.credential_store import CredentialStore
from attendai.modules.errors import (
    ConsumeOutcome,
    MalformedPayloadError,
    RejectionReason,
    rejection_message,
)


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of a single validate() call."""
    accepted: bool
    reason: Optional[str] = None
    attendance_id: Optional[str] = None
    event_id: Optional[str] = None
    user_id: Optional[str] = None
    scan_time: Optional[int] = None
    consumed: bool = False

    @classmethod
    def rejected(cls, reason: str, consumed: bool = False, **fields) -> 'ValidationResult':
        return cls(accepted=False, reason=reason, consumed=consumed, **fields)

    @property
    def message(self) -> str:
        if self.accepted:
            return 'Attendance marked successfully.'
        return rejection_message(self.reason)

    def to_dict(self) -> dict:
        result = {'accepted': self.accepted, 'message': self.message}
        if self.accepted:
            result.update({
                'attendanceId': self.attendance_id,
                'eventId': self.event_id,
                'scanTime': self.scan_time,
            })
        else:
            result['reason'] = self.reason
        return result


class CredentialValidator:
    """
    Validates scanned credentials and records attendance on success.
    """

    def __init__(self, store: CredentialStore, attendance_manager,
                 notifier=None, clock: Optional[Callable[[], int]] = None):
        """
        Args:
            store (CredentialStore): Source of truth for credential state
            attendance_manager: Sink for attendance records
            notifier: Optional notification system told about accepted scans
                and about records that failed to save
            clock (callable): Returns the current time in epoch milliseconds
        """
        self.store = store
        self.attendance_manager = attendance_manager
        self.notifier = notifier
        self.clock = clock or current_millis
        self.logger = logging.getLogger(__name__)

    def validate(self, raw_payload: str, event_id: str, scanned_by: str,
                 now: Optional[int] = None) -> ValidationResult:
        """
        Validate a scanned payload for an event.

        Args:
            raw_payload (str): Scanned `<credential_id>:<nonce>` text
            event_id (str): Event the scanner is taking attendance for
            scanned_by (str): Identity of the scanning operator
            now (int): Validation time in epoch milliseconds; defaults to the clock

        Returns:
            ValidationResult: Accepted, or rejected with a reason

        Raises:
            StoreUnavailable: the credential store could not be reached
        """
        now = self.clock() if now is None else now

        try:
            credential_id, nonce = parse_payload(raw_payload)
        except MalformedPayloadError as e:
            self.logger.info(f"Rejected malformed payload from {scanned_by}: {str(e)}")
            return ValidationResult.rejected(RejectionReason.MALFORMED_PAYLOAD)

        short_id = credential_id[:8]

        credential = self.store.get(credential_id)
        if credential is None:
            self.logger.info(f"Rejected unknown credential {short_id}... scanned by {scanned_by}")
            return ValidationResult.rejected(RejectionReason.NOT_FOUND)

        if not hmac.compare_digest(credential.nonce.encode(), nonce.encode()):
            self.logger.warning(
                f"Possible tampering: nonce mismatch for credential {short_id}... "
                f"scanned by {scanned_by}"
            )
            return ValidationResult.rejected(RejectionReason.NONCE_MISMATCH)

        if credential.event_id != event_id:
            self.logger.warning(
                f"Possible tampering: credential {short_id}... issued for event "
                f"{credential.event_id} scanned for event {event_id} by {scanned_by}"
            )
            return ValidationResult.rejected(RejectionReason.EVENT_MISMATCH)

        if credential.is_expired(now):
            self.logger.info(
                f"Rejected expired credential {short_id}... "
                f"({now - credential.expires_at} ms past expiry)"
            )
            return ValidationResult.rejected(RejectionReason.EXPIRED)

        outcome = self.store.try_consume(credential_id, scanned_by, now)
        if outcome == ConsumeOutcome.ALREADY_CONSUMED:
            self.logger.info(f"Rejected reused credential {short_id}... scanned by {scanned_by}")
            return ValidationResult.rejected(RejectionReason.ALREADY_CONSUMED)
        if outcome == ConsumeOutcome.NOT_FOUND:
            self.logger.info(f"Credential {short_id}... disappeared before consumption")
            return ValidationResult.rejected(RejectionReason.NOT_FOUND)

        # Consumed from here on; a failed record write must not reopen the credential
        record = AttendanceRecord.new(
            event_id=credential.event_id,
            user_id=credential.issued_to,
            scan_time=now,
            scanned_by=scanned_by,
            credential_id=credential_id
        )
        try:
            self.attendance_manager.record_attendance(record)
        except Exception as e:
            self.logger.error(
                f"Attendance record write failed after consuming credential "
                f"{credential_id} (user {credential.issued_to}, event {credential.event_id}): "
                f"{str(e)}. Manual reconciliation required."
            )
            self._alert_record_write_failed(credential, scanned_by, now, e)
            return ValidationResult.rejected(
                RejectionReason.RECORD_WRITE_FAILED,
                consumed=True,
                event_id=credential.event_id,
                user_id=credential.issued_to,
                scan_time=now
            )

        self._notify_accepted(record)
        return ValidationResult(
            accepted=True,
            attendance_id=record.attendance_id,
            event_id=record.event_id,
            user_id=record.user_id,
            scan_time=record.scan_time,
            consumed=True
        )

    def _notify_accepted(self, record: AttendanceRecord) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send_attendance_notification(record.to_dict())
        except Exception as e:
            self.logger.error(f"Failed to queue attendance notification: {str(e)}")

    def _alert_record_write_failed(self, credential, scanned_by: str, now: int,
                                   error: Exception) -> None:
        if self.notifier is None:
            return
        try:
            self.notifier.send_system_alert(
                title='Attendance record write failed',
                message=(
                    f"Credential {credential.credential_id} was consumed but its attendance "
                    f"record could not be saved. Add the attendance manually."
                ),
                severity='error',
                additional_data={
                    'credentialId': credential.credential_id,
                    'eventId': credential.event_id,
                    'userId': credential.issued_to,
                    'scannedBy': scanned_by,
                    'scanTime': now,
                    'error': str(error),
                }
            )
        except Exception as e:
            self.logger.error(f"Failed to raise reconciliation alert: {str(e)}")
