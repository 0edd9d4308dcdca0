"""
Credential Issuer Module - AttendAI QR Attendance Service

This module creates the time-boxed, single-use credentials students present
as QR codes. Each credential is bound to one event and one requester and
persisted before its payload leaves the server, so the validator always has
a record to check a scan against.

Features:
- Cryptographically random credential ids and nonces
- Fixed, configurable time-to-live
- Optional event and prior-attendance checks
- Payload formatting and parsing (`<credential_id>:<nonce>`)
"""

import secrets
import time
import logging
from dataclasses import dataclass
from typing import Callable, Optional, Tuple

from attendai.modules.credential_store import Credential, CredentialStore, PAYLOAD_SEPARATOR
from attendai.modules.errors import DuplicateId, InvalidRequest, MalformedPayloadError

DEFAULT_TTL_SECONDS = 120
TOKEN_BYTES = 16


def current_millis() -> int:
    """Wall-clock time as epoch milliseconds."""
    return int(time.time() * 1000)


def format_payload(credential_id: str, nonce: str) -> str:
    return f"{credential_id}{PAYLOAD_SEPARATOR}{nonce}"


def parse_payload(raw_payload) -> Tuple[str, str]:
    """
    Split a scanned payload into its credential id and nonce.

    Args:
        raw_payload (str): Scanned text

    Returns:
        Tuple[str, str]: (credential_id, nonce)

    Raises:
        MalformedPayloadError: missing or repeated separator, an empty component,
            or text that cannot be encoded as UTF-8
    """
    if not isinstance(raw_payload, str):
        raise MalformedPayloadError("Payload must be a string")

    try:
        raw_payload.encode('utf-8')
    except UnicodeEncodeError:
        # Lone surrogates survive JSON decoding but not sqlite binding
        raise MalformedPayloadError("Payload is not valid UTF-8 text")

    parts = raw_payload.strip().split(PAYLOAD_SEPARATOR)
    if len(parts) != 2:
        raise MalformedPayloadError("Payload must contain exactly one separator")

    credential_id, nonce = parts
    if not credential_id or not nonce:
        raise MalformedPayloadError("Payload components must not be empty")
    return credential_id, nonce


@dataclass(frozen=True)
class IssuedCredential:
    """What the issuer hands back to the requester."""
    credential_id: str
    payload: str
    expires_at: int
    ttl_seconds: int
    event_title: Optional[str] = None
    event_venue: Optional[str] = None

    def to_dict(self) -> dict:
        result = {
            'payload': self.payload,
            'expiresAt': self.expires_at,
            'ttlSeconds': self.ttl_seconds
        }
        if self.event_title is not None:
            result['eventTitle'] = self.event_title
            result['eventVenue'] = self.event_venue
        return result


class CredentialIssuer:
    """
    Issues attendance credentials and writes them to the credential store.
    """

    def __init__(self, store: CredentialStore, event_manager=None,
                 attendance_manager=None, ttl_seconds: int = DEFAULT_TTL_SECONDS,
                 clock: Optional[Callable[[], int]] = None):
        """
        Args:
            store (CredentialStore): Where issued credentials are persisted
            event_manager: When given, the event must exist and be running today
            attendance_manager: When given, requesters with attendance already
                recorded for the event are refused
            ttl_seconds (int): Credential lifetime
            clock (callable): Returns the current time in epoch milliseconds
        """
        if ttl_seconds <= 0:
            raise ValueError("ttl_seconds must be positive")

        self.store = store
        self.event_manager = event_manager
        self.attendance_manager = attendance_manager
        self.ttl_seconds = ttl_seconds
        self.clock = clock or current_millis
        self.logger = logging.getLogger(__name__)

    def issue(self, event_id: str, requester: str) -> IssuedCredential:
        """
        Issue a fresh credential for `requester` to attend `event_id`.

        Earlier credentials for the same pair are left untouched; each
        expires or is consumed on its own.

        Args:
            event_id (str): Event the credential authorizes attendance for
            requester (str): Authenticated identity of the requester

        Returns:
            IssuedCredential: Payload and expiry

        Raises:
            InvalidRequest: blank event id, missing requester, or a failed event check
            StoreUnavailable: the credential could not be persisted
        """
        event_id = event_id.strip() if isinstance(event_id, str) else ''
        if not event_id:
            raise InvalidRequest('Event ID is required', 'invalid_request', 400)
        if not requester:
            raise InvalidRequest('Authentication required', 'unauthenticated', 401)

        event = self._check_event(event_id, requester)

        credential = self._new_credential(event_id, str(requester))
        try:
            self.store.create(credential)
        except DuplicateId:
            # Only reachable on a random collision; one retry with fresh values
            self.logger.warning(f"Credential id collision for event {event_id}, retrying")
            credential = self._new_credential(event_id, str(requester))
            self.store.create(credential)

        self.logger.info(
            f"Issued credential {credential.credential_id[:8]}... for event {event_id} "
            f"to {requester}, expires at {credential.expires_at}"
        )
        return IssuedCredential(
            credential_id=credential.credential_id,
            payload=credential.payload,
            expires_at=credential.expires_at,
            ttl_seconds=self.ttl_seconds,
            event_title=event.get('title') if event else None,
            event_venue=event.get('venue') if event else None
        )

    def _new_credential(self, event_id: str, requester: str) -> Credential:
        issued_at = self.clock()
        return Credential(
            credential_id=secrets.token_hex(TOKEN_BYTES),
            nonce=secrets.token_hex(TOKEN_BYTES),
            event_id=event_id,
            issued_to=requester,
            issued_at=issued_at,
            expires_at=issued_at + self.ttl_seconds * 1000
        )

    def _check_event(self, event_id: str, requester: str) -> Optional[dict]:
        event = None
        if self.event_manager is not None:
            event = self.event_manager.get_event(event_id)
            if not event:
                raise InvalidRequest(
                    'Event not found. Cannot generate QR for non-existent event.',
                    'event_not_found', 404
                )
            if not self.event_manager.is_event_active(event):
                raise InvalidRequest(
                    'Event is not scheduled for today. Cannot generate QR.',
                    'event_not_active', 409
                )

        if self.attendance_manager is not None:
            if self.attendance_manager.has_attendance(str(requester), event_id):
                raise InvalidRequest(
                    'Attendance already marked for this event.',
                    'already_attended', 409
                )
        return event
