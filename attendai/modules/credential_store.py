"""
Credential Store Module - AttendAI QR Attendance Service

Durable record of issued attendance credentials and their consumption state.

The store is the only owner of credential state. New rows enter through
create(); the single state transition (active -> consumed) happens through
try_consume(), which is a compare-and-set carried out by the backing store
itself so that concurrent scans of the same credential resolve to exactly
one winner.

Features:
- Credential data class with the persisted record shape
- SQLite-backed store using a conditional UPDATE as the compare-and-set
- In-memory store for tests and single-process development
- Purging of expired, never-scanned credentials
"""

import sqlite3
import logging
import threading
from dataclasses import dataclass, asdict, replace
from typing import Dict, List, Optional

from attendai.modules.errors import ConsumeOutcome, DuplicateId, StoreUnavailable

STATE_ACTIVE = 'active'
STATE_CONSUMED = 'consumed'
STATE_EXPIRED = 'expired'  # derived, never persisted

PAYLOAD_SEPARATOR = ':'


@dataclass(frozen=True)
class Credential:
    """An issued attendance credential. Timestamps are epoch milliseconds."""
    credential_id: str
    nonce: str
    event_id: str
    issued_to: str
    issued_at: int
    expires_at: int
    state: str = STATE_ACTIVE
    consumed_at: Optional[int] = None
    consumed_by: Optional[str] = None

    @property
    def payload(self) -> str:
        """The externally presented form, `<credential_id>:<nonce>`."""
        return f"{self.credential_id}{PAYLOAD_SEPARATOR}{self.nonce}"

    def is_expired(self, now: int) -> bool:
        return now > self.expires_at

    def effective_state(self, now: int) -> str:
        """Stored state, or `expired` for an active credential past its expiry."""
        if self.state == STATE_ACTIVE and self.is_expired(now):
            return STATE_EXPIRED
        return self.state

    def to_dict(self) -> Dict[str, object]:
        """Persisted record shape, camelCased as exposed over the API."""
        return {
            'credentialId': self.credential_id,
            'nonce': self.nonce,
            'eventId': self.event_id,
            'issuedTo': self.issued_to,
            'issuedAt': self.issued_at,
            'expiresAt': self.expires_at,
            'state': self.state,
            'consumedAt': self.consumed_at,
            'consumedBy': self.consumed_by,
        }

    @classmethod
    def from_row(cls, row: Dict[str, object]) -> 'Credential':
        return cls(
            credential_id=row['credential_id'],
            nonce=row['nonce'],
            event_id=row['event_id'],
            issued_to=row['issued_to'],
            issued_at=int(row['issued_at']),
            expires_at=int(row['expires_at']),
            state=row['state'],
            consumed_at=row.get('consumed_at'),
            consumed_by=row.get('consumed_by'),
        )


class CredentialStore:
    """
    Narrow interface every credential store implements.

    Only create() and try_consume() may mutate credential state;
    purge_expired() removes active credentials nobody can use any more.
    """

    def create(self, credential: Credential) -> None:
        """Insert a new credential. Raises DuplicateId if the id exists."""
        raise NotImplementedError

    def get(self, credential_id: str) -> Optional[Credential]:
        """Return the credential, or None when it does not exist."""
        raise NotImplementedError

    def try_consume(self, credential_id: str, consumed_by: str, now: int) -> str:
        """
        Atomically transition a credential from active to consumed.

        Returns:
            str: ConsumeOutcome.SUCCESS, ALREADY_CONSUMED or NOT_FOUND
        """
        raise NotImplementedError

    def purge_expired(self, now: int, limit: int = 500) -> int:
        """Delete up to `limit` active credentials expired before `now`."""
        raise NotImplementedError

    def list_consumed(self, limit: int = 100) -> List[Credential]:
        """Most recently consumed credentials, newest first."""
        raise NotImplementedError


class SQLiteCredentialStore(CredentialStore):
    """
    Credential store on top of the DatabaseManager.

    try_consume relies on `UPDATE ... WHERE state = 'active'`: SQLite takes
    the write lock for the statement, so of several concurrent callers only
    one sees a changed row.
    """

    def __init__(self, database_manager):
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def create(self, credential: Credential) -> None:
        try:
            self.db.execute_update(
                """INSERT INTO credentials
                   (credential_id, nonce, event_id, issued_to, issued_at,
                    expires_at, state, consumed_at, consumed_by)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)""",
                (credential.credential_id, credential.nonce, credential.event_id,
                 credential.issued_to, credential.issued_at, credential.expires_at,
                 credential.state, credential.consumed_at, credential.consumed_by)
            )
        except sqlite3.IntegrityError:
            raise DuplicateId(credential.credential_id)
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Failed to create credential: {str(e)}", cause=e)

    def get(self, credential_id: str) -> Optional[Credential]:
        try:
            row = self.db.execute_query(
                "SELECT * FROM credentials WHERE credential_id = ?",
                (credential_id,),
                fetch_all=False
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Failed to read credential: {str(e)}", cause=e)
        return Credential.from_row(row) if row else None

    def try_consume(self, credential_id: str, consumed_by: str, now: int) -> str:
        try:
            changed = self.db.execute_update(
                """UPDATE credentials
                   SET state = ?, consumed_at = ?, consumed_by = ?
                   WHERE credential_id = ? AND state = ?""",
                (STATE_CONSUMED, now, consumed_by, credential_id, STATE_ACTIVE)
            )
            if changed == 1:
                return ConsumeOutcome.SUCCESS

            exists = self.db.execute_query(
                "SELECT 1 AS present FROM credentials WHERE credential_id = ?",
                (credential_id,),
                fetch_all=False
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Failed to consume credential: {str(e)}", cause=e)

        return ConsumeOutcome.ALREADY_CONSUMED if exists else ConsumeOutcome.NOT_FOUND

    def purge_expired(self, now: int, limit: int = 500) -> int:
        try:
            deleted = self.db.execute_update(
                """DELETE FROM credentials WHERE credential_id IN (
                       SELECT credential_id FROM credentials
                       WHERE state = ? AND expires_at < ?
                       LIMIT ?)""",
                (STATE_ACTIVE, now, limit)
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Failed to purge credentials: {str(e)}", cause=e)

        self.logger.info(f"Purged {deleted} expired credentials")
        return deleted

    def list_consumed(self, limit: int = 100) -> List[Credential]:
        try:
            rows = self.db.execute_query(
                """SELECT * FROM credentials WHERE state = ?
                   ORDER BY consumed_at DESC LIMIT ?""",
                (STATE_CONSUMED, limit)
            )
        except sqlite3.Error as e:
            raise StoreUnavailable(f"Failed to list credentials: {str(e)}", cause=e)
        return [Credential.from_row(row) for row in rows]


class InMemoryCredentialStore(CredentialStore):
    """Process-local store. The lock gives try_consume its atomicity."""

    def __init__(self):
        self._credentials: Dict[str, Credential] = {}
        self._lock = threading.Lock()
        self.logger = logging.getLogger(__name__)

    def create(self, credential: Credential) -> None:
        with self._lock:
            if credential.credential_id in self._credentials:
                raise DuplicateId(credential.credential_id)
            self._credentials[credential.credential_id] = credential

    def get(self, credential_id: str) -> Optional[Credential]:
        with self._lock:
            return self._credentials.get(credential_id)

    def try_consume(self, credential_id: str, consumed_by: str, now: int) -> str:
        with self._lock:
            credential = self._credentials.get(credential_id)
            if credential is None:
                return ConsumeOutcome.NOT_FOUND
            if credential.state != STATE_ACTIVE:
                return ConsumeOutcome.ALREADY_CONSUMED
            self._credentials[credential_id] = replace(
                credential,
                state=STATE_CONSUMED,
                consumed_at=now,
                consumed_by=consumed_by
            )
            return ConsumeOutcome.SUCCESS

    def purge_expired(self, now: int, limit: int = 500) -> int:
        with self._lock:
            expired = [
                cid for cid, credential in self._credentials.items()
                if credential.state == STATE_ACTIVE and credential.expires_at < now
            ][:limit]
            for cid in expired:
                del self._credentials[cid]
        self.logger.info(f"Purged {len(expired)} expired credentials")
        return len(expired)

    def list_consumed(self, limit: int = 100) -> List[Credential]:
        with self._lock:
            consumed = [c for c in self._credentials.values() if c.state == STATE_CONSUMED]
        consumed.sort(key=lambda c: c.consumed_at or 0, reverse=True)
        return consumed[:limit]

    def snapshot(self) -> List[Dict[str, object]]:
        """Plain copies of every stored credential, for inspection in tests."""
        with self._lock:
            return [asdict(c) for c in self._credentials.values()]
