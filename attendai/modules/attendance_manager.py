"""
Attendance Manager Module - AttendAI QR Attendance Service

This module owns attendance records: the rows written once a scanned
credential has been consumed. Records are immutable after insert.

Features:
- Attendance recording (one row per consumed credential)
- Prior-attendance check used at credential issuance
- Attendance history by event and by user
- Event attendance summary
- Reconciliation of consumed credentials that never got a record
"""

from datetime import datetime
import logging
import uuid
from dataclasses import dataclass
from typing import Dict, List, Optional, Any


@dataclass(frozen=True)
class AttendanceRecord:
    """Data class for attendance record structure. scan_time is epoch milliseconds."""
    attendance_id: str
    event_id: str
    user_id: str
    scan_time: int
    scanned_by: str
    credential_id: Optional[str] = None

    @classmethod
    def new(cls, event_id: str, user_id: str, scan_time: int, scanned_by: str,
            credential_id: str = None) -> 'AttendanceRecord':
        return cls(
            attendance_id=uuid.uuid4().hex,
            event_id=event_id,
            user_id=user_id,
            scan_time=scan_time,
            scanned_by=scanned_by,
            credential_id=credential_id
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'attendanceId': self.attendance_id,
            'eventId': self.event_id,
            'userId': self.user_id,
            'scanTime': self.scan_time,
            'scannedBy': self.scanned_by,
        }


class AttendanceManager:
    """
    Attendance record sink and history queries.
    """

    def __init__(self, database_manager):
        """
        Initialize the attendance manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

    def record_attendance(self, record: AttendanceRecord) -> str:
        """
        Insert an attendance record.

        Args:
            record (AttendanceRecord): Record to store

        Returns:
            str: The attendance ID

        Raises:
            sqlite3.Error: the row could not be written
        """
        self.db.execute_update(
            """INSERT INTO attendance
               (attendance_id, event_id, user_id, scan_time, scanned_by, credential_id)
               VALUES (?, ?, ?, ?, ?, ?)""",
            (record.attendance_id, record.event_id, record.user_id,
             record.scan_time, record.scanned_by, record.credential_id)
        )
        self.logger.info(
            f"Attendance recorded: user {record.user_id}, event {record.event_id}, "
            f"scanned by {record.scanned_by}"
        )
        return record.attendance_id

    def has_attendance(self, user_id: str, event_id: str) -> bool:
        result = self.db.execute_query(
            "SELECT 1 AS present FROM attendance WHERE user_id = ? AND event_id = ? LIMIT 1",
            (user_id, event_id),
            fetch_all=False
        )
        return result is not None

    def has_record_for_credential(self, credential_id: str) -> bool:
        result = self.db.execute_query(
            "SELECT 1 AS present FROM attendance WHERE credential_id = ?",
            (credential_id,),
            fetch_all=False
        )
        return result is not None

    def get_event_attendance(self, event_id: str) -> List[Dict[str, Any]]:
        """
        Get attendance records for an event, latest first.

        Args:
            event_id (str): Event ID

        Returns:
            List[Dict[str, Any]]: Attendance records with attendee names
        """
        return self.db.execute_query(
            """SELECT a.attendance_id, a.event_id, a.user_id, a.scan_time, a.scanned_by,
                      u.full_name AS user_name
               FROM attendance a
               LEFT JOIN users u ON CAST(u.id AS TEXT) = a.user_id
               WHERE a.event_id = ?
               ORDER BY a.scan_time DESC""",
            (event_id,)
        )

    def get_user_attendance(self, user_id: str, limit: int = 50) -> List[Dict[str, Any]]:
        """
        Get a user's attendance history with event details.

        Args:
            user_id (str): User ID
            limit (int): Maximum number of records

        Returns:
            List[Dict[str, Any]]: Attendance history, latest first
        """
        return self.db.execute_query(
            """SELECT a.attendance_id, a.event_id, a.scan_time, a.scanned_by,
                      e.title AS event_title, e.venue AS event_venue
               FROM attendance a
               LEFT JOIN events e ON e.event_id = a.event_id
               WHERE a.user_id = ?
               ORDER BY a.scan_time DESC
               LIMIT ?""",
            (user_id, limit)
        )

    def get_recent_attendance(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent attendance records across all events."""
        return self.db.execute_query(
            """SELECT a.attendance_id, a.event_id, a.user_id, a.scan_time, a.scanned_by,
                      e.title AS event_title
               FROM attendance a
               LEFT JOIN events e ON e.event_id = a.event_id
               ORDER BY a.scan_time DESC
               LIMIT ?""",
            (limit,)
        )

    def get_event_summary(self, event_id: str) -> Dict[str, Any]:
        """
        Summarise attendance for an event.

        Args:
            event_id (str): Event ID

        Returns:
            Dict[str, Any]: Total scans, unique attendees, first and last scan
        """
        result = self.db.execute_query(
            """SELECT COUNT(*) AS total_scans,
                      COUNT(DISTINCT user_id) AS unique_attendees,
                      MIN(scan_time) AS first_scan,
                      MAX(scan_time) AS last_scan
               FROM attendance WHERE event_id = ?""",
            (event_id,),
            fetch_all=False
        )
        return {
            'event_id': event_id,
            'total_scans': result['total_scans'] if result else 0,
            'unique_attendees': result['unique_attendees'] if result else 0,
            'first_scan': result['first_scan'] if result else None,
            'last_scan': result['last_scan'] if result else None,
            'generated_at': datetime.now().isoformat()
        }

    def get_unreconciled_credentials(self, credential_store, limit: int = 100) -> List[Dict[str, Any]]:
        """
        Consumed credentials with no attendance record.

        These are scans where consumption committed but the record write
        failed; an operator has to add the attendance by hand.

        Args:
            credential_store: Store to read consumed credentials from
            limit (int): How many recent consumptions to inspect

        Returns:
            List[Dict[str, Any]]: Credential records needing reconciliation
        """
        missing = [
            {key: value for key, value in credential.to_dict().items() if key != 'nonce'}
            for credential in credential_store.list_consumed(limit)
            if not self.has_record_for_credential(credential.credential_id)
        ]
        if missing:
            self.logger.warning(f"{len(missing)} consumed credentials lack an attendance record")
        return missing
