"""
Event Manager Module - AttendAI QR Attendance Service

This module handles the events attendance credentials are issued for.
An event is open for attendance only on the day it is scheduled.

Features:
- Event creation and deactivation
- Event lookup
- Today's events listing
- Active-event check used at credential issuance
"""

from datetime import date, datetime
from typing import Dict, List, Any, Optional
import logging
import re
import uuid

TIME_PATTERN = re.compile(r'^([01]\d|2[0-3]):[0-5]\d$')


class EventManager:
    """
    Event administration for the attendance service.
    """

    def __init__(self, database_manager):
        """
        Initialize the event manager with database connection.

        Args:
            database_manager: Database manager instance
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)
        self.logger.info("Event manager initialized")

    def create_event(self, title: str, event_date: str, venue: str = None,
                     description: str = None, start_time: str = None,
                     end_time: str = None, created_by: str = None,
                     event_id: str = None) -> Dict[str, Any]:
        """
        Create a new event.

        Args:
            title (str): Event title
            event_date (str): Date the event takes place (YYYY-MM-DD)
            venue (str): Venue name
            description (str): Free text description
            start_time (str): Start time (HH:MM)
            end_time (str): End time (HH:MM)
            created_by (str): ID of user creating the event
            event_id (str): Explicit identifier; generated when omitted

        Returns:
            Dict[str, Any]: Creation result
        """
        title = (title or '').strip()
        if not title or not event_date:
            return {
                'success': False,
                'error': 'Event title and date are required',
                'error_type': 'validation_error'
            }

        try:
            parsed_date = datetime.strptime(event_date, '%Y-%m-%d').date()
        except (TypeError, ValueError):
            return {
                'success': False,
                'error': 'Event date must be in YYYY-MM-DD format',
                'error_type': 'validation_error'
            }

        for label, value in (('start_time', start_time), ('end_time', end_time)):
            if value and not TIME_PATTERN.match(value):
                return {
                    'success': False,
                    'error': f'{label} must be in HH:MM format',
                    'error_type': 'validation_error'
                }

        if start_time and end_time and end_time <= start_time:
            return {
                'success': False,
                'error': 'Event must end after it starts',
                'error_type': 'validation_error'
            }

        event_id = event_id or uuid.uuid4().hex

        if self.get_event(event_id, include_inactive=True):
            return {
                'success': False,
                'error': 'Event ID already exists',
                'error_type': 'duplicate_event'
            }

        self.db.execute_update(
            """INSERT INTO events (event_id, title, venue, description, event_date,
                                   start_time, end_time, created_by)
               VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
            (event_id, title, venue, description, parsed_date.isoformat(),
             start_time, end_time, created_by)
        )

        self.logger.info(f"Event created successfully: {title} (ID: {event_id})")
        return {
            'success': True,
            'event_id': event_id,
            'event': self.get_event(event_id)
        }

    def get_event(self, event_id: str, include_inactive: bool = False) -> Optional[Dict[str, Any]]:
        """
        Get an event by its identifier.

        Args:
            event_id (str): Event ID
            include_inactive (bool): Also return deactivated events

        Returns:
            Dict[str, Any]: Event information or None
        """
        query = "SELECT * FROM events WHERE event_id = ?"
        if not include_inactive:
            query += " AND is_active = 1"
        return self.db.execute_query(query, (event_id,), fetch_all=False)

    def get_todays_events(self, today: date = None) -> List[Dict[str, Any]]:
        """
        Get active events scheduled for today, ordered by start time.

        Args:
            today (date): Override for the current date

        Returns:
            List[Dict[str, Any]]: Today's events
        """
        today = today or date.today()
        return self.db.execute_query(
            """SELECT * FROM events
               WHERE event_date = ? AND is_active = 1
               ORDER BY start_time, title""",
            (today.isoformat(),)
        )

    def is_event_active(self, event: Dict[str, Any], today: date = None) -> bool:
        """An event accepts attendance when it is active and scheduled for today."""
        if not event or not event.get('is_active'):
            return False
        today = today or date.today()
        return event.get('event_date') == today.isoformat()

    def deactivate_event(self, event_id: str, deactivated_by: str = None) -> bool:
        """
        Deactivate an event. Outstanding credentials for it can no longer be issued.

        Args:
            event_id (str): Event ID
            deactivated_by (str): ID of user performing the deactivation

        Returns:
            bool: True if an event was deactivated
        """
        affected = self.db.execute_update(
            "UPDATE events SET is_active = 0 WHERE event_id = ? AND is_active = 1",
            (event_id,)
        )
        if affected:
            self.logger.info(f"Event {event_id} deactivated by {deactivated_by}")
            return True

        self.logger.warning(f"No active event found with ID: {event_id}")
        return False
