"""
Notification System Module - AttendAI QR Attendance Service

This module delivers attendance notifications by email. After a successful
scan the instructor (or attendance authority) receives a confirmation;
when a consumed credential fails to produce an attendance record the
operators receive an alert so the record can be added by hand.

Delivery runs on a background queue and never influences the outcome of a
scan. When email is not configured, messages are logged and skipped.

Features:
- Attendance confirmation emails
- Operator alerts for records needing reconciliation
- jinja2 email templates (HTML and plain text)
- Background delivery queue
- Recent notification history for the admin views
"""

import smtplib
from email.mime.text import MIMEText
from email.mime.multipart import MIMEMultipart
from datetime import datetime
from typing import Dict, List, Any, Optional
import logging
import threading
import uuid
from collections import deque
from queue import Queue
from dataclasses import dataclass, asdict, field
from jinja2 import Template
import ssl


@dataclass
class NotificationData:
    """Data structure for notification information."""
    id: str
    type: str
    title: str
    message: str
    severity: str
    recipient: Optional[str]
    data: Dict[str, Any] = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now().isoformat())
    is_sent: bool = False


ATTENDANCE_EMAIL_TEMPLATE = """
<html>
<body style="font-family: Arial, sans-serif; line-height: 1.6; color: #333;">
    <h2 style="color: #28a745;">Attendance Confirmation</h2>
    <p>Attendance has been successfully marked for the following event:</p>

    <p><strong>Student:</strong> {{ data.userName or data.userId }}</p>
    <p><strong>Student ID:</strong> {{ data.userId }}</p>
    <p><strong>Event:</strong> {{ data.eventTitle or data.eventId }}</p>
    {% if data.eventVenue %}<p><strong>Venue:</strong> {{ data.eventVenue }}</p>{% endif %}
    <p><strong>Scan Time:</strong> {{ scan_time }}</p>
    <p><strong>Scanned By:</strong> {{ data.scannedBy }}</p>

    <p style="background-color: #dcfce7; padding: 10px; border-left: 4px solid #22c55e;">
        <strong>Status:</strong> Attendance verified and recorded successfully.
    </p>
    <hr>
    <p style="color: #6c757d; font-size: 12px;">
        This is an automated notification from {{ system_name }}.
    </p>
</body>
</html>
"""

ATTENDANCE_TEXT_TEMPLATE = """Attendance Marked Successfully

Student ID: {{ data.userId }}
Event: {{ data.eventTitle or data.eventId }}
Scan Time: {{ scan_time }}
Scanned By: {{ data.scannedBy }}

This is an automated notification from {{ system_name }}.
"""

SYSTEM_ALERT_TEMPLATE = """
<html>
<body style="font-family: Arial, sans-serif;">
    <h2 style="color: {% if notification.severity == 'error' %}#dc3545{% else %}#007bff{% endif %};">
        {{ notification.title }}
    </h2>
    <p>{{ notification.message }}</p>
    {% if notification.data %}
    <table style="border-collapse: collapse;">
        {% for key, value in notification.data.items() %}
        <tr><td style="padding: 4px 12px 4px 0;"><strong>{{ key }}</strong></td><td>{{ value }}</td></tr>
        {% endfor %}
    </table>
    {% endif %}
    <hr>
    <p style="color: #6c757d; font-size: 12px;">
        Generated by {{ system_name }} on {{ notification.created_at }}
    </p>
</body>
</html>
"""


class NotificationSystem:
    """
    Queues and delivers attendance notifications.
    """

    NOTIFICATION_TYPES = {
        'ATTENDANCE_SCAN': 'attendance_scan',
        'SYSTEM_ALERT': 'system_alert'
    }

    def __init__(self, email_config: Optional[Dict[str, Any]] = None,
                 authority_email: Optional[str] = None,
                 operator_email: Optional[str] = None,
                 email_enabled: bool = False,
                 system_name: str = 'AttendAI Attendance System',
                 async_delivery: bool = True,
                 history_size: int = 100):
        """
        Initialize the notification system.

        Args:
            email_config (dict): smtp_server, smtp_port, username, password,
                use_tls, sender
            authority_email (str): Recipient of attendance confirmations
            operator_email (str): Recipient of reconciliation alerts
            email_enabled (bool): Master switch for email delivery
            system_name (str): Name shown in email footers
            async_delivery (bool): Deliver on a background thread
            history_size (int): Number of recent notifications kept in memory
        """
        self.logger = logging.getLogger(__name__)

        self.email_config = {
            'smtp_server': 'localhost',
            'smtp_port': 587,
            'username': '',
            'password': '',
            'use_tls': True,
            'sender': 'noreply@attendai.local'
        }
        if email_config:
            self.email_config.update(email_config)

        self.authority_email = authority_email
        self.operator_email = operator_email or authority_email
        self.email_enabled = email_enabled
        self.system_name = system_name

        self.history = deque(maxlen=history_size)
        self._history_lock = threading.Lock()

        self.notification_queue = Queue()
        self.async_delivery = async_delivery
        self.notification_processor = None
        if async_delivery:
            self.notification_processor = threading.Thread(
                target=self._process_notifications,
                daemon=True
            )
            self.notification_processor.start()

        self.logger.info("Notification system initialized")

    def send_attendance_notification(self, attendance_data: Dict[str, Any]) -> bool:
        """
        Queue an attendance confirmation for the attendance authority.

        Args:
            attendance_data (Dict[str, Any]): Attendance record fields
                (attendanceId, eventId, userId, scanTime, scannedBy, ...)

        Returns:
            bool: True when queued
        """
        notification = NotificationData(
            id=f"attendance_{uuid.uuid4().hex}",
            type=self.NOTIFICATION_TYPES['ATTENDANCE_SCAN'],
            title=f"Attendance Marked: {attendance_data.get('eventTitle') or attendance_data.get('eventId')}",
            message=f"Attendance recorded for {attendance_data.get('userId')}",
            severity='success',
            recipient=self.authority_email,
            data=dict(attendance_data)
        )
        self._enqueue(notification)
        return True

    def send_system_alert(self, title: str, message: str, severity: str = 'info',
                          recipient: str = None, additional_data: Dict[str, Any] = None) -> bool:
        """
        Queue a system alert for operators.

        Args:
            title (str): Alert title
            message (str): Alert message
            severity (str): info, warning or error
            recipient (str): Overrides the operator address
            additional_data (Dict[str, Any]): Details shown in the alert

        Returns:
            bool: True when queued
        """
        notification = NotificationData(
            id=f"system_{uuid.uuid4().hex}",
            type=self.NOTIFICATION_TYPES['SYSTEM_ALERT'],
            title=title,
            message=message,
            severity=severity,
            recipient=recipient or self.operator_email,
            data=additional_data or {}
        )
        if severity == 'error':
            self.logger.critical(f"System Error Alert: {message}")
        self._enqueue(notification)
        return True

    def get_recent_notifications(self, limit: int = 10) -> List[Dict[str, Any]]:
        """Most recent notifications, newest first."""
        with self._history_lock:
            items = list(self.history)
        return [asdict(n) for n in reversed(items)][:limit]

    def _enqueue(self, notification: NotificationData) -> None:
        with self._history_lock:
            self.history.append(notification)
        if self.async_delivery:
            self.notification_queue.put(notification)
        else:
            self._handle_notification(notification)

    def _process_notifications(self) -> None:
        """Background thread to process notification queue."""
        while True:
            notification = self.notification_queue.get()
            try:
                if notification is None:  # Shutdown signal
                    break
                self._handle_notification(notification)
            except Exception as e:
                self.logger.error(f"Error processing notification: {str(e)}")
            finally:
                self.notification_queue.task_done()

    def _handle_notification(self, notification: NotificationData) -> None:
        self.logger.info(f"Processing notification: {notification.title}")

        if not notification.recipient:
            self.logger.info(f"No recipient for notification {notification.id}, not emailed")
            return
        if not self._is_email_configured():
            self.logger.info(
                f"Email not configured, skipping '{notification.title}' to {notification.recipient}"
            )
            return

        notification.is_sent = self._send_email_notification(notification)

    def render_email(self, notification: NotificationData) -> MIMEMultipart:
        """
        Build the email message for a notification.

        Args:
            notification (NotificationData): Notification to render

        Returns:
            MIMEMultipart: Message with plain text and HTML parts
        """
        msg = MIMEMultipart('alternative')
        msg['From'] = self.email_config['sender']
        msg['To'] = notification.recipient
        msg['Subject'] = f"{self.system_name} - {notification.title}"

        if notification.type == self.NOTIFICATION_TYPES['ATTENDANCE_SCAN']:
            scan_time = notification.data.get('scanTime')
            if isinstance(scan_time, (int, float)):
                scan_time = datetime.fromtimestamp(scan_time / 1000).strftime('%Y-%m-%d %H:%M:%S')
            context = {
                'data': notification.data,
                'scan_time': scan_time,
                'system_name': self.system_name
            }
            text_body = Template(ATTENDANCE_TEXT_TEMPLATE).render(**context)
            html_body = Template(ATTENDANCE_EMAIL_TEMPLATE).render(**context)
        else:
            text_body = f"{notification.title}\n\n{notification.message}\n\nGenerated at: {notification.created_at}\n"
            html_body = Template(SYSTEM_ALERT_TEMPLATE).render(
                notification=asdict(notification),
                system_name=self.system_name
            )

        msg.attach(MIMEText(text_body, 'plain'))
        msg.attach(MIMEText(html_body, 'html'))
        return msg

    def _send_email_notification(self, notification: NotificationData) -> bool:
        """
        Send email notification.

        Args:
            notification (NotificationData): Notification to send

        Returns:
            bool: Success status
        """
        try:
            msg = self.render_email(notification)

            with smtplib.SMTP(self.email_config['smtp_server'], self.email_config['smtp_port'],
                              timeout=10) as server:
                if self.email_config['use_tls']:
                    context = ssl.create_default_context()
                    server.starttls(context=context)
                if self.email_config['username']:
                    server.login(self.email_config['username'], self.email_config['password'])
                server.send_message(msg)

            self.logger.info(f"Email notification sent to {notification.recipient}")
            return True

        except (smtplib.SMTPException, OSError) as e:
            self.logger.error(f"Failed to send email notification: {str(e)}")
            return False

    def _is_email_configured(self) -> bool:
        """Check if email delivery is enabled and has a server."""
        return bool(self.email_enabled and self.email_config['smtp_server'])

    def shutdown(self) -> None:
        """Stop the background processor after the queue drains."""
        if self.notification_processor and self.notification_processor.is_alive():
            self.notification_queue.put(None)
            self.notification_processor.join(timeout=5)
        self.logger.info("Notification system shut down")
