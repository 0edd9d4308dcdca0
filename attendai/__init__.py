# AttendAI QR Attendance Service - App Package
"""
Main application package for the AttendAI QR attendance service.
This package contains the credential, event and attendance modules used by
the Flask application in app.py.
"""

__version__ = "1.0.0"
__author__ = "AttendAI Team"
__description__ = "Time-boxed, single-use QR credentials for event attendance"

# Import core components for easy access
from .modules.database_manager import DatabaseManager
from .modules.qr_generator import QRGenerator
from .modules.attendance_manager import AttendanceManager, AttendanceRecord
from .modules.notification_system import NotificationSystem
from .modules.auth_manager import AuthManager
from .modules.event_manager import EventManager
from .modules.credential_store import (
    Credential,
    CredentialStore,
    InMemoryCredentialStore,
    SQLiteCredentialStore,
)
from .modules.credential_issuer import CredentialIssuer, IssuedCredential
from .modules.credential_validator import CredentialValidator, ValidationResult
from .modules.display_guard import DisplayGuard

__all__ = [
    'DatabaseManager',
    'QRGenerator',
    'AttendanceManager',
    'AttendanceRecord',
    'NotificationSystem',
    'AuthManager',
    'EventManager',
    'Credential',
    'CredentialStore',
    'InMemoryCredentialStore',
    'SQLiteCredentialStore',
    'CredentialIssuer',
    'IssuedCredential',
    'CredentialValidator',
    'ValidationResult',
    'DisplayGuard'
]
