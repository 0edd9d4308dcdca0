"""
Authentication Manager Module - AttendAI QR Attendance Service

This module handles the identities that request and scan attendance
credentials. It provides password authentication, role checks and a
simple login lockout.

Features:
- User authentication with werkzeug password hashes
- Role-based permissions (student, faculty, admin)
- Login attempt tracking and lockout
- User account creation and lookup
"""

from werkzeug.security import generate_password_hash, check_password_hash
from datetime import datetime, timedelta
from typing import Dict, List, Any, Optional
import logging
import re
import threading


class AuthManager:
    """
    Authentication and authorization for the attendance service.
    """

    ROLES = {
        'STUDENT': 'student',
        'FACULTY': 'faculty',
        'ADMIN': 'admin'
    }

    PERMISSIONS = {
        'admin': [
            'request_credential', 'scan_credentials', 'manage_events',
            'view_attendance', 'reconcile_attendance'
        ],
        'faculty': [
            'request_credential', 'scan_credentials', 'manage_events', 'view_attendance'
        ],
        'student': [
            'request_credential'
        ]
    }

    def __init__(self, database_manager, max_login_attempts: int = 5,
                 lockout_minutes: int = 15, password_min_length: int = 8):
        """
        Initialize the authentication manager with database connection.

        Args:
            database_manager: Database manager instance
            max_login_attempts (int): Failures before an account is locked
            lockout_minutes (int): Lockout duration
            password_min_length (int): Minimum password length for new users
        """
        self.db = database_manager
        self.logger = logging.getLogger(__name__)

        self.security_config = {
            'password_min_length': password_min_length,
            'max_login_attempts': max_login_attempts,
            'lockout_duration_minutes': lockout_minutes
        }

        # Failed login attempts tracking
        self.failed_attempts = {}
        self._attempts_lock = threading.Lock()

    def authenticate_user(self, username: str, password: str,
                          ip_address: str = None) -> Optional[Dict[str, Any]]:
        """
        Authenticate user with username and password.

        Args:
            username (str): Username
            password (str): Password
            ip_address (str): Client IP address

        Returns:
            Dict[str, Any]: User information if authenticated, None otherwise
        """
        if self._is_account_locked(username):
            self.logger.warning(f"Authentication attempt for locked account: {username}")
            return None

        user = self.db.execute_query(
            "SELECT * FROM users WHERE username = ? AND is_active = 1",
            (username,),
            fetch_all=False
        )

        if not user or not check_password_hash(user['password_hash'], password):
            self._record_failed_attempt(username, ip_address)
            self.logger.warning(f"Authentication failed for {username} from {ip_address}")
            return None

        self._clear_failed_attempts(username)
        self.logger.info(f"User authenticated successfully: {username}")
        return self._public_user(user)

    def create_user(self, username: str, password: str, full_name: str,
                    email: str = None, role: str = 'student') -> Dict[str, Any]:
        """
        Create a new user account.

        Args:
            username (str): Username
            password (str): Password
            full_name (str): Full name
            email (str): Email address
            role (str): One of student, faculty, admin

        Returns:
            Dict[str, Any]: Creation result
        """
        validation_result = self._validate_user_data(username, password, email, role)
        if not validation_result['valid']:
            return {
                'success': False,
                'error': validation_result['error']
            }

        existing_user = self.db.execute_query(
            "SELECT id FROM users WHERE username = ? OR (email IS NOT NULL AND email = ?)",
            (username, email),
            fetch_all=False
        )
        if existing_user:
            return {
                'success': False,
                'error': 'Username or email already exists'
            }

        user_id = self.db.execute_update(
            """INSERT INTO users (username, password_hash, full_name, email, role)
               VALUES (?, ?, ?, ?, ?)""",
            (username, generate_password_hash(password), full_name, email, role)
        )

        self.logger.info(f"User created successfully: {username} (ID: {user_id})")
        return {
            'success': True,
            'user_id': user_id,
            'username': username,
            'message': 'User account created successfully'
        }

    def get_user_permissions(self, role: str) -> List[str]:
        return self.PERMISSIONS.get(role, self.PERMISSIONS['student'])

    def has_permission(self, role: str, permission: str) -> bool:
        """
        Check if a role has a specific permission.

        Args:
            role (str): User role
            permission (str): Permission to check

        Returns:
            bool: True if the role has the permission
        """
        return permission in self.get_user_permissions(role)

    def _public_user(self, user: Dict[str, Any]) -> Dict[str, Any]:
        return {
            'id': user['id'],
            'username': user['username'],
            'full_name': user['full_name'],
            'email': user['email'],
            'role': user['role'],
            'permissions': self.get_user_permissions(user['role'])
        }

    def _validate_user_data(self, username: str, password: str, email: str,
                            role: str) -> Dict[str, Any]:
        if not username or len(username) < 3:
            return {'valid': False, 'error': 'Username must be at least 3 characters long'}

        if not re.match(r'^[a-zA-Z0-9_-]+$', username):
            return {'valid': False, 'error': 'Username can only contain letters, numbers, hyphens, and underscores'}

        if not password or len(password) < self.security_config['password_min_length']:
            return {'valid': False, 'error': f'Password must be at least {self.security_config["password_min_length"]} characters long'}

        if email and not re.match(r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$', email):
            return {'valid': False, 'error': 'Invalid email address format'}

        if role not in self.ROLES.values():
            return {'valid': False, 'error': f'Unknown role: {role}'}

        return {'valid': True}

    def _is_account_locked(self, username: str) -> bool:
        with self._attempts_lock:
            attempt_data = self.failed_attempts.get(username)
            if not attempt_data:
                return False

            lockout = timedelta(minutes=self.security_config['lockout_duration_minutes'])
            if datetime.now() - attempt_data['last_attempt'] > lockout:
                del self.failed_attempts[username]
                return False

            return attempt_data['count'] >= self.security_config['max_login_attempts']

    def _record_failed_attempt(self, username: str, ip_address: str = None) -> None:
        with self._attempts_lock:
            attempt_data = self.failed_attempts.setdefault(
                username, {'count': 0, 'last_attempt': datetime.now()}
            )
            attempt_data['count'] += 1
            attempt_data['last_attempt'] = datetime.now()
            count = attempt_data['count']

        self.logger.warning(f"Failed login attempt {count} for {username} from {ip_address}")

    def _clear_failed_attempts(self, username: str) -> None:
        with self._attempts_lock:
            self.failed_attempts.pop(username, None)
