"""
AttendAI QR Attendance Service - Main Application

This module is the entry point for the attendance credential service. It
builds the Flask application, wires the credential issuer, store and
validator together, and exposes the JSON API and pages used by students
(who display a QR credential) and faculty (who scan it).

Features:
- Time-boxed, single-use attendance credentials rendered as QR codes
- Scanner endpoint that validates a credential and records attendance
- Guarded display page with countdown
- Event administration and attendance views
- Reconciliation view for scans whose record failed to save
- CLI commands for database setup, user creation and credential purging
"""

from flask import Flask, render_template, request, jsonify, redirect, url_for, flash, session, current_app
from functools import wraps
import logging
import sqlite3
import click

from config import get_config, validate_config
from attendai.modules.database_manager import DatabaseManager
from attendai.modules.qr_generator import QRGenerator
from attendai.modules.attendance_manager import AttendanceManager
from attendai.modules.notification_system import NotificationSystem
from attendai.modules.auth_manager import AuthManager
from attendai.modules.event_manager import EventManager
from attendai.modules.credential_store import SQLiteCredentialStore
from attendai.modules.credential_issuer import CredentialIssuer, current_millis, format_payload
from attendai.modules.credential_validator import CredentialValidator
from attendai.modules.display_guard import DisplayGuard
from attendai.modules.errors import InvalidRequest, RejectionReason, StoreUnavailable

logger = logging.getLogger(__name__)

SCANNER_ROLES = ('faculty', 'admin')


def create_app(config_name=None, **overrides):
    """
    Application factory.

    Args:
        config_name (str): One of development, testing, production; defaults
            to FLASK_ENV
        **overrides: Config values (upper case keys) or components to inject
            in place of the defaults: credential_store, clock, notifier

    Returns:
        Flask: Configured application
    """
    config_class = get_config(config_name)

    app = Flask(__name__,
                template_folder='attendai/templates',
                static_folder='attendai/static')
    app.config.from_object(config_class)
    app.config.update({key: value for key, value in overrides.items() if key.isupper()})

    # Configure logging
    logging.basicConfig(
        level=getattr(logging, str(app.config['LOG_LEVEL']).upper(), logging.INFO),
        format=app.config['LOG_FORMAT']
    )
    config_class.init_app(app)

    for problem in validate_config(app.config):
        logger.warning(f"Configuration problem: {problem}")

    # Initialize system components
    clock = overrides.get('clock') or current_millis
    db_manager = DatabaseManager(app.config['DATABASE_PATH'], timeout=app.config['DATABASE_TIMEOUT'])
    credential_store = overrides.get('credential_store') or SQLiteCredentialStore(db_manager)
    attendance_manager = AttendanceManager(db_manager)
    event_manager = EventManager(db_manager)
    notification_system = overrides.get('notifier') or NotificationSystem(
        email_config={
            'smtp_server': app.config['MAIL_SERVER'],
            'smtp_port': app.config['MAIL_PORT'],
            'username': app.config['MAIL_USERNAME'] or '',
            'password': app.config['MAIL_PASSWORD'] or '',
            'use_tls': app.config['MAIL_USE_TLS'],
            'sender': app.config['MAIL_DEFAULT_SENDER']
        },
        authority_email=app.config['ATTENDANCE_AUTHORITY_EMAIL'],
        operator_email=app.config['OPERATOR_EMAIL'],
        email_enabled=app.config['NOTIFICATIONS_EMAIL_ENABLED'],
        async_delivery=app.config['NOTIFICATIONS_ASYNC']
    )

    check_events = app.config['ATTENDANCE_CHECK_EVENTS']
    app.extensions['attendai'] = {
        'db': db_manager,
        'clock': clock,
        'credential_store': credential_store,
        'attendance_manager': attendance_manager,
        'event_manager': event_manager,
        'notification_system': notification_system,
        'auth_manager': AuthManager(
            db_manager,
            max_login_attempts=app.config['MAX_LOGIN_ATTEMPTS'],
            lockout_minutes=app.config['LOGIN_LOCKOUT_MINUTES'],
            password_min_length=app.config['PASSWORD_MIN_LENGTH']
        ),
        'qr_generator': QRGenerator(
            box_size=app.config['QR_CODE_BOX_SIZE'],
            border=app.config['QR_CODE_BORDER'],
            error_correction=app.config['QR_CODE_ERROR_CORRECT']
        ),
        'issuer': CredentialIssuer(
            credential_store,
            event_manager=event_manager if check_events else None,
            attendance_manager=attendance_manager if check_events else None,
            ttl_seconds=app.config['ATTENDANCE_QR_TTL_SECONDS'],
            clock=clock
        ),
        'validator': CredentialValidator(
            credential_store,
            attendance_manager,
            notifier=notification_system,
            clock=clock
        )
    }

    @app.teardown_appcontext
    def close_db_connection(exception=None):
        # Request threads are short-lived; release their connection with them
        db_manager.close_connection()

    register_routes(app)
    register_commands(app)

    logger.info(f"AttendAI application created with {config_class.__name__}")
    return app


def component(name):
    """Look up a wired component on the current application."""
    return current_app.extensions['attendai'][name]


def _wants_json():
    return request.path.startswith('/api/') or request.is_json


def login_required(f):
    """Decorator to require login for protected routes"""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        if 'user_id' not in session:
            if _wants_json():
                return jsonify({
                    'success': False,
                    'error': 'Authentication required',
                    'error_type': 'unauthenticated'
                }), 401
            flash('Please log in to access this page.', 'error')
            return redirect(url_for('login'))
        return f(*args, **kwargs)
    return decorated_function


def role_required(*roles):
    """Decorator to restrict a route to the given roles"""
    def decorator(f):
        @wraps(f)
        @login_required
        def decorated_function(*args, **kwargs):
            if session.get('role') not in roles:
                logger.warning(
                    f"User {session.get('username')} ({session.get('role')}) denied access to {request.path}"
                )
                if _wants_json():
                    return jsonify({
                        'success': False,
                        'error': 'You do not have permission to perform this action',
                        'error_type': 'forbidden'
                    }), 403
                flash('You do not have permission to access this page.', 'error')
                return redirect(url_for('index'))
            return f(*args, **kwargs)
        return decorated_function
    return decorator


def api_error_response(error, action):
    """
    Map an exception raised inside an API route to a JSON response.

    Args:
        error (Exception): The exception that was raised
        action (str): What the route was doing, for the log line

    Returns:
        tuple: (response, status code)
    """
    if isinstance(error, InvalidRequest):
        return jsonify(error.to_dict()), error.status_code

    if isinstance(error, (StoreUnavailable, sqlite3.OperationalError)):
        logger.error(f"{action} failed, store unavailable: {str(error)}")
        return jsonify({
            'success': False,
            'error': 'Attendance service is temporarily unavailable. Please try again.',
            'error_type': 'store_unavailable',
            'retryable': True
        }), 503

    logger.error(f"{action} error: {str(error)}")
    return jsonify({
        'success': False,
        'error': 'An internal error occurred',
        'error_type': 'internal_error'
    }), 500


def _current_requester():
    return str(session['user_id'])


def register_routes(app):
    """Attach page and API routes to the application."""

    @app.route('/')
    def index():
        """Send users to the page for their role"""
        if 'user_id' not in session:
            return redirect(url_for('login'))
        if session.get('role') in SCANNER_ROLES:
            return redirect(url_for('scanner'))
        return render_template('index.html', events=component('event_manager').get_todays_events())

    @app.route('/login', methods=['GET', 'POST'])
    def login():
        """User login page and authentication"""
        if request.method == 'GET':
            return render_template('login.html')

        data = request.get_json(silent=True) if request.is_json else request.form
        data = data or {}
        username = (data.get('username') or '').strip()
        password = data.get('password') or ''

        if not username or not password:
            if request.is_json:
                return jsonify({
                    'success': False,
                    'error': 'Username and password are required',
                    'error_type': 'invalid_request'
                }), 400
            flash('Please provide both username and password.', 'error')
            return render_template('login.html'), 400

        try:
            user = component('auth_manager').authenticate_user(username, password, request.remote_addr)
        except Exception as e:
            logger.error(f"Login error: {str(e)}")
            if request.is_json:
                return api_error_response(e, 'Login')
            flash('An error occurred during login. Please try again.', 'error')
            return render_template('login.html'), 500

        if not user:
            if request.is_json:
                return jsonify({
                    'success': False,
                    'error': 'Invalid username or password',
                    'error_type': 'invalid_credentials'
                }), 401
            flash('Invalid username or password.', 'error')
            return render_template('login.html'), 401

        session.clear()
        session['user_id'] = user['id']
        session['username'] = user['username']
        session['role'] = user['role']
        session['full_name'] = user['full_name']
        session.permanent = True
        logger.info(f"User {username} logged in successfully")

        if request.is_json:
            return jsonify({'success': True, 'user': user})
        flash(f'Welcome back, {user["full_name"]}!', 'success')
        return redirect(url_for('index'))

    @app.route('/logout', methods=['GET', 'POST'])
    def logout():
        """User logout"""
        username = session.get('username', 'Unknown')
        session.clear()
        logger.info(f"User {username} logged out")
        if request.is_json:
            return jsonify({'success': True})
        flash('You have been logged out successfully.', 'success')
        return redirect(url_for('login'))

    @app.route('/api/attendance/credentials', methods=['POST'])
    @login_required
    def issue_credential():
        """Issue a fresh attendance credential for the logged-in user"""
        data = request.get_json(silent=True) or {}
        try:
            issued = component('issuer').issue(data.get('eventId'), _current_requester())
            response = issued.to_dict()
            response['success'] = True
            response['qrImage'] = component('qr_generator').render_data_uri(issued.payload)
            return jsonify(response)
        except Exception as e:
            return api_error_response(e, 'Credential issuance')

    @app.route('/api/attendance/validate', methods=['POST'])
    @role_required(*SCANNER_ROLES)
    def validate_credential():
        """Validate a scanned credential and record attendance"""
        data = request.get_json(silent=True) or {}
        event_id = data.get('eventId')
        payload = data.get('payload')

        if payload is None and data.get('credentialId') and data.get('nonce'):
            payload = format_payload(str(data['credentialId']), str(data['nonce']))

        if not event_id or payload is None or payload == '':
            return jsonify({
                'success': False,
                'error': 'A payload (or credentialId and nonce) and an eventId are required',
                'error_type': 'invalid_request'
            }), 400

        if data.get('clientTimestamp') is not None:
            logger.debug(f"Scan client timestamp {data.get('clientTimestamp')} for event {event_id}")

        try:
            result = component('validator').validate(payload, str(event_id), session['username'])
        except Exception as e:
            return api_error_response(e, 'Credential validation')

        if result.accepted:
            return jsonify(result.to_dict())
        if result.reason == RejectionReason.RECORD_WRITE_FAILED:
            return jsonify(result.to_dict()), 500
        return jsonify(result.to_dict()), 422

    @app.route('/qr-display')
    @login_required
    def qr_display():
        """Issue a credential and show it on the guarded display page"""
        event_id = request.args.get('eventId', '')
        try:
            issued = component('issuer').issue(event_id, _current_requester())
            qr_image = component('qr_generator').render_data_uri(issued.payload)
            event = component('event_manager').get_event(event_id)
        except InvalidRequest as e:
            return render_template('qr_display.html', error=e.message, event_id=event_id), e.status_code
        except (StoreUnavailable, sqlite3.OperationalError) as e:
            logger.error(f"QR display failed, store unavailable: {str(e)}")
            return render_template(
                'qr_display.html',
                error='Attendance service is temporarily unavailable. Please try again.',
                event_id=event_id
            ), 503

        guard = DisplayGuard(issued.expires_at)
        context = guard.context(issued.payload, component('clock')(), qr_image=qr_image, event=event)
        return render_template('qr_display.html', guard=context, event_id=event_id)

    @app.route('/scanner')
    @role_required(*SCANNER_ROLES)
    def scanner():
        """QR code scanning interface"""
        try:
            events = component('event_manager').get_todays_events()
        except Exception as e:
            logger.error(f"Scanner page error: {str(e)}")
            flash('Error loading today\'s events.', 'error')
            events = []
        return render_template('scanner.html', events=events)

    @app.route('/api/events/today')
    @login_required
    def todays_events():
        """Events scheduled for today"""
        try:
            events = component('event_manager').get_todays_events()
            return jsonify({'success': True, 'events': events})
        except Exception as e:
            return api_error_response(e, 'Event listing')

    @app.route('/api/events', methods=['POST'])
    @role_required(*SCANNER_ROLES)
    def create_event():
        """Create an event"""
        data = request.get_json(silent=True) or {}
        try:
            result = component('event_manager').create_event(
                title=data.get('title'),
                event_date=data.get('eventDate') or data.get('date'),
                venue=data.get('venue'),
                description=data.get('description'),
                start_time=data.get('startTime'),
                end_time=data.get('endTime'),
                created_by=_current_requester(),
                event_id=data.get('eventId')
            )
        except Exception as e:
            return api_error_response(e, 'Event creation')

        if result['success']:
            return jsonify(result), 201
        status = 409 if result.get('error_type') == 'duplicate_event' else 400
        return jsonify(result), status

    @app.route('/api/events/<event_id>', methods=['DELETE'])
    @role_required(*SCANNER_ROLES)
    def deactivate_event(event_id):
        """Deactivate an event"""
        try:
            deactivated = component('event_manager').deactivate_event(event_id, session['username'])
        except Exception as e:
            return api_error_response(e, 'Event deactivation')

        if not deactivated:
            return jsonify({
                'success': False,
                'error': 'Event not found',
                'error_type': 'event_not_found'
            }), 404
        return jsonify({'success': True, 'event_id': event_id})

    @app.route('/api/events/<event_id>/attendance')
    @role_required(*SCANNER_ROLES)
    def event_attendance(event_id):
        """Attendance list and summary for an event"""
        try:
            attendance_manager = component('attendance_manager')
            return jsonify({
                'success': True,
                'attendance': attendance_manager.get_event_attendance(event_id),
                'summary': attendance_manager.get_event_summary(event_id)
            })
        except Exception as e:
            return api_error_response(e, 'Event attendance')

    @app.route('/api/attendance/me')
    @login_required
    def my_attendance():
        """Attendance history of the logged-in user"""
        try:
            records = component('attendance_manager').get_user_attendance(_current_requester())
            return jsonify({'success': True, 'attendance': records})
        except Exception as e:
            return api_error_response(e, 'Attendance history')

    @app.route('/api/admin/reconciliation')
    @role_required('admin')
    def reconciliation():
        """Consumed credentials that never produced an attendance record"""
        limit = request.args.get('limit', 100, type=int)
        try:
            missing = component('attendance_manager').get_unreconciled_credentials(
                component('credential_store'), limit=limit
            )
            return jsonify({
                'success': True,
                'credentials': missing,
                'count': len(missing),
                'notifications': component('notification_system').get_recent_notifications(limit=20)
            })
        except Exception as e:
            return api_error_response(e, 'Reconciliation')


def register_commands(app):
    """Attach maintenance commands to the Flask CLI."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create the database tables."""
        app.extensions['attendai']['db'].initialize_database()
        click.echo(f"Database initialized at {app.config['DATABASE_PATH']}")

    @app.cli.command('purge-credentials')
    @click.option('--limit', default=None, type=int, help='Maximum credentials to delete')
    def purge_credentials_command(limit):
        """Delete unconsumed credentials whose expiry has passed."""
        components = app.extensions['attendai']
        limit = limit or app.config['ATTENDANCE_QR_PURGE_BATCH']
        removed = components['credential_store'].purge_expired(components['clock'](), limit=limit)
        logger.info(f"Purged {removed} expired credentials")
        click.echo(f"Purged {removed} expired credentials")

    @app.cli.command('create-user')
    @click.argument('username')
    @click.argument('full_name')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True)
    @click.option('--email', default=None)
    @click.option('--role', default='student', type=click.Choice(['student', 'faculty', 'admin']))
    def create_user_command(username, full_name, password, email, role):
        """Create a user account."""
        result = app.extensions['attendai']['auth_manager'].create_user(
            username, password, full_name, email=email, role=role
        )
        if not result['success']:
            raise click.ClickException(result['error'])
        click.echo(f"Created {role} {username} (ID: {result['user_id']})")


if __name__ == '__main__':
    app = create_app()
    app.run(debug=app.config['DEBUG'], host='0.0.0.0', port=5000)
