# AttendAI QR Attendance Service - Modules Package
"""
Core business logic modules for the AttendAI attendance service.
"""

__version__ = "1.0.0"
__description__ = "Core modules for QR attendance credential functionality"

# Module descriptions
MODULES = {
    'database_manager': 'Database operations and schema management',
    'credential_store': 'Credential persistence and atomic consumption',
    'credential_issuer': 'Credential issuance and payload format',
    'credential_validator': 'Scan validation and attendance recording',
    'display_guard': 'Countdown and visibility rules for the QR display',
    'qr_generator': 'QR code rendering',
    'attendance_manager': 'Attendance records and reconciliation',
    'event_manager': 'Event management and scheduling',
    'notification_system': 'Email notifications and operator alerts',
    'auth_manager': 'Authentication and authorization',
    'errors': 'Shared exceptions and rejection reasons'
}

def get_module_info():
    """Get information about available modules"""
    return MODULES
