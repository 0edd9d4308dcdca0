"""
Display Guard Module - AttendAI QR Attendance Service

Presentation rules for showing a credential on the holder's screen.

The guard hides the code when the page loses visibility or focus, blocks
the context menu and common screenshot shortcuts, and counts down to the
credential's expiry. None of this is a security boundary: the payload is
already on the client, and a second device or the operating system can
capture it anyway. Expiry and single use are enforced server side by the
validator. The browser half of the guard lives in
static/js/display_guard.js and follows the same state rules as this class.
"""

from dataclasses import dataclass
from typing import Any, Dict, Optional

STATE_SHOWING = 'showing'
STATE_HIDDEN = 'hidden'
STATE_EXPIRED = 'expired'

# Shortcuts the client intercepts. Advisory only.
BLOCKED_SHORTCUTS = (
    'PrintScreen',
    'Meta+Shift+3',
    'Meta+Shift+4',
    'Meta+Shift+5',
    'Ctrl+Shift+S',
    'Meta+Shift+S',
    'Ctrl+P',
    'Meta+P',
)


@dataclass(frozen=True)
class DisplayGuard:
    """Countdown and visibility state for one displayed credential."""
    expires_at: int

    def seconds_remaining(self, now: int) -> int:
        """Whole seconds left until expiry, never negative."""
        return max(0, (self.expires_at - now) // 1000)

    def is_expired(self, now: int) -> bool:
        return self.seconds_remaining(now) <= 0

    def display_state(self, now: int, visible: bool = True, focused: bool = True) -> str:
        """
        Work out what the page should show.

        The code is shown only while the page is both visible and focused;
        once the countdown reaches zero it never comes back.
        """
        if self.is_expired(now):
            return STATE_EXPIRED
        if visible and focused:
            return STATE_SHOWING
        return STATE_HIDDEN

    def context(self, payload: str, now: int, qr_image: Optional[str] = None,
                event: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Template context for the guarded display page.

        Args:
            payload (str): Credential payload
            now (int): Current time in epoch milliseconds
            qr_image (str): Base64 PNG of the payload, omitted once expired
            event (dict): Event the credential was issued for

        Returns:
            Dict[str, Any]: Values consumed by qr_display.html
        """
        state = self.display_state(now)
        return {
            'state': state,
            'payload': payload if state != STATE_EXPIRED else None,
            'qr_image': qr_image if state != STATE_EXPIRED else None,
            'expires_at': self.expires_at,
            'seconds_remaining': self.seconds_remaining(now),
            'countdown': format_countdown(self.seconds_remaining(now)),
            'blocked_shortcuts': list(BLOCKED_SHORTCUTS),
            'event': event or {},
        }


def format_countdown(seconds: int) -> str:
    """Render seconds as M:SS."""
    seconds = max(0, int(seconds))
    return f"{seconds // 60}:{seconds % 60:02d}"
