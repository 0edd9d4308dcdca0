import pytest

from attendai.modules.display_guard import (
    BLOCKED_SHORTCUTS,
    STATE_EXPIRED,
    STATE_HIDDEN,
    STATE_SHOWING,
    DisplayGuard,
    format_countdown,
)

EXPIRES_AT = 1_700_000_120_000


@pytest.mark.parametrize('seconds, expected', [
    (0, '0:00'),
    (9, '0:09'),
    (60, '1:00'),
    (119, '1:59'),
    (-5, '0:00'),
])
def test_format_countdown(seconds, expected):
    assert format_countdown(seconds) == expected


def test_seconds_remaining_rounds_down_and_never_goes_negative():
    guard = DisplayGuard(EXPIRES_AT)

    assert guard.seconds_remaining(EXPIRES_AT - 120_000) == 120
    assert guard.seconds_remaining(EXPIRES_AT - 1500) == 1
    assert guard.seconds_remaining(EXPIRES_AT + 5000) == 0


def test_code_shows_only_while_visible_and_focused():
    guard = DisplayGuard(EXPIRES_AT)
    now = EXPIRES_AT - 60_000

    assert guard.display_state(now) == STATE_SHOWING
    assert guard.display_state(now, visible=False) == STATE_HIDDEN
    assert guard.display_state(now, focused=False) == STATE_HIDDEN
    assert guard.display_state(now, visible=True, focused=True) == STATE_SHOWING


def test_expired_state_wins_over_visibility():
    guard = DisplayGuard(EXPIRES_AT)

    assert guard.display_state(EXPIRES_AT) == STATE_EXPIRED
    assert guard.display_state(EXPIRES_AT + 1, visible=False) == STATE_EXPIRED


def test_context_drops_the_code_once_expired():
    guard = DisplayGuard(EXPIRES_AT)

    live = guard.context('abc:def', EXPIRES_AT - 30_000, qr_image='data:image/png;base64,xyz')
    dead = guard.context('abc:def', EXPIRES_AT + 1, qr_image='data:image/png;base64,xyz')

    assert live['state'] == STATE_SHOWING
    assert live['payload'] == 'abc:def'
    assert live['countdown'] == '0:30'
    assert live['blocked_shortcuts'] == list(BLOCKED_SHORTCUTS)
    assert dead['state'] == STATE_EXPIRED
    assert dead['payload'] is None
    assert dead['qr_image'] is None
    assert dead['countdown'] == '0:00'
