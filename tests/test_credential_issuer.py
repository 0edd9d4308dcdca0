import re

import pytest

from attendai.modules.attendance_manager import AttendanceRecord
from attendai.modules.credential_issuer import (
    CredentialIssuer,
    format_payload,
    parse_payload,
)
from attendai.modules.credential_store import STATE_ACTIVE, InMemoryCredentialStore
from attendai.modules.errors import (
    DuplicateId,
    InvalidRequest,
    MalformedPayloadError,
    StoreUnavailable,
)

HEX_32 = re.compile(r'^[0-9a-f]{32}$')


class CollidingStore(InMemoryCredentialStore):
    """Raises DuplicateId on the first create call."""

    def __init__(self):
        super().__init__()
        self.attempts = 0

    def create(self, credential):
        self.attempts += 1
        if self.attempts == 1:
            raise DuplicateId(credential.credential_id)
        super().create(credential)


class UnavailableStore(InMemoryCredentialStore):
    def create(self, credential):
        raise StoreUnavailable('connection refused')


@pytest.mark.parametrize('raw, expected', [
    ('abc:def', ('abc', 'def')),
    ('  abc:def\n', ('abc', 'def')),
])
def test_parse_payload_accepts_well_formed_input(raw, expected):
    assert parse_payload(raw) == expected


@pytest.mark.parametrize('raw', [
    '', 'abcdef', 'a:b:c', ':def', 'abc:', ':', None, 42,
    'abc:\ud800', '\ud800:abc',
])
def test_parse_payload_rejects_malformed_input(raw):
    with pytest.raises(MalformedPayloadError):
        parse_payload(raw)


def test_issue_persists_an_active_credential(store, clock):
    issuer = CredentialIssuer(store, ttl_seconds=120, clock=clock)

    issued = issuer.issue('E1', '7')

    credential_id, nonce = parse_payload(issued.payload)
    stored = store.get(credential_id)
    assert stored is not None
    assert stored.nonce == nonce
    assert stored.event_id == 'E1'
    assert stored.issued_to == '7'
    assert stored.issued_at == clock.now
    assert stored.expires_at == clock.now + 120_000
    assert stored.state == STATE_ACTIVE
    assert issued.expires_at == stored.expires_at
    assert issued.to_dict() == {
        'payload': issued.payload,
        'expiresAt': stored.expires_at,
        'ttlSeconds': 120
    }


def test_issued_tokens_are_random_hex(memory_store, clock):
    issuer = CredentialIssuer(memory_store, clock=clock)

    payloads = {issuer.issue('E1', '7').payload for _ in range(50)}

    assert len(payloads) == 50
    for payload in payloads:
        credential_id, nonce = parse_payload(payload)
        assert HEX_32.match(credential_id)
        assert HEX_32.match(nonce)
        assert credential_id != nonce


def test_reissue_leaves_earlier_credentials_active(memory_store, clock):
    issuer = CredentialIssuer(memory_store, clock=clock)

    first = issuer.issue('E1', '7')
    clock.advance(seconds=5)
    second = issuer.issue('E1', '7')

    assert first.payload != second.payload
    assert memory_store.get(first.credential_id).state == STATE_ACTIVE
    assert memory_store.get(second.credential_id).state == STATE_ACTIVE


@pytest.mark.parametrize('event_id', ['', '   ', None])
def test_issue_requires_event_id(memory_store, event_id):
    issuer = CredentialIssuer(memory_store)

    with pytest.raises(InvalidRequest) as excinfo:
        issuer.issue(event_id, '7')

    assert excinfo.value.status_code == 400
    assert memory_store.snapshot() == []


def test_issue_requires_requester(memory_store):
    issuer = CredentialIssuer(memory_store)

    with pytest.raises(InvalidRequest) as excinfo:
        issuer.issue('E1', None)

    assert excinfo.value.status_code == 401
    assert excinfo.value.error_type == 'unauthenticated'


def test_issue_rejects_non_positive_ttl(memory_store):
    with pytest.raises(ValueError):
        CredentialIssuer(memory_store, ttl_seconds=0)


def test_issue_retries_once_on_id_collision(clock):
    store = CollidingStore()
    issuer = CredentialIssuer(store, clock=clock)

    issued = issuer.issue('E1', '7')

    assert store.attempts == 2
    assert store.get(issued.credential_id) is not None


def test_store_unavailable_propagates(clock):
    issuer = CredentialIssuer(UnavailableStore(), clock=clock)

    with pytest.raises(StoreUnavailable):
        issuer.issue('E1', '7')


def test_issue_checks_event_exists(memory_store, event_manager):
    issuer = CredentialIssuer(memory_store, event_manager=event_manager)

    with pytest.raises(InvalidRequest) as excinfo:
        issuer.issue('no-such-event', '7')

    assert excinfo.value.status_code == 404
    assert excinfo.value.error_type == 'event_not_found'


def test_issue_checks_event_is_today(memory_store, event_manager, tomorrow_event):
    issuer = CredentialIssuer(memory_store, event_manager=event_manager)

    with pytest.raises(InvalidRequest) as excinfo:
        issuer.issue(tomorrow_event['event_id'], '7')

    assert excinfo.value.status_code == 409
    assert excinfo.value.error_type == 'event_not_active'


def test_issue_refuses_deactivated_event(memory_store, event_manager, today_event):
    issuer = CredentialIssuer(memory_store, event_manager=event_manager)
    event_manager.deactivate_event(today_event['event_id'])

    with pytest.raises(InvalidRequest) as excinfo:
        issuer.issue(today_event['event_id'], '7')

    assert excinfo.value.error_type == 'event_not_found'


def test_issue_refuses_when_already_attended(memory_store, event_manager, attendance_manager,
                                              today_event, clock):
    issuer = CredentialIssuer(
        memory_store,
        event_manager=event_manager,
        attendance_manager=attendance_manager,
        clock=clock
    )
    attendance_manager.record_attendance(
        AttendanceRecord.new(event_id='E1', user_id='7', scan_time=clock.now, scanned_by='faculty1')
    )

    with pytest.raises(InvalidRequest) as excinfo:
        issuer.issue('E1', '7')

    assert excinfo.value.error_type == 'already_attended'
    assert issuer.issue('E1', '8').payload


def test_format_payload_round_trips_through_parse():
    assert parse_payload(format_payload('abc', 'def')) == ('abc', 'def')


def test_issue_returns_event_details(memory_store, event_manager, today_event):
    issuer = CredentialIssuer(memory_store, event_manager=event_manager)

    issued = issuer.issue(today_event['event_id'], '7')

    assert issued.event_title == 'Data Structures'
    assert issued.to_dict()['eventTitle'] == 'Data Structures'
    assert issued.to_dict()['eventVenue'] == 'Room 101'
