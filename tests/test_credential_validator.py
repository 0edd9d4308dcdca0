import sqlite3
import threading

import pytest

from attendai.modules.credential_issuer import CredentialIssuer, parse_payload
from attendai.modules.credential_store import STATE_ACTIVE, STATE_CONSUMED, InMemoryCredentialStore
from attendai.modules.credential_validator import CredentialValidator
from attendai.modules.errors import RejectionReason, StoreUnavailable


class UntouchableStore(InMemoryCredentialStore):
    """Fails the test if the validator reaches the store."""

    def get(self, credential_id):
        raise AssertionError('store.get should not be called')

    def try_consume(self, credential_id, consumed_by, now):
        raise AssertionError('store.try_consume should not be called')


class BrokenStore(InMemoryCredentialStore):
    def get(self, credential_id):
        raise StoreUnavailable('connection refused')


class FailingAttendanceManager:
    def __init__(self):
        self.attempts = 0

    def record_attendance(self, record):
        self.attempts += 1
        raise sqlite3.OperationalError('disk I/O error')


@pytest.fixture
def issuer(store, clock):
    return CredentialIssuer(store, ttl_seconds=120, clock=clock)


@pytest.fixture
def validator(store, attendance_manager, notifier, clock):
    return CredentialValidator(store, attendance_manager, notifier=notifier, clock=clock)


def test_fresh_credential_is_accepted(issuer, validator, store, attendance_manager, notifier, clock):
    issued = issuer.issue('E1', '7')

    result = validator.validate(issued.payload, 'E1', 'faculty1')

    assert result.accepted
    assert result.reason is None
    assert result.scan_time == clock.now
    records = attendance_manager.get_event_attendance('E1')
    assert [r['attendance_id'] for r in records] == [result.attendance_id]
    assert records[0]['user_id'] == '7'
    assert records[0]['scanned_by'] == 'faculty1'

    stored = store.get(issued.credential_id)
    assert stored.state == STATE_CONSUMED
    assert stored.consumed_by == 'faculty1'
    assert notifier.attendance[0]['attendanceId'] == result.attendance_id


def test_credential_past_ttl_is_expired(issuer, validator, store, clock):
    issued = issuer.issue('E1', '7')
    clock.advance(seconds=121)

    result = validator.validate(issued.payload, 'E1', 'faculty1')

    assert not result.accepted
    assert result.reason == RejectionReason.EXPIRED
    assert store.get(issued.credential_id).state == STATE_ACTIVE


def test_expiry_boundary_is_inclusive(store, attendance_manager, clock):
    issuer = CredentialIssuer(store, ttl_seconds=2, clock=clock)
    validator = CredentialValidator(store, attendance_manager, clock=clock)
    on_time = issuer.issue('E1', '7')
    late = issuer.issue('E1', '8')

    clock.advance(seconds=2)
    assert validator.validate(on_time.payload, 'E1', 'faculty1').accepted

    clock.advance(millis=1)
    assert validator.validate(late.payload, 'E1', 'faculty1').reason == RejectionReason.EXPIRED


def test_expired_credential_stays_expired_after_failed_attempts(issuer, validator, clock):
    issued = issuer.issue('E1', '7')
    credential_id, _ = parse_payload(issued.payload)
    validator.validate(f'{credential_id}:wrong', 'E1', 'faculty1')
    validator.validate(issued.payload, 'E2', 'faculty1')
    clock.advance(seconds=300)

    for _ in range(3):
        assert validator.validate(issued.payload, 'E1', 'faculty1').reason == RejectionReason.EXPIRED


def test_second_scan_is_already_consumed(issuer, validator, attendance_manager):
    issued = issuer.issue('E1', '7')

    first = validator.validate(issued.payload, 'E1', 'faculty1')
    second = validator.validate(issued.payload, 'E1', 'faculty1')

    assert first.accepted
    assert not second.accepted
    assert second.reason == RejectionReason.ALREADY_CONSUMED
    assert len(attendance_manager.get_event_attendance('E1')) == 1


def test_event_mismatch_has_no_side_effect(issuer, validator, store):
    issued = issuer.issue('E1', '7')

    mismatch = validator.validate(issued.payload, 'E2', 'faculty1')

    assert mismatch.reason == RejectionReason.EVENT_MISMATCH
    assert store.get(issued.credential_id).state == STATE_ACTIVE
    assert validator.validate(issued.payload, 'E1', 'faculty1').accepted


def test_nonce_mismatch_has_no_side_effect(issuer, validator, store):
    issued = issuer.issue('E1', '7')
    credential_id, _ = parse_payload(issued.payload)

    result = validator.validate(f'{credential_id}:{"0" * 32}', 'E1', 'faculty1')

    assert result.reason == RejectionReason.NONCE_MISMATCH
    assert store.get(credential_id).state == STATE_ACTIVE
    assert validator.validate(issued.payload, 'E1', 'faculty1').accepted


def test_tampering_is_logged_as_warning(issuer, validator, caplog):
    issued = issuer.issue('E1', '7')

    with caplog.at_level('INFO', logger='attendai.modules.credential_validator'):
        validator.validate(issued.payload, 'E2', 'faculty1')
        validator.validate('unknown:nonce', 'E1', 'faculty1')

    tampering = [r for r in caplog.records if 'Possible tampering' in r.getMessage()]
    unknown = [r for r in caplog.records if 'unknown credential' in r.getMessage()]
    assert tampering and all(r.levelname == 'WARNING' for r in tampering)
    assert unknown and all(r.levelname == 'INFO' for r in unknown)


def test_malformed_payload_never_reaches_the_store(attendance_manager, clock):
    validator = CredentialValidator(UntouchableStore(), attendance_manager, clock=clock)

    result = validator.validate('no-separator-here', 'E1', 'faculty1')

    assert not result.accepted
    assert result.reason == RejectionReason.MALFORMED_PAYLOAD


def test_unknown_credential_rejection_is_idempotent(validator, store):
    for _ in range(3):
        result = validator.validate('deadbeef:cafebabe', 'E1', 'faculty1')
        assert result.reason == RejectionReason.NOT_FOUND
    assert store.get('deadbeef') is None


def test_concurrent_scans_accept_exactly_once(issuer, validator, attendance_manager):
    issued = issuer.issue('E1', '7')
    workers = 8
    barrier = threading.Barrier(workers)
    results = []
    results_lock = threading.Lock()

    def scan(i):
        barrier.wait()
        result = validator.validate(issued.payload, 'E1', f'scanner{i}')
        with results_lock:
            results.append(result)

    threads = [threading.Thread(target=scan, args=(i,)) for i in range(workers)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()

    accepted = [r for r in results if r.accepted]
    assert len(accepted) == 1
    assert all(r.reason == RejectionReason.ALREADY_CONSUMED for r in results if not r.accepted)
    assert len(attendance_manager.get_event_attendance('E1')) == 1


def test_record_write_failure_keeps_credential_consumed(store, notifier, clock):
    issuer = CredentialIssuer(store, clock=clock)
    attendance = FailingAttendanceManager()
    validator = CredentialValidator(store, attendance, notifier=notifier, clock=clock)
    issued = issuer.issue('E1', '7')

    result = validator.validate(issued.payload, 'E1', 'faculty1')

    assert not result.accepted
    assert result.reason == RejectionReason.RECORD_WRITE_FAILED
    assert result.consumed
    assert store.get(issued.credential_id).state == STATE_CONSUMED
    assert notifier.alerts[0]['severity'] == 'error'
    assert notifier.alerts[0]['data']['credentialId'] == issued.credential_id

    retry = validator.validate(issued.payload, 'E1', 'faculty1')
    assert retry.reason == RejectionReason.ALREADY_CONSUMED
    assert attendance.attempts == 1


def test_store_unavailable_propagates(attendance_manager, clock):
    validator = CredentialValidator(BrokenStore(), attendance_manager, clock=clock)

    with pytest.raises(StoreUnavailable):
        validator.validate('abc:def', 'E1', 'faculty1')


def test_notifier_failure_does_not_change_the_outcome(issuer, store, attendance_manager, clock):
    class ExplodingNotifier:
        def send_attendance_notification(self, data):
            raise RuntimeError('queue full')

    validator = CredentialValidator(store, attendance_manager, notifier=ExplodingNotifier(), clock=clock)
    issued = issuer.issue('E1', '7')

    assert validator.validate(issued.payload, 'E1', 'faculty1').accepted


def test_result_serialization(issuer, validator):
    issued = issuer.issue('E1', '7')
    accepted = validator.validate(issued.payload, 'E1', 'faculty1').to_dict()
    rejected = validator.validate(issued.payload, 'E1', 'faculty1').to_dict()

    assert accepted['accepted'] is True
    assert set(accepted) == {'accepted', 'message', 'attendanceId', 'eventId', 'scanTime'}
    assert rejected == {
        'accepted': False,
        'message': 'This QR code has already been used.',
        'reason': 'already_consumed'
    }
