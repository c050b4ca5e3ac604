import io
import zipfile
from datetime import timedelta

import pytest

from digilib.data.models.audit_event import AuditEventModel
from digilib.data.models.delivery_record import DeliveryRecordModel
from digilib.data.models.download_session import DownloadSessionModel
from digilib.data.models.otp_challenge import OtpChallengeModel
from digilib.domain.errors import (
    ChallengeExpired,
    ChallengeMismatch,
    InvalidSessionState,
    ItemNotInSession,
    ItemUnavailable,
    NotificationFailed,
    NothingToDeliver,
    RangeNotSatisfiable,
    RateLimited,
    SessionNotFound,
    TokenAlreadyUsed,
    TokenExpired,
    TokenInvalid,
    ValidationError,
)
from digilib.services.delivery_service import MANIFEST_NAME
from digilib.services.rate_guard import RateGuard

from conftest import CART_KEY, STUDENT

WRONG_CODE = "000000"


def _fill(cart_service, *item_ids, session_key=CART_KEY):
    for item_id in item_ids:
        cart_service.add(session_key, item_id)


def _state(db, session_id):
    db.expire_all()
    return db.get(DownloadSessionModel, session_id).state


def _transitions(db, session_id):
    db.expire_all()
    return [
        e.outcome
        for e in db.query(AuditEventModel)
        .filter_by(entity_id=session_id, action="session_transition")
        .order_by(AuditEventModel.id)
    ]


def _issue_token(download_service, cart_service, notifier, *item_ids):
    _fill(cart_service, *item_ids)
    started = download_service.initiate(CART_KEY, STUDENT, origin="10.0.0.1")
    grant = download_service.submit_code(started["download_session_id"], notifier.last_code)
    return started["download_session_id"], grant["download_token"]


def _zip(prepared) -> zipfile.ZipFile:
    return zipfile.ZipFile(io.BytesIO(b"".join(prepared.stream())))


class TestCartDownloadScenario:
    def test_full_flow_delivers_bundle_and_clears_cart(self, download_service, cart_service, notifier, db):
        _fill(cart_service, 1, 2)

        started = download_service.initiate(CART_KEY, "Student01@INST.edu", origin="10.0.0.1")
        session_id = started["download_session_id"]
        assert started["state"] == "OTP_PENDING"
        assert started["recipient"] == STUDENT
        assert started["items"] == [
            {"item_id": 1, "title": "Linear Algebra"},
            {"item_id": 2, "title": "Compilers: Principles"},
        ]

        with pytest.raises(ChallengeMismatch):
            download_service.submit_code(session_id, WRONG_CODE)
        assert _state(db, session_id) == "OTP_PENDING"

        grant = download_service.submit_code(session_id, notifier.last_code)
        assert _state(db, session_id) == "TOKEN_ISSUED"

        prepared = download_service.deliver(grant["download_token"], origin="10.0.0.1")
        archive = _zip(prepared)

        assert set(archive.namelist()) == {
            "Linear_Algebra_by_Strang.pdf",
            "Compilers__Principles_by_Aho.pdf",
            MANIFEST_NAME,
        }
        assert cart_service.list(CART_KEY) == []
        assert download_service.get_session(session_id)["delivered"] is True

        record = db.query(DeliveryRecordModel).one()
        assert (record.session_id, record.mode, record.item_ids, record.origin) == (
            session_id,
            "bundle",
            [1, 2],
            "10.0.0.1",
        )
        assert _transitions(db, session_id) == [
            "INITIATED",
            "OTP_PENDING",
            "OTP_VERIFIED",
            "TOKEN_ISSUED",
            "DELIVERED",
        ]

    def test_missing_file_is_omitted_from_bundle(self, download_service, cart_service, notifier, db):
        _, token = _issue_token(download_service, cart_service, notifier, 1, 4)

        prepared = download_service.deliver(token)
        archive = _zip(prepared)

        assert archive.namelist() == ["Linear_Algebra_by_Strang.pdf", MANIFEST_NAME]
        assert "[4] Lost Volume: file_missing" in archive.read(MANIFEST_NAME).decode()
        assert db.query(DeliveryRecordModel).one().omitted == [{"item_id": 4, "reason": "file_missing"}]

    def test_session_expiry_before_code(self, download_service, cart_service, notifier, clock, db):
        _fill(cart_service, 1)
        session_id = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        clock.advance(3601)

        with pytest.raises(ChallengeExpired):
            download_service.submit_code(session_id, notifier.last_code)
        assert _state(db, session_id) == "EXPIRED"
        assert "TOKEN_ISSUED" not in _transitions(db, session_id)

    def test_expired_code_keeps_session_pending(self, download_service, cart_service, notifier, clock, db):
        _fill(cart_service, 1)
        session_id = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        clock.advance(601)

        with pytest.raises(ChallengeExpired):
            download_service.submit_code(session_id, notifier.last_code)
        assert _state(db, session_id) == "OTP_PENDING"


class TestInitiate:
    def test_empty_cart_creates_no_session(self, download_service, db):
        with pytest.raises(ValidationError):
            download_service.initiate(CART_KEY, STUDENT)
        assert db.query(DownloadSessionModel).count() == 0

    @pytest.mark.parametrize(
        "recipient",
        ["student01@gmail.com", "ab@inst.edu", "stu.dent@inst.edu", "not-an-email", ""],
    )
    def test_invalid_recipient(self, download_service, cart_service, recipient, db):
        _fill(cart_service, 1)
        with pytest.raises(ValidationError):
            download_service.initiate(CART_KEY, recipient)
        assert db.query(DownloadSessionModel).count() == 0

    def test_snapshot_is_immutable(self, download_service, cart_service):
        _fill(cart_service, 1)
        session_id = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        cart_service.add(CART_KEY, 2)

        assert [i["item_id"] for i in download_service.get_session(session_id)["items"]] == [1]

    def test_new_initiation_supersedes_previous_session(self, download_service, cart_service, notifier, db):
        _fill(cart_service, 1)
        first = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        first_code = notifier.last_code
        second = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]

        assert _state(db, first) == "EXPIRED"
        with pytest.raises(ChallengeExpired):
            download_service.submit_code(first, first_code)

        download_service.submit_code(second, notifier.last_code)
        assert _state(db, second) == "TOKEN_ISSUED"

    def test_notifier_failure_fails_session(self, download_service, cart_service, notifier, db):
        _fill(cart_service, 1)
        notifier.fail = True

        with pytest.raises(NotificationFailed):
            download_service.initiate(CART_KEY, STUDENT)

        session = db.query(DownloadSessionModel).one()
        assert (session.state, session.failure_reason) == ("FAILED", "notification_failed")
        assert db.query(OtpChallengeModel).count() == 0
        assert len(cart_service.list(CART_KEY)) == 1

    def test_unknown_session(self, download_service):
        with pytest.raises(SessionNotFound):
            download_service.get_session("does-not-exist-000000")


class TestSubmitCode:
    def test_code_cannot_be_submitted_twice(self, download_service, cart_service, notifier):
        _fill(cart_service, 1)
        session_id = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        code = notifier.last_code
        download_service.submit_code(session_id, code)

        with pytest.raises(InvalidSessionState):
            download_service.submit_code(session_id, code)

    def test_token_never_outlives_session(self, download_service, cart_service, notifier, clock):
        _fill(cart_service, 1)
        started_at = clock()
        session_id = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        clock.advance(3300)
        download_service.resend_code(session_id)
        grant = download_service.submit_code(session_id, notifier.last_code)

        assert grant["token_expires_at"] == started_at + timedelta(hours=1)

    def test_resend_code_replaces_code(self, download_service, cart_service, notifier, clock, db):
        _fill(cart_service, 1)
        session_id = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        clock.advance(301)

        result = download_service.resend_code(session_id)
        assert result["otp_expires_at"] == clock() + timedelta(minutes=10)
        assert len(notifier.sent) == 2

        download_service.submit_code(session_id, notifier.last_code)
        assert _state(db, session_id) == "TOKEN_ISSUED"

    def test_resend_respects_cooldown(self, download_service, cart_service):
        _fill(cart_service, 1)
        session_id = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]

        with pytest.raises(RateLimited):
            download_service.resend_code(session_id)

    def test_resend_after_verification_is_rejected(self, download_service, cart_service, notifier):
        session_id, _ = _issue_token(download_service, cart_service, notifier, 1)

        with pytest.raises(InvalidSessionState):
            download_service.resend_code(session_id)


class TestDeliver:
    def test_token_cannot_start_second_delivery(self, download_service, cart_service, notifier, db):
        session_id, token = _issue_token(download_service, cart_service, notifier, 1, 2)
        b"".join(download_service.deliver(token, item_id=1).stream())

        with pytest.raises(TokenAlreadyUsed):
            download_service.deliver(token, item_id=2)
        with pytest.raises(TokenAlreadyUsed):
            download_service.deliver(token)

        reuse = db.query(AuditEventModel).filter_by(action="token_reuse", entity_id=session_id).count()
        assert reuse == 2
        assert db.query(DeliveryRecordModel).count() == 1

    def test_unknown_token(self, download_service):
        with pytest.raises(TokenInvalid):
            download_service.deliver("x" * 43)
        with pytest.raises(TokenInvalid):
            download_service.deliver("")

    def test_expired_token_keeps_cart(self, download_service, cart_service, notifier, clock, db):
        session_id, token = _issue_token(download_service, cart_service, notifier, 1)
        clock.advance(901)

        with pytest.raises(TokenExpired):
            download_service.deliver(token)
        assert _state(db, session_id) == "EXPIRED"
        assert len(cart_service.list(CART_KEY)) == 1

    def test_resolution_failure_leaves_token_usable(self, download_service, cart_service, notifier, db):
        session_id, token = _issue_token(download_service, cart_service, notifier, 1, 4)

        with pytest.raises(ItemUnavailable):
            download_service.deliver(token, item_id=4)
        assert _state(db, session_id) == "TOKEN_ISSUED"

        prepared = download_service.deliver(token, item_id=1)
        assert prepared.status_code == 200
        prepared.close()
        assert _state(db, session_id) == "DELIVERED"

    def test_range_request(self, download_service, cart_service, notifier, db):
        session_id, token = _issue_token(download_service, cart_service, notifier, 1)

        with pytest.raises(RangeNotSatisfiable):
            download_service.deliver(token, item_id=1, range_header="bytes=2000-2100")
        assert _state(db, session_id) == "TOKEN_ISSUED"

        prepared = download_service.deliver(token, item_id=1, range_header="bytes=100-199")
        body = b"".join(prepared.stream())
        assert prepared.status_code == 206
        assert prepared.headers["Content-Range"] == "bytes 100-199/1000"
        assert len(body) == 100

    def test_item_outside_snapshot(self, download_service, cart_service, notifier):
        _, token = _issue_token(download_service, cart_service, notifier, 1)

        with pytest.raises(ItemNotInSession):
            download_service.deliver(token, item_id=2)

    def test_nothing_to_deliver_keeps_cart(self, download_service, cart_service, notifier, db):
        session_id, token = _issue_token(download_service, cart_service, notifier, 3, 4)

        with pytest.raises(NothingToDeliver):
            download_service.deliver(token)
        assert _state(db, session_id) == "TOKEN_ISSUED"
        assert [e["item_id"] for e in cart_service.list(CART_KEY)] == [3, 4]

    def test_lost_consumption_race(self, download_service, delivery_service, cart_service, notifier, monkeypatch, db):
        session_id, token = _issue_token(download_service, cart_service, notifier, 1)
        prepared_streams = []
        original = delivery_service.serve_bundle

        def spy(*args, **kwargs):
            prepared = original(*args, **kwargs)
            prepared_streams.append(prepared)
            return prepared

        monkeypatch.setattr(delivery_service, "serve_bundle", spy)
        monkeypatch.setattr(download_service.repo, "consume_token", lambda *a, **kw: 0)

        with pytest.raises(TokenAlreadyUsed):
            download_service.deliver(token)
        assert prepared_streams[0].handle.closed
        assert len(cart_service.list(CART_KEY)) == 1


class TestSingleItemFlow:
    def test_item_download_never_clears_cart(self, download_service, cart_service, notifier, db):
        _fill(cart_service, 2)

        started = download_service.initiate_item(STUDENT, 1, origin="10.0.0.9")
        assert notifier.sent[-1][1] == "item_download"
        grant = download_service.submit_code(started["download_session_id"], notifier.last_code)

        prepared = download_service.deliver(grant["download_token"], item_id=1, origin="10.0.0.9")
        assert len(b"".join(prepared.stream())) == 1000
        assert [e["item_id"] for e in cart_service.list(CART_KEY)] == [2]
        assert db.query(DeliveryRecordModel).one().mode == "single"

    def test_unknown_item(self, download_service):
        with pytest.raises(ValidationError):
            download_service.initiate_item(STUDENT, 999)

    def test_item_cooldown_fails_second_session(self, download_service, db):
        download_service.initiate_item(STUDENT, 1)

        with pytest.raises(RateLimited):
            download_service.initiate_item(STUDENT, 1)
        states = sorted(s.state for s in db.query(DownloadSessionModel).all())
        assert states == ["FAILED", "OTP_PENDING"]


class TestRateGuardIntegration:
    def test_otp_issue_throttled_per_recipient(self, make_download_service, cart_service, redis_client, db):
        svc = make_download_service(RateGuard(client=redis_client))
        _fill(cart_service, 1)
        _fill(cart_service, 2, session_key="second-cart-key")

        svc.initiate(CART_KEY, STUDENT, origin="10.0.0.1")
        with pytest.raises(RateLimited) as exc:
            svc.initiate("second-cart-key", STUDENT, origin="10.0.0.1")

        assert 0 < exc.value.retry_after <= 120
        denial = db.query(AuditEventModel).filter_by(action="rate_limited").one()
        assert (denial.entity_id, denial.outcome) == ("otp_issue", "denied")

    def test_code_submissions_are_capped(self, make_download_service, cart_service, redis_client):
        svc = make_download_service(RateGuard(client=redis_client))
        _fill(cart_service, 1)
        session_id = svc.initiate(CART_KEY, STUDENT)["download_session_id"]

        for _ in range(8):
            with pytest.raises(ChallengeMismatch):
                svc.submit_code(session_id, WRONG_CODE)
        with pytest.raises(RateLimited):
            svc.submit_code(session_id, WRONG_CODE)


class TestExpireOverdue:
    def test_sweep_expires_overdue_sessions(self, download_service, cart_service, notifier, clock, db):
        _fill(cart_service, 1)
        _fill(cart_service, 2, session_key="second-cart-key")
        pending = download_service.initiate(CART_KEY, STUDENT)["download_session_id"]
        other = download_service.initiate("second-cart-key", "student02@inst.edu")["download_session_id"]
        download_service.submit_code(other, notifier.last_code)

        clock.advance(901)
        assert download_service.expire_overdue() == 1
        assert _state(db, other) == "EXPIRED"
        assert _state(db, pending) == "OTP_PENDING"

        clock.advance(3600)
        assert download_service.expire_overdue() == 1
        assert _state(db, pending) == "EXPIRED"
