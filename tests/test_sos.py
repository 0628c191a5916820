"""SOS lifecycle tests."""

import pytest
from sqlalchemy import create_engine, select, update
from sqlalchemy import event as sa_event
from sqlalchemy.orm import sessionmaker

from safety_engine.core.enums import EscalationStatus, SosStatus, TriggerMode
from safety_engine.core.errors import (
    ConflictingActiveEvent,
    InvalidTransition,
    NotAuthenticated,
    RateLimitExceeded,
    SosEventNotFound,
)
from safety_engine.db.base import Base
from safety_engine.db.store import SqlAlchemySosStore
from safety_engine.engine import SafetyEngine
from safety_engine.models.sos_escalation import SosEscalation
from safety_engine.models.sos_event import SosEvent
from safety_engine.services.collaborators import Identity, StaticIdentity
from safety_engine.services.geofence_service import GeoPoint
from safety_engine.services.sos_service import calculate_confidence_score
from tests.conftest import auth_headers

HERE = GeoPoint(12.9716, 77.5946)
TRIGGER_BODY = {"mode": "button", "location": {"latitude": 12.9716, "longitude": 77.5946}}


def test_button_without_description_scores_100(make_engine):
    event = make_engine().trigger_sos(TriggerMode.BUTTON, HERE)
    assert event.confidence_score == 100
    assert event.status == SosStatus.TRIGGERED.value
    assert event.escalation_level == 0
    assert event.priority == "critical"


def test_silent_with_description_scores_85(make_engine):
    event = make_engine().trigger_sos(TriggerMode.SILENT, HERE, description="  followed from the station  ")
    assert event.confidence_score == 85
    assert event.description == "followed from the station"


def test_blank_description_earns_no_bonus(make_engine):
    assert make_engine().trigger_sos(TriggerMode.SILENT, HERE, description="   ").confidence_score == 80


@pytest.mark.parametrize(
    "mode,has_description,false_alarms,expected",
    [
        (TriggerMode.BUTTON, True, 0, 100),
        (TriggerMode.SHAKE, True, 0, 100),
        (TriggerMode.PANIC_WORD, False, 1, 80),
        (TriggerMode.VOLUME, True, 2, 70),
        (TriggerMode.SILENT, False, 9, 0),
        (TriggerMode.SILENT, True, 20, 0),
    ],
)
def test_confidence_is_clamped(mode, has_description, false_alarms, expected):
    score = calculate_confidence_score(mode, has_description, false_alarms)
    assert score == expected
    assert 0 <= score <= 100


def test_prior_false_alarms_lower_confidence(make_engine, clock):
    engine = make_engine()
    first = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    engine.resolve(first.id, false_alarm=True, notes="pocket press")
    clock.advance(minutes=5)
    second = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    assert second.confidence_score == 90


def test_anonymous_trigger_is_rejected(make_engine):
    with pytest.raises(NotAuthenticated):
        make_engine(user_id=None).trigger_sos(TriggerMode.BUTTON, HERE)


def test_trigger_writes_level_zero_family_record(make_engine, publisher):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.SHAKE, HERE)
    [record] = engine.list_escalations(event.id)
    assert record.level == 0
    assert record.target_class == "family"
    assert record.status == EscalationStatus.SENT.value
    assert "sos.triggered" in publisher.topics


def test_second_active_event_is_rejected(make_engine):
    engine = make_engine()
    first = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    with pytest.raises(ConflictingActiveEvent) as exc:
        engine.trigger_sos(TriggerMode.BUTTON, HERE)
    assert exc.value.active_event_id == first.id
    assert [e.id for e in engine.list_active()] == [first.id]


def test_trigger_losing_a_concurrent_insert_is_a_conflict(tmp_path, clock):
    file_engine = create_engine(f"sqlite:///{tmp_path / 'race.db'}")
    Base.metadata.create_all(bind=file_engine)
    Session = sessionmaker(autocommit=False, autoflush=False, bind=file_engine)
    ours, theirs = Session(), Session()

    def concurrent_trigger(session, flush_context, instances):
        # Another request commits an active event after our checks passed
        theirs.add(
            SosEvent(
                user_id="alice",
                trigger_mode=TriggerMode.SHAKE.value,
                confidence_score=95,
                latitude=HERE.lat,
                longitude=HERE.lng,
                created_at=clock(),
                last_escalated_at=clock(),
            )
        )
        theirs.commit()

    sa_event.listen(ours, "before_flush", concurrent_trigger, once=True)
    engine = SafetyEngine(SqlAlchemySosStore(ours), StaticIdentity(Identity("alice")), clock=clock)
    try:
        with pytest.raises(ConflictingActiveEvent):
            engine.trigger_sos(TriggerMode.BUTTON, HERE)

        events = theirs.execute(select(SosEvent).where(SosEvent.user_id == "alice")).scalars().all()
        assert [e.trigger_mode for e in events] == ["shake"]
        assert theirs.execute(select(SosEscalation)).scalars().all() == []
    finally:
        ours.close()
        theirs.close()
        file_engine.dispose()


def test_fourth_trigger_in_an_hour_is_rate_limited(make_engine, clock):
    engine = make_engine()
    for minute in (0, 20, 40):
        event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
        engine.resolve(event.id)
        clock.advance(minutes=10 if minute == 40 else 20)
    # minute 50: the minute-0 event leaves the window in 10 minutes
    with pytest.raises(RateLimitExceeded) as exc:
        engine.trigger_sos(TriggerMode.BUTTON, HERE)
    assert exc.value.retry_after_seconds == 10 * 60


def test_rate_limit_window_rolls(make_engine, clock):
    engine = make_engine()
    for _ in range(3):
        engine.resolve(engine.trigger_sos(TriggerMode.BUTTON, HERE).id)
        clock.advance(minutes=10)
    with pytest.raises(RateLimitExceeded):
        engine.trigger_sos(TriggerMode.BUTTON, HERE)
    clock.advance(minutes=31)
    assert engine.trigger_sos(TriggerMode.BUTTON, HERE).status == SosStatus.TRIGGERED.value


def test_rate_limit_is_per_user(make_engine, clock):
    alice = make_engine("alice")
    for _ in range(3):
        alice.resolve(alice.trigger_sos(TriggerMode.BUTTON, HERE).id)
        clock.advance(minutes=1)
    assert make_engine("bob").trigger_sos(TriggerMode.BUTTON, HERE).user_id == "bob"


def test_full_lifecycle(make_engine, clock, publisher):
    user = make_engine("alice")
    officer = make_engine("officer-7", role="police")
    event = user.trigger_sos(TriggerMode.PANIC_WORD, HERE)

    clock.advance(minutes=1)
    acked = officer.acknowledge(event.id, "officer-7")
    assert acked.status == SosStatus.ACKNOWLEDGED.value
    assert acked.acknowledged_by == "officer-7"
    assert acked.acknowledged_at is not None
    [record] = officer.list_escalations(event.id)
    assert record.status == EscalationStatus.ACKNOWLEDGED.value
    assert record.acknowledged_by == "officer-7"

    responding = officer.respond(event.id, "officer-7")
    assert responding.status == SosStatus.RESPONDING.value
    assert responding.responding_officer_id == "officer-7"

    resolved = officer.resolve(event.id, notes="escorted home")
    assert resolved.status == SosStatus.RESOLVED.value
    assert resolved.resolution_notes == "escorted home"
    assert resolved.resolved_at is not None
    assert publisher.topics.count("sos.status") == 3


def test_respond_straight_from_triggered(make_engine):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    assert engine.respond(event.id, "officer-1").status == SosStatus.RESPONDING.value


def test_optional_verified_step(make_engine):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    engine.respond(event.id, "officer-1")
    assert engine.update_status(event.id, SosStatus.VERIFIED).status == SosStatus.VERIFIED.value
    assert engine.resolve(event.id).status == SosStatus.RESOLVED.value


def test_backward_transition_is_invalid(make_engine):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    engine.respond(event.id, "officer-1")
    with pytest.raises(InvalidTransition):
        engine.acknowledge(event.id, "officer-1")


@pytest.mark.parametrize("false_alarm", [False, True])
def test_terminal_status_is_absorbing(make_engine, false_alarm):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    engine.resolve(event.id, false_alarm=false_alarm)
    for action in (
        lambda: engine.acknowledge(event.id, "officer-1"),
        lambda: engine.respond(event.id, "officer-1"),
        lambda: engine.update_status(event.id, SosStatus.RESOLVED),
        lambda: engine.resolve(event.id),
        lambda: engine.mark_safe(event.id),
        lambda: engine.escalate(event.id),
    ):
        with pytest.raises(InvalidTransition):
            action()


def test_update_status_to_false_alarm(make_engine):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    assert engine.update_status(event.id, SosStatus.FALSE_ALARM).status == SosStatus.FALSE_ALARM.value
    # a new trigger is allowed once the previous event is terminal
    assert engine.trigger_sos(TriggerMode.BUTTON, HERE).id != event.id


def test_stale_transition_loses(make_engine, db):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    # Another writer resolves the event behind this session's back
    db.execute(update(SosEvent).where(SosEvent.id == event.id).values(status=SosStatus.RESOLVED.value))
    db.commit()
    with pytest.raises(InvalidTransition):
        engine.lifecycle._apply(event, SosStatus.TRIGGERED, {"status": SosStatus.ACKNOWLEDGED.value})
    assert engine.get_event(event.id).status == SosStatus.RESOLVED.value


def test_mark_safe_resolves_at_any_level(make_engine):
    engine = make_engine()
    event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
    engine.escalate(event.id)
    engine.escalate(event.id)
    safe = engine.mark_safe(event.id)
    assert safe.status == SosStatus.RESOLVED.value
    assert safe.escalation_level == 2
    assert safe.resolution_notes == "Marked safe by user"


def test_history_is_newest_first(make_engine, clock):
    engine = make_engine()
    ids = []
    for _ in range(3):
        event = engine.trigger_sos(TriggerMode.BUTTON, HERE)
        engine.resolve(event.id)
        ids.append(event.id)
        clock.advance(minutes=2)
    assert [e.id for e in engine.history()] == list(reversed(ids))
    assert len(engine.history(limit=2)) == 2


def test_history_requires_identity(make_engine):
    with pytest.raises(NotAuthenticated):
        make_engine(user_id=None).history()


def test_unknown_event(make_engine):
    with pytest.raises(SosEventNotFound):
        make_engine().get_event("missing")


# ---------- API ----------


def test_trigger_api(client, new_user_id):
    user = new_user_id()
    r = client.post("/sos/trigger", headers=auth_headers(user), json={**TRIGGER_BODY, "description": "help"})
    assert r.status_code == 200
    data = r.json()
    assert data["user_id"] == user
    assert data["status"] == "triggered"
    assert data["confidence_score"] == 100
    assert data["escalation_level"] == 0


def test_trigger_api_error_codes_are_distinct(client, new_user_id):
    r = client.post("/sos/trigger", json=TRIGGER_BODY)
    assert r.status_code == 401
    assert r.json()["detail"]["code"] == "not_authenticated"

    user = new_user_id()
    first = client.post("/sos/trigger", headers=auth_headers(user), json=TRIGGER_BODY).json()
    r = client.post("/sos/trigger", headers=auth_headers(user), json=TRIGGER_BODY)
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "conflicting_active_event"
    assert r.json()["detail"]["active_event_id"] == first["id"]

    client.post(f"/sos/{first['id']}/resolve", headers=auth_headers(user), json={})
    for _ in range(2):
        event = client.post("/sos/trigger", headers=auth_headers(user), json=TRIGGER_BODY).json()
        client.post(f"/sos/{event['id']}/resolve", headers=auth_headers(user), json={})
    r = client.post("/sos/trigger", headers=auth_headers(user), json=TRIGGER_BODY)
    assert r.status_code == 429
    assert r.json()["detail"]["code"] == "rate_limit_exceeded"
    assert int(r.headers["Retry-After"]) > 0


def test_invalid_trigger_mode_is_rejected(client, new_user_id):
    r = client.post("/sos/trigger", headers=auth_headers(new_user_id()), json={**TRIGGER_BODY, "mode": "teleport"})
    assert r.status_code == 422


def test_responder_flow_api(client, new_user_id):
    user, officer = new_user_id(), new_user_id("officer")
    event = client.post("/sos/trigger", headers=auth_headers(user), json=TRIGGER_BODY).json()

    # users cannot acknowledge their own event
    r = client.post(f"/sos/{event['id']}/acknowledge", headers=auth_headers(user))
    assert r.status_code == 403

    active = client.get("/sos/active", headers=auth_headers(officer, role="police"))
    assert active.status_code == 200
    assert event["id"] in [e["id"] for e in active.json()]

    r = client.post(f"/sos/{event['id']}/acknowledge", headers=auth_headers(officer, role="police"))
    assert r.status_code == 200
    assert r.json()["acknowledged_by"] == officer

    r = client.put(
        f"/sos/{event['id']}/status",
        headers=auth_headers(officer, role="police"),
        json={"status": "responding"},
    )
    assert r.status_code == 200
    assert r.json()["responding_officer_id"] == officer

    r = client.put(
        f"/sos/{event['id']}/status",
        headers=auth_headers(officer, role="police"),
        json={"status": "acknowledged"},
    )
    assert r.status_code == 409
    assert r.json()["detail"]["code"] == "invalid_transition"

    r = client.post(f"/sos/{event['id']}/resolve", headers=auth_headers(officer, role="police"), json={"notes": "ok"})
    assert r.json()["status"] == "resolved"

    r = client.post(f"/sos/{event['id']}/safe", headers=auth_headers(user))
    assert r.status_code == 409


def test_other_users_cannot_see_event(client, new_user_id):
    owner, stranger = new_user_id(), new_user_id()
    event = client.post("/sos/trigger", headers=auth_headers(owner), json=TRIGGER_BODY).json()
    assert client.get(f"/sos/{event['id']}", headers=auth_headers(owner)).status_code == 200
    assert client.get(f"/sos/{event['id']}", headers=auth_headers(stranger)).status_code == 404
    assert client.get("/sos/does-not-exist", headers=auth_headers(owner)).status_code == 404


def test_mark_safe_and_history_api(client, new_user_id):
    user = new_user_id()
    event = client.post("/sos/trigger", headers=auth_headers(user), json=TRIGGER_BODY).json()
    r = client.post(f"/sos/{event['id']}/safe", headers=auth_headers(user))
    assert r.status_code == 200
    assert r.json()["status"] == "resolved"

    history = client.get("/sos/history", headers=auth_headers(user)).json()
    assert [e["id"] for e in history] == [event["id"]]


def test_active_list_is_for_responders_only(client, new_user_id):
    assert client.get("/sos/active", headers=auth_headers(new_user_id())).status_code == 403
