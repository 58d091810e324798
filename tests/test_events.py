"""Post-commit event delivery."""

from sqlalchemy import text

from common.events import EventBus, bus, publish_after_commit

EVENT = "test.something_changed"


class Recorder:
    def __init__(self):
        self.payloads = []

    def __call__(self, payload):
        self.payloads.append(payload)


def test_failing_handler_does_not_stop_others():
    local = EventBus()
    recorder = Recorder()

    def broken(payload):
        raise RuntimeError("boom")

    local.subscribe(EVENT, broken)
    local.subscribe(EVENT, recorder)
    local.publish(EVENT, {"n": 1})

    assert recorder.payloads == [{"n": 1}]


def test_delivered_only_after_commit(db):
    recorder = Recorder()
    bus.subscribe(EVENT, recorder)
    try:
        db.execute(text("SELECT 1"))
        publish_after_commit(db, EVENT, {"n": 1})
        assert recorder.payloads == []
        db.commit()
        assert recorder.payloads == [{"n": 1}]

        # delivered once
        db.execute(text("SELECT 1"))
        db.commit()
        assert recorder.payloads == [{"n": 1}]
    finally:
        bus.unsubscribe(EVENT, recorder)


def test_discarded_on_rollback(db):
    recorder = Recorder()
    bus.subscribe(EVENT, recorder)
    try:
        db.execute(text("SELECT 1"))
        publish_after_commit(db, EVENT, {"n": 1})
        db.rollback()
        db.execute(text("SELECT 1"))
        db.commit()
    finally:
        bus.unsubscribe(EVENT, recorder)

    assert recorder.payloads == []


def test_savepoint_rollback_keeps_outer_events(db):
    recorder = Recorder()
    bus.subscribe(EVENT, recorder)
    try:
        db.execute(text("SELECT 1"))
        publish_after_commit(db, EVENT, {"n": 1})
        savepoint = db.begin_nested()
        savepoint.rollback()
        db.commit()
    finally:
        bus.unsubscribe(EVENT, recorder)

    assert recorder.payloads == [{"n": 1}]
