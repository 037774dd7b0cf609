# test_core.py
#
#
# Imports
import asyncio
import json
import sys
#
# Third-Party Imports
import pytest
from loguru import logger
#
# Local Imports
from course_tracker import config
from course_tracker.core import CourseTrackerCore, create_core
from course_tracker.DB.Course_Tracker_DB import StorageError
from course_tracker.Logging_Config import setup_logger
from course_tracker.Sync.Sync_Engine import SyncPhase
from course_tracker.Sync.Sync_Triggers import TriggerReason
#
#######################################################################################################################
#
# Fixtures

@pytest.fixture
def restore_logger():
    yield
    logger.remove()
    logger.add(sys.stderr)


def _wait_for_idle(core):
    finished = asyncio.Event()

    def on_phase(phase):
        if phase == SyncPhase.IDLE:
            finished.set()
    core.sync_engine.add_listener(on_phase)
    return finished


#######################################################################################################################
#
# Tests

@pytest.mark.asyncio
async def test_start_runs_a_startup_sync(tmp_path, signed_in_session, fake_server):
    core = CourseTrackerCore(db_path=tmp_path / "data" / "courses-tracker.db", session=signed_in_session)
    finished = _wait_for_idle(core)

    core.start()
    await asyncio.wait_for(finished.wait(), timeout=2.0)

    assert core.is_running
    assert core.sync_engine.status().last_report.reason == TriggerReason.STARTUP
    assert fake_server.calls("GET", "/api/courses/delta")
    await core.close()
    assert not core.is_running


@pytest.mark.asyncio
async def test_signed_out_start_does_not_queue_a_sync(tmp_path, session):
    core = CourseTrackerCore(db_path=tmp_path / "courses-tracker.db", session=session)
    core.start()
    assert core.triggers.pending() is False
    await core.close()


@pytest.mark.asyncio
async def test_reconnect_triggers_a_cycle(tmp_path, signed_in_session):
    core = CourseTrackerCore(db_path=tmp_path / "courses-tracker.db", session=signed_in_session)
    core.connectivity.update(False)
    finished = _wait_for_idle(core)
    core.start()
    # Drain the startup sync before reporting the reconnect.
    await asyncio.wait_for(finished.wait(), timeout=2.0)
    finished.clear()

    assert core.connectivity.update(True) is True
    await asyncio.wait_for(finished.wait(), timeout=2.0)
    assert core.sync_engine.status().last_report.reason == TriggerReason.RECONNECT
    await core.close()


@pytest.mark.asyncio
async def test_background_sync_refreshes_cached_visits(tmp_path, signed_in_session, fake_server,
                                                       make_course, make_tee_box):
    fake_server.course_deltas = [make_course("c1", tee_boxes=[make_tee_box("t1", "c1")])]
    core = CourseTrackerCore(db_path=tmp_path / "courses-tracker.db", session=signed_in_session)
    finished = _wait_for_idle(core)
    core.start()
    await asyncio.wait_for(finished.wait(), timeout=2.0)
    finished.clear()

    await core.queries.record_visit(course_id="c1", visit_date="2024-05-01", holes_played=18, visit_id="v1")
    cached = await core.queries.list_visits()
    assert [(v.id, v.is_dirty) for v in cached] == [("v1", True)]

    fake_server.visits = [{"id": "srv-v9", "userId": "u1", "courseId": "c1", "visitDate": "2024-05-02",
                           "holesPlayed": 18, "serverUpdatedAt": "2024-06-02T00:00:00Z"}]
    core.connectivity.update(False)
    core.connectivity.update(True)
    await asyncio.wait_for(finished.wait(), timeout=2.0)

    visits = await core.queries.list_visits()
    assert sorted((v.id, v.is_dirty) for v in visits) == [("srv-v9", False), ("v1", False)]
    await core.close()


@pytest.mark.asyncio
async def test_close_after_sync_loop_died(tmp_path, signed_in_session, mocker, restore_logger):
    errors = []
    logger.add(errors.append, level="ERROR")
    core = CourseTrackerCore(db_path=tmp_path / "courses-tracker.db", session=signed_in_session)
    mocker.patch.object(core.repository, "list_dirty_visits", side_effect=StorageError("disk I/O error"))

    core.start()
    sync_task = core._sync_task
    await asyncio.wait([sync_task], timeout=2.0)
    await asyncio.sleep(0)

    assert isinstance(sync_task.exception(), StorageError)
    assert any("Sync loop stopped" in message for message in errors)

    await core.close()

    assert not core.is_running
    assert core.db._conn is None
    assert any("Sync loop had failed before shutdown" in message for message in errors)


def test_create_core_uses_configured_paths(tmp_path, monkeypatch, restore_logger, session):
    config_path = tmp_path / "config" / "config.toml"
    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(f'[database]\ndb_path = "{(tmp_path / "store" / "ct.db").as_posix()}"\n',
                           encoding="utf-8")
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)

    core = create_core(session=session, configure_logging=False)

    assert core.db.db_path == (tmp_path / "store" / "ct.db").resolve()
    core.db.close_connection()


def test_sync_events_go_to_the_json_log(tmp_path, restore_logger):
    app_log = tmp_path / "logs" / "app.log"
    events_log = tmp_path / "logs" / "sync_events.jsonl"
    setup_logger("DEBUG", app_log_path=app_log, sync_events_log_path=events_log, console=False)

    logger.bind(sync_event="cycle").info("cycle finished")
    logger.info("ordinary message")
    logger.complete()
    logger.remove()

    events = [json.loads(line) for line in events_log.read_text(encoding="utf-8").splitlines() if line]
    assert [e["record"]["message"] for e in events] == ["cycle finished"]
    assert events[0]["record"]["extra"]["sync_event"] == "cycle"
    app_text = app_log.read_text(encoding="utf-8")
    assert "ordinary message" in app_text
    assert "cycle finished" in app_text

#
# End of test_core.py
########################################################################################################################
