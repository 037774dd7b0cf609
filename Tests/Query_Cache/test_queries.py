# test_queries.py
#
# Query/mutation facade tests: cache keys, invalidation reports and offline fallbacks.
#
# Imports
#
# Third-Party Imports
import httpx
import pytest
#
# Local Imports
from course_tracker.courses_api.exceptions import APIConnectionError
from course_tracker.DB.Course_Tracker_DB import ValidationError
from course_tracker.Query.queries import (
    ALL, COURSES, STATS, SUGGESTIONS, VISIT_MUTATION_KEYS, VISITS, WISHLIST, CourseTrackerQueries
)
from course_tracker.Sync.Sync_Engine import SyncEngine
from course_tracker.Sync.Sync_Triggers import TriggerReason
#
#######################################################################################################################
#
# Fixtures

pytestmark = pytest.mark.asyncio

USER_ID = "u1"


@pytest.fixture
def queries(signed_in_session, seeded_repo):
    engine = SyncEngine(seeded_repo, signed_in_session.api, user_id_provider=lambda: signed_in_session.user_id,
                        retry_base_seconds=1.0, retry_max_seconds=8.0)
    return CourseTrackerQueries(signed_in_session, seeded_repo, engine)


async def _record(queries, visit_id="v1", **overrides):
    args = {"course_id": "c1", "visit_date": "2024-05-01", "holes_played": 18, "gross_score": 85,
            "tee_box_id": "t1", "visit_id": visit_id}
    args.update(overrides)
    return await queries.record_visit(**args)


#######################################################################################################################
#
# Queries

class TestCourseQueries:
    async def test_remote_search_is_cached_and_stored(self, queries, fake_server, make_course):
        fake_server.course_deltas = [make_course("c3", name="Bandon Dunes")]

        first = await queries.list_courses(search="Bandon")
        second = await queries.list_courses(search="Bandon")

        assert [c.id for c in first] == ["c3"]
        assert second == first
        assert len(fake_server.calls("GET", "/api/courses")) == 1
        assert queries.repository.course_exists("c3")

    async def test_offline_search_falls_back_to_local_store(self, queries, fake_server):
        fake_server.fail("GET", "/api/courses", exc=httpx.ConnectError)
        courses = await queries.list_courses(country="Scotland")
        assert [c.id for c in courses] == ["c2"]

    async def test_offline_search_with_nothing_local_raises(self, queries, fake_server):
        fake_server.fail("GET", "/api/courses", exc=httpx.ConnectError)
        with pytest.raises(APIConnectionError):
            await queries.list_courses(country="Japan")

    async def test_offline_page_past_local_rows_raises(self, queries, fake_server):
        fake_server.fail("GET", "/api/courses", exc=httpx.ConnectError)
        with pytest.raises(APIConnectionError):
            await queries.list_courses(skip=50, take=50)

    async def test_course_detail_falls_back_to_local_copy(self, queries, fake_server):
        fake_server.fail("GET", "/api/courses/c1", exc=httpx.ConnectError)
        detail = await queries.get_course_detail("c1")
        assert [t.id for t in detail.tee_boxes] == ["t1"]

    async def test_course_detail_from_server_refreshes_tee_boxes(self, queries, fake_server, make_course,
                                                                 make_tee_box):
        fake_server.course_deltas = [make_course("c1", server_updated_at="2024-05-01T00:00:00Z",
                                                 tee_boxes=[make_tee_box("t9", name="Black", par_total=71)])]
        detail = await queries.get_course_detail("c1")
        assert [t.id for t in detail.tee_boxes] == ["t9"]
        assert [t.id for t in queries.repository.list_tee_boxes("c1")] == ["t9"]


class TestLocalQueries:
    async def test_visits_are_read_locally_and_cached(self, queries):
        await _record(queries)
        visits = await queries.list_visits()
        assert [v.id for v in visits] == ["v1"]
        assert (VISITS + (USER_ID, None, None, None, None, 0)) in queries.cache

    async def test_signed_out_reads_are_refused(self, session, seeded_repo):
        queries = CourseTrackerQueries(session, seeded_repo)
        with pytest.raises(ValidationError, match="signed-in"):
            await queries.list_wishlist()

    async def test_stats_and_timeline(self, queries):
        overview = await queries.get_stats_overview()
        timeline = await queries.get_stats_timeline("year")
        assert overview.total_courses == 2
        assert timeline[0].courses_played == 2
        assert STATS + ("overview",) in queries.cache

    async def test_public_profile_combines_stats_and_courses(self, queries, fake_server):
        profile = await queries.get_public_profile("pat")
        assert profile.slug == "pat"
        assert profile.stats.total_visits == 1
        assert [v.course_id for v in profile.visited_courses] == ["c1"]
        assert len(fake_server.calls("GET")) == 2


#######################################################################################################################
#
# Mutations

class TestMutations:
    async def test_record_visit_reports_invalidated_keys(self, queries):
        await queries.list_visits()
        await queries.list_visited_courses()
        cached_visits_key = VISITS + (USER_ID, None, None, None, None, 0)

        result = await _record(queries)

        assert result.value.id == "v1"
        assert result.invalidated == VISIT_MUTATION_KEYS
        assert cached_visits_key in result.removed
        assert len(result.removed) == 2
        assert [v.id for v in await queries.list_visits()] == ["v1"]

    async def test_update_and_delete_visit(self, queries):
        await _record(queries)
        updated = await queries.update_visit("v1", gross_score=72)
        assert updated.value.to_par == 0
        assert updated.invalidated == VISIT_MUTATION_KEYS

        deleted = await queries.delete_visit("v1")
        assert deleted.value == "v1"
        assert await queries.list_visits() == []

    async def test_invalid_visit_changes_nothing(self, queries):
        await queries.list_visits()
        with pytest.raises(ValidationError):
            await _record(queries, course_id="nope")
        assert len(queries.cache.keys()) == 1

    async def test_toggle_wishlist(self, queries):
        added = await queries.toggle_wishlist("c1")
        assert added.value is True
        assert added.invalidated == [WISHLIST]
        assert [e.course_id for e in await queries.list_wishlist()] == ["c1"]

        removed = await queries.toggle_wishlist("c1")
        assert removed.value is False
        assert await queries.list_wishlist() == []

    async def test_removing_unlisted_course_invalidates_nothing(self, queries):
        await queries.list_wishlist()
        result = await queries.remove_from_wishlist("c2")
        assert result.value is None
        assert result.invalidated == []
        assert len(queries.cache.keys()) == 1

    async def test_add_to_wishlist(self, queries):
        result = await queries.add_to_wishlist("c2")
        assert result.value.course_id == "c2"
        assert result.value.is_dirty is True

    async def test_suggest_course(self, queries):
        result = await queries.suggest_course("Sand Valley", "1 Sand Rd", "Nekoosa", "USA", state_region="WI")
        assert result.value.status == "Pending"
        assert result.invalidated == [SUGGESTIONS]
        assert [s.name for s in await queries.list_course_suggestions()] == ["Sand Valley"]


class TestTriggerSync:
    async def test_successful_cycle_invalidates_everything(self, queries):
        await queries.list_visits()
        await queries.get_stats_overview()

        result = await queries.trigger_sync()

        assert result.value.failed is False
        assert result.invalidated == [ALL]
        assert queries.cache.keys() == []

    async def test_failed_cycle_with_no_changes_keeps_cache(self, queries, fake_server):
        await queries.list_visits()
        fake_server.fail("GET", "/api/courses/delta", exc=httpx.ConnectError)

        result = await queries.trigger_sync()

        assert result.value.failed is True
        assert result.invalidated == []
        assert len(queries.cache.keys()) == 1

    async def test_pushed_rows_invalidate_even_if_pull_failed(self, queries, fake_server):
        await _record(queries)
        await queries.list_courses()
        fake_server.fail("GET", "/api/courses/delta", status=500)

        result = await queries.trigger_sync()

        assert result.value.pushed == [("visits", "v1", "create")]
        assert result.invalidated == [ALL]
        assert not any(key[:1] == COURSES for key in queries.cache.keys())

    async def test_cycle_started_by_the_engine_invalidates_too(self, queries):
        await _record(queries)
        await queries.list_visits()

        report = await queries.sync_engine.trigger(TriggerReason.RECONNECT)

        assert report.pushed == [("visits", "v1", "create")]
        assert queries.cache.keys() == []
        visits = await queries.list_visits()
        assert [(v.id, v.is_dirty) for v in visits] == [("v1", False)]

    async def test_without_engine(self, signed_in_session, seeded_repo):
        queries = CourseTrackerQueries(signed_in_session, seeded_repo)
        with pytest.raises(ValidationError):
            await queries.trigger_sync()

#
# End of test_queries.py
########################################################################################################################
