# queries.py
# Description: Typed queries and mutations the UI calls; every mutation reports the cache keys it invalidates.
#
# Imports
import asyncio
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any, Generic, List, Optional, TypeVar
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from course_tracker.courses_api.exceptions import NetworkError
from course_tracker.courses_api.schemas import PublicProfile, StatsOverview, StatsTimelinePoint, TimelineGroupBy
from course_tracker.DB.Course_Tracker_DB import ValidationError
from course_tracker.DB.Entity_Repository import EntityRepository
from course_tracker.models import Course, CourseDetail, CourseSuggestion, Visit, VisitedCourse, WishlistEntry
from course_tracker.Query.query_cache import QueryKey
from course_tracker.Sync.Sync_Engine import SyncEngine, SyncReport
from course_tracker.Sync.Sync_Triggers import TriggerReason
from course_tracker.utils.timestamps import generate_id

if TYPE_CHECKING:
    from course_tracker.session import AppSession
#
#######################################################################################################################
#
# Functions:

T = TypeVar("T")

# Cache key prefixes
COURSES = ("courses",)
COURSE = ("course",)
VISITS = ("visits",)
VISITED_COURSES = ("visitedCourses",)
WISHLIST = ("wishlist",)
STATS = ("stats",)
PUBLIC_PROFILE = ("publicProfile",)
SUGGESTIONS = ("courseSuggestions",)
ALL: QueryKey = ()

VISIT_MUTATION_KEYS = [VISITS, VISITED_COURSES, STATS]


@dataclass
class MutationResult(Generic[T]):
    """
    value: what the mutation produced.
    invalidated: the cache key prefixes the mutation invalidates (always reported).
    removed: the concrete cached keys that were dropped.
    """
    value: T
    invalidated: List[QueryKey] = field(default_factory=list)
    removed: List[QueryKey] = field(default_factory=list)


class CourseTrackerQueries:
    """
    Query façade over the local store, the remote API and the session's cache.

    Course and stats queries go to the API through the cache; visit, wishlist
    and suggestion reads come from the local store so they work offline.
    """

    def __init__(self, session: "AppSession", repository: EntityRepository, sync_engine: Optional[SyncEngine] = None):
        self.session = session
        self.repository = repository
        self.sync_engine = sync_engine
        self._last_sync_result: Optional[MutationResult[Optional[SyncReport]]] = None
        if sync_engine is not None:
            sync_engine.add_report_listener(self._on_sync_report)

    @property
    def cache(self):
        return self.session.cache

    def _require_user(self) -> str:
        user_id = self.session.user_id
        if not user_id:
            raise ValidationError("No signed-in user")
        return user_id

    def _invalidate(self, prefixes: List[QueryKey]) -> List[QueryKey]:
        removed: List[QueryKey] = []
        for prefix in prefixes:
            removed.extend(self.cache.invalidate(prefix))
        return removed

    def _mutation(self, value: T, prefixes: List[QueryKey]) -> MutationResult[T]:
        return MutationResult(value=value, invalidated=list(prefixes), removed=self._invalidate(prefixes))

    # --- Courses ---
    async def list_courses(self, search: Optional[str] = None, country: Optional[str] = None,
                           region: Optional[str] = None, near: Optional[str] = None,
                           radius_km: Optional[float] = None, skip: int = 0, take: int = 50) -> List[Course]:
        """Searches the catalog remotely; offline, answers from locally stored courses when it has any."""
        key = COURSES + (search, country, region, near, radius_km, skip, take)

        async def fetch():
            courses = await self.session.api.list_courses(search=search, country=country, region=region, near=near,
                                                          radius_km=radius_km, skip=skip, take=take)
            self.repository.upsert_courses(courses)
            return courses

        try:
            return await self.cache.fetch(key, fetch)
        except NetworkError as e:
            local = self.repository.list_courses(search=search, country=country, region=region,
                                                 limit=take, offset=skip)
            if not local:
                raise
            logger.info(f"Course search served from local store ({len(local)} rows): {e}")
            return local

    async def get_course_detail(self, course_id: str) -> CourseDetail:
        key = COURSE + (course_id,)

        async def fetch():
            detail = await self.session.api.get_course(course_id)
            self.repository.upsert_courses([detail])
            return detail

        try:
            return await self.cache.fetch(key, fetch)
        except NetworkError as e:
            local = self.repository.get_course(course_id)
            if local is None:
                raise
            logger.info(f"Course {course_id} served from local store: {e}")
            return local

    # --- Local reads ---
    async def list_visits(self, course_id: Optional[str] = None, year: Optional[int] = None,
                          country: Optional[str] = None, limit: Optional[int] = None,
                          offset: int = 0) -> List[Visit]:
        user_id = self._require_user()
        key = VISITS + (user_id, course_id, year, country, limit, offset)

        async def fetch():
            return self.repository.list_visits(user_id, course_id=course_id, year=year, country=country,
                                               limit=limit, offset=offset)
        return await self.cache.fetch(key, fetch)

    async def list_visited_courses(self) -> List[VisitedCourse]:
        user_id = self._require_user()

        async def fetch():
            return self.repository.list_visited_courses(user_id)
        return await self.cache.fetch(VISITED_COURSES + (user_id,), fetch)

    async def list_wishlist(self) -> List[WishlistEntry]:
        user_id = self._require_user()

        async def fetch():
            return self.repository.list_wishlist(user_id)
        return await self.cache.fetch(WISHLIST + (user_id,), fetch)

    async def list_course_suggestions(self) -> List[CourseSuggestion]:
        user_id = self._require_user()

        async def fetch():
            return self.repository.list_course_suggestions(user_id)
        return await self.cache.fetch(SUGGESTIONS + (user_id,), fetch)

    # --- Stats & Profiles ---
    async def get_stats_overview(self) -> StatsOverview:
        return await self.cache.fetch(STATS + ("overview",), self.session.api.get_stats_overview)

    async def get_stats_timeline(self, group_by: TimelineGroupBy = "year") -> List[StatsTimelinePoint]:
        async def fetch():
            return await self.session.api.get_stats_timeline(group_by)
        return await self.cache.fetch(STATS + ("timeline", group_by), fetch)

    async def get_public_profile(self, slug: str) -> PublicProfile:
        async def fetch():
            stats, visited = await asyncio.gather(
                self.session.api.get_public_stats(slug),
                self.session.api.get_public_visited_courses(slug),
            )
            return PublicProfile(slug=slug, stats=stats, visited_courses=visited)
        return await self.cache.fetch(PUBLIC_PROFILE + (slug,), fetch)

    # --- Visit Mutations ---
    async def record_visit(self, course_id: str, visit_date: str, holes_played: int,
                           gross_score: Optional[int] = None, tee_box_id: Optional[str] = None,
                           tee_name: Optional[str] = None, visit_id: Optional[str] = None) -> MutationResult[Visit]:
        visit = self.repository.create_visit({
            "id": visit_id or generate_id(),
            "user_id": self._require_user(),
            "course_id": course_id,
            "visit_date": visit_date,
            "holes_played": holes_played,
            "gross_score": gross_score,
            "tee_box_id": tee_box_id,
            "tee_name": tee_name,
        })
        return self._mutation(visit, VISIT_MUTATION_KEYS)

    async def update_visit(self, visit_id: str, **changes: Any) -> MutationResult[Visit]:
        self._require_user()
        visit = self.repository.update_visit(visit_id, changes)
        return self._mutation(visit, VISIT_MUTATION_KEYS)

    async def delete_visit(self, visit_id: str) -> MutationResult[str]:
        self._require_user()
        self.repository.soft_delete_visit(visit_id)
        return self._mutation(visit_id, VISIT_MUTATION_KEYS)

    # --- Wishlist Mutations ---
    async def add_to_wishlist(self, course_id: str) -> MutationResult[WishlistEntry]:
        entry = self.repository.add_wishlist_entry(self._require_user(), course_id)
        return self._mutation(entry, [WISHLIST])

    async def remove_from_wishlist(self, course_id: str) -> MutationResult[Optional[WishlistEntry]]:
        removed = self.repository.remove_wishlist_entry(self._require_user(), course_id)
        if removed is None:
            return MutationResult(value=None)
        return self._mutation(removed, [WISHLIST])

    async def toggle_wishlist(self, course_id: str) -> MutationResult[bool]:
        """Adds or removes the course; the value is whether it is wishlisted afterwards."""
        user_id = self._require_user()
        if self.repository.is_wishlisted(user_id, course_id):
            self.repository.remove_wishlist_entry(user_id, course_id)
            return self._mutation(False, [WISHLIST])
        self.repository.add_wishlist_entry(user_id, course_id)
        return self._mutation(True, [WISHLIST])

    # --- Suggestions ---
    async def suggest_course(self, name: str, address1: str, city: str, country: str,
                             **details: Any) -> MutationResult[CourseSuggestion]:
        suggestion = self.repository.create_course_suggestion({
            "submitted_by_user_id": self._require_user(),
            "name": name,
            "address1": address1,
            "city": city,
            "country": country,
            **details,
        })
        return self._mutation(suggestion, [SUGGESTIONS])

    # --- Sync ---
    async def trigger_sync(self, reason: TriggerReason = TriggerReason.MANUAL) -> MutationResult[Optional[SyncReport]]:
        """Runs a sync cycle. A cycle that completed, or that changed anything, invalidates every cached query."""
        if self.sync_engine is None:
            raise ValidationError("No sync engine configured")
        report = await self.sync_engine.trigger(reason)
        if report is None:
            return MutationResult(value=None)
        if self._last_sync_result is not None and self._last_sync_result.value is report:
            return self._last_sync_result
        return self._on_sync_report(report)

    def _on_sync_report(self, report: SyncReport) -> MutationResult[Optional[SyncReport]]:
        """Cache invalidation for every finished cycle, including background ones."""
        changed = bool(report.pushed) or any(report.pulled.values())
        if report.failed and not changed:
            result = MutationResult(value=report)
        else:
            result = self._mutation(report, [ALL])
            logger.debug(f"Sync cycle ({report.reason.value}) invalidated {len(result.removed)} cached queries")
        self._last_sync_result = result
        return result

#
# End of queries.py
#######################################################################################################################
