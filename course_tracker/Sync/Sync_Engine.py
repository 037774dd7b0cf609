# Sync_Engine.py
# Description: Push/pull reconciliation of the local store against the course tracker API.
#
"""
Sync_Engine.py
--------------

One sync cycle is: push every dirty row (best effort per row), submit pending
course suggestions, then pull each collection since its stored checkpoint.

    IDLE -> PUSHING -> PULLING -> IDLE
                  \\-> FAILED -> IDLE

Only one cycle runs at a time. `trigger()` called while a cycle is in flight
does no work and returns None; the running cycle reads dirty rows fresh, so it
already covers whatever the late trigger was for.

Network failures never escape a cycle: a failed push leaves its row dirty for
the next cycle, a failed pull leaves that collection's checkpoint unchanged and
ends the pull phase. `StorageError` is not caught.
"""
# Imports
import asyncio
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple
#
# Third-Party Imports
from loguru import logger
#
# Local Imports
from course_tracker.config import get_setting
from course_tracker.courses_api.client import CourseTrackerAPIClient
from course_tracker.courses_api.exceptions import APIResponseError, NetworkError
from course_tracker.courses_api.schemas import CourseSuggestionRequest, CreateVisitRequest, UpdateVisitRequest
from course_tracker.DB.Course_Tracker_DB import ValidationError
from course_tracker.DB.Entity_Repository import ApplyResult, EntityRepository, LAST_SYNC_AT_KEY
from course_tracker.models import Visit, WishlistEntry
from course_tracker.Sync.Sync_Triggers import SyncTriggerChannel, TriggerReason
from course_tracker.utils.timestamps import max_timestamp, parse_server_timestamp, utc_now_iso
#
#######################################################################################################################
#
# Functions:

PULL_COLLECTIONS = ("courses", "course_suggestions", "visits", "wishlist_entries")


class SyncPhase(str, Enum):
    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    FAILED = "failed"


@dataclass
class SyncFailure:
    table: str
    entity_id: str
    operation: str
    reason: str


@dataclass
class SyncReport:
    """What a single cycle did."""
    reason: TriggerReason
    started_at: str
    finished_at: Optional[str] = None
    pushed: List[Tuple[str, str, str]] = field(default_factory=list)  # (table, id, operation)
    failures: List[SyncFailure] = field(default_factory=list)
    pulled: Dict[str, int] = field(default_factory=dict)
    skipped: Dict[str, List[str]] = field(default_factory=dict)
    rejected: Dict[str, List[str]] = field(default_factory=dict)
    checkpoints: Dict[str, Optional[str]] = field(default_factory=dict)
    pull_error: Optional[str] = None

    @property
    def network_writes(self) -> int:
        return sum(1 for _, _, op in self.pushed if op != "discard")

    @property
    def failed(self) -> bool:
        return bool(self.failures) or self.pull_error is not None


@dataclass(frozen=True)
class SyncStatus:
    phase: SyncPhase
    last_sync_at: Optional[str]
    last_report: Optional[SyncReport]
    pending: Dict[str, int]
    consecutive_failures: int


SyncListener = Callable[[SyncPhase], Any]
ReportListener = Callable[[SyncReport], Any]


class _RowPushFailed(Exception):
    """A push response that cannot confirm the row."""


class SyncEngine:
    """
    Reconciles the local store with the remote API.

    Args:
        repository: Local entity repository.
        api: Remote gateway.
        user_id_provider: Returns the signed-in user's id, or None when signed out.
            Pulled rows missing a userId are attributed to this user.
        retry_base_seconds / retry_max_seconds: Backoff for `run_forever` after a failed cycle.
    """

    def __init__(self, repository: EntityRepository, api: CourseTrackerAPIClient,
                 user_id_provider: Callable[[], Optional[str]],
                 retry_base_seconds: Optional[float] = None, retry_max_seconds: Optional[float] = None):
        self.repository = repository
        self.api = api
        self.user_id_provider = user_id_provider
        self.retry_base_seconds = (retry_base_seconds if retry_base_seconds is not None
                                   else get_setting("sync", "retry_base_seconds", 5.0, float))
        self.retry_max_seconds = (retry_max_seconds if retry_max_seconds is not None
                                  else get_setting("sync", "retry_max_seconds", 300.0, float))
        self._phase = SyncPhase.IDLE
        self._busy = False
        self._listeners: List[SyncListener] = []
        self._report_listeners: List[ReportListener] = []
        self._last_report: Optional[SyncReport] = None
        self.consecutive_failures = 0
        self.coalesced_triggers = 0

    # --- Status & Listeners ---
    @property
    def phase(self) -> SyncPhase:
        return self._phase

    @property
    def is_busy(self) -> bool:
        return self._busy

    def add_listener(self, listener: SyncListener):
        self._listeners.append(listener)

    def remove_listener(self, listener: SyncListener):
        if listener in self._listeners:
            self._listeners.remove(listener)

    def add_report_listener(self, listener: ReportListener):
        """Registers `listener` to receive the SyncReport of every cycle that ran, however it was triggered."""
        self._report_listeners.append(listener)

    def remove_report_listener(self, listener: ReportListener):
        if listener in self._report_listeners:
            self._report_listeners.remove(listener)

    def _notify_report(self, report: SyncReport):
        for listener in list(self._report_listeners):
            try:
                listener(report)
            except Exception as e:
                logger.error(f"Sync report listener {listener!r} raised: {e}")

    def _set_phase(self, phase: SyncPhase):
        if phase == self._phase:
            return
        self._phase = phase
        for listener in list(self._listeners):
            try:
                listener(phase)
            except Exception as e:
                logger.error(f"Sync listener {listener!r} raised on phase {phase.value}: {e}")

    def status(self) -> SyncStatus:
        return SyncStatus(
            phase=self._phase,
            last_sync_at=self.repository.get_sync_value(LAST_SYNC_AT_KEY),
            last_report=self._last_report,
            pending=self.repository.pending_counts(),
            consecutive_failures=self.consecutive_failures,
        )

    def retry_delay(self) -> float:
        """Backoff before the next automatic attempt; zero while cycles are succeeding."""
        if self.consecutive_failures == 0:
            return 0.0
        return min(self.retry_base_seconds * (2 ** (self.consecutive_failures - 1)), self.retry_max_seconds)

    # --- Cycle ---
    async def trigger(self, reason: TriggerReason = TriggerReason.MANUAL) -> Optional[SyncReport]:
        """
        Runs one sync cycle unless one is already running.

        Returns:
            The cycle's SyncReport, or None when the trigger was coalesced into a
            running cycle or nobody is signed in.
        """
        # Checked and set before any await.
        if self._busy:
            self.coalesced_triggers += 1
            logger.debug(f"Sync trigger '{reason.value}' coalesced into the running cycle")
            return None
        user_id = self.user_id_provider()
        if not user_id:
            logger.info(f"Sync trigger '{reason.value}' ignored: no signed-in user")
            return None

        self._busy = True
        report = SyncReport(reason=reason, started_at=utc_now_iso())
        log = logger.bind(sync_event="cycle")
        log.info(f"Sync cycle started ({reason.value})")
        completed = False
        try:
            self._set_phase(SyncPhase.PUSHING)
            await self._push(report)
            self._set_phase(SyncPhase.PULLING)
            await self._pull(report, user_id)
            completed = True
        finally:
            report.finished_at = utc_now_iso()
            self._last_report = report
            if report.failed or not completed:
                self.consecutive_failures += 1
                self._set_phase(SyncPhase.FAILED)
            else:
                self.consecutive_failures = 0
                self.repository.set_sync_value(LAST_SYNC_AT_KEY, report.finished_at)
            self._busy = False
            self._set_phase(SyncPhase.IDLE)

        log.bind(pushed=len(report.pushed), failures=len(report.failures), pulled=report.pulled).info(
            f"Sync cycle finished: {len(report.pushed)} pushed, {len(report.failures)} failed, "
            f"pulled {report.pulled}" + (f", pull aborted: {report.pull_error}" if report.pull_error else ""))
        self._notify_report(report)
        return report

    # --- Push ---
    async def _push(self, report: SyncReport):
        # Single snapshot of dirty rows per table, read at phase start.
        dirty_visits = self.repository.list_dirty_visits()
        dirty_wishlist = self.repository.list_dirty_wishlist_entries()
        pending_suggestions = self.repository.list_unsubmitted_suggestions()
        logger.debug(f"Push snapshot: {len(dirty_visits)} visits, {len(dirty_wishlist)} wishlist entries, "
                     f"{len(pending_suggestions)} suggestions")

        for visit in dirty_visits:
            await self._push_row("visits", visit.id, self._push_visit(visit), report)
        for entry in dirty_wishlist:
            await self._push_row("wishlist_entries", entry.id, self._push_wishlist_entry(entry), report)
        for suggestion in pending_suggestions:
            request = CourseSuggestionRequest.model_validate(suggestion.model_dump())
            await self._push_row("course_suggestions", suggestion.id,
                                 self._submit_suggestion(suggestion.id, request), report)

    async def _push_row(self, table: str, entity_id: str, operation: Awaitable[str], report: SyncReport):
        try:
            op_name = await operation
        except (NetworkError, _RowPushFailed, ValidationError) as e:
            logger.bind(sync_event="push_failed").warning(f"Push of {table} {entity_id} failed, left dirty: {e}")
            report.failures.append(SyncFailure(table, entity_id, "push", str(e)))
            return
        report.pushed.append((table, entity_id, op_name))

    async def _push_visit(self, visit: Visit) -> str:
        if visit.is_deleted:
            if visit.server_updated_at is None:
                self.repository.mark_synced("visits", visit.id, None, pushed=visit)
                return "discard"
            try:
                await self.api.delete_visit(visit.id)
            except APIResponseError as e:
                if e.status_code != 404:
                    raise
                logger.debug(f"Visit {visit.id} already gone on the server")
            self.repository.mark_synced("visits", visit.id, None, pushed=visit)
            return "delete"

        fields = visit.model_dump(include={"course_id", "visit_date", "holes_played", "gross_score",
                                           "tee_box_id", "tee_name"})
        if visit.server_updated_at is None:
            record = await self.api.create_visit(CreateVisitRequest(id=visit.id, **fields))
            operation = "create"
        else:
            record = await self.api.update_visit(visit.id, UpdateVisitRequest(**fields))
            operation = "update"
        self._confirm("visits", visit, record.server_updated_at)
        return operation

    async def _push_wishlist_entry(self, entry: WishlistEntry) -> str:
        if entry.is_deleted:
            if entry.server_updated_at is None:
                self.repository.mark_synced("wishlist_entries", entry.id, None, pushed=entry)
                return "discard"
            try:
                await self.api.remove_from_wishlist(entry.course_id)
            except APIResponseError as e:
                if e.status_code != 404:
                    raise
            self.repository.mark_synced("wishlist_entries", entry.id, None, pushed=entry)
            return "delete"

        if entry.server_updated_at is not None:
            # Wishlist entries have no editable fields; the server already holds this one.
            self.repository.mark_synced("wishlist_entries", entry.id, None, pushed=entry)
            return "discard"
        record = await self.api.add_to_wishlist(entry.course_id)
        self._confirm("wishlist_entries", entry, record.server_updated_at)
        return "create"

    async def _submit_suggestion(self, local_id: str, request: CourseSuggestionRequest) -> str:
        confirmed = await self.api.submit_course_suggestion(request)
        self.repository.confirm_course_suggestion(local_id, confirmed)
        return "create"

    def _confirm(self, table: str, pushed, server_updated_at: Optional[str]):
        if not server_updated_at:
            raise _RowPushFailed("server response is missing serverUpdatedAt")
        try:
            parse_server_timestamp(server_updated_at)
        except ValueError as e:
            raise _RowPushFailed(f"server returned an invalid serverUpdatedAt {server_updated_at!r}") from e
        self.repository.mark_synced(table, pushed.id, server_updated_at, pushed=pushed)

    # --- Pull ---
    async def _pull(self, report: SyncReport, user_id: str):
        for collection in PULL_COLLECTIONS:
            since = self.repository.get_checkpoint(collection)
            try:
                result = await self._pull_collection(collection, since, user_id)
            except NetworkError as e:
                report.pull_error = f"{collection}: {e}"
                report.checkpoints[collection] = since
                logger.bind(sync_event="pull_failed").warning(
                    f"Pull of {collection} since {since} failed; checkpoint unchanged, pull phase aborted: {e}")
                return

            new_checkpoint = max_timestamp(result.checkpoint_candidates(), floor=since)
            report.checkpoints[collection] = self.repository.set_checkpoint(collection, new_checkpoint)
            report.pulled[collection] = len(result.applied)
            if result.skipped:
                report.skipped[collection] = list(result.skipped)
            if result.rejected:
                report.rejected[collection] = list(result.rejected)
            logger.debug(f"Pulled {collection} since {since}: {len(result.applied)} applied, "
                         f"{len(result.skipped)} skipped, {len(result.deferred)} deferred, "
                         f"checkpoint now {report.checkpoints[collection]}")

    async def _pull_collection(self, collection: str, since: Optional[str], user_id: str) -> ApplyResult:
        if collection == "courses":
            return self.repository.upsert_courses(await self.api.list_course_deltas(since=since))
        if collection == "course_suggestions":
            return self.repository.upsert_course_suggestions(await self.api.list_course_suggestion_deltas(since=since))
        if collection == "visits":
            records = await self.api.list_visits(since=since)
            return self.repository.apply_remote_visits(
                [{**r.model_dump(), "user_id": r.user_id or user_id} for r in records])
        if collection == "wishlist_entries":
            # Full list; the endpoint has no delta form.
            records = await self.api.list_wishlist()
            return self.repository.apply_remote_wishlist_entries(
                [{**r.model_dump(), "user_id": r.user_id or user_id,
                  "created_at": r.created_at or r.server_updated_at} for r in records])
        raise ValueError(f"Unknown sync collection: {collection}")

    # --- Trigger Loop ---
    async def run_forever(self, channel: SyncTriggerChannel):
        """
        Consumes triggers from `channel` until cancelled. After a failed cycle a
        retry is scheduled with exponential backoff; any other trigger still runs
        immediately.
        """
        logger.info("Sync trigger loop started")
        while True:
            delay = self.retry_delay()
            try:
                if delay > 0:
                    reason = await asyncio.wait_for(channel.next(), timeout=delay)
                else:
                    reason = await channel.next()
            except asyncio.TimeoutError:
                reason = TriggerReason.RETRY
            await self.trigger(reason)


#
# End of Sync_Engine.py
#######################################################################################################################
