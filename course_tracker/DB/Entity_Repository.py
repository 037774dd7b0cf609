# Entity_Repository.py
# Description: Typed read/write operations over the course tracker local store.
#
"""
Entity_Repository.py
--------------------

Typed CRUD over the local store. Callers work with the entity models from
`course_tracker.models` and never see SQL or column names.

Rules enforced here:
- A visit must reference a course that exists locally (and, when given, a tee
  box of that course).
- At most one active wishlist entry per (user, course).
- Local mutations of visits and wishlist entries mark the row dirty; deletes are
  soft until `mark_synced()` confirms them, which then removes the row.
- `serverUpdatedAt` is only ever written from server data.

`StorageError` from the store is never caught here.
"""
# Imports
from dataclasses import dataclass, field
from datetime import date
from typing import Any, Dict, Iterable, List, Optional, Tuple, Type, TypeVar, Union
#
# Third-Party Libraries
import pydantic
from loguru import logger
from pydantic.alias_generators import to_camel
#
# Local Imports
from course_tracker.DB.Course_Tracker_DB import CourseTrackerDB, ValidationError
from course_tracker.models import (
    CamelModel, Course, CourseDetail, CourseSuggestion, TeeBox, Visit, VisitedCourse, WishlistEntry
)
from course_tracker.utils.timestamps import generate_id, is_later, parse_server_timestamp, utc_now_iso
#
########################################################################################################################
#
# Functions:

ModelT = TypeVar("ModelT", bound=CamelModel)

SYNCABLE_TABLES = ("visits", "wishlist_entries")
CHECKPOINT_KEY_PREFIX = "checkpoint:"
LAST_SYNC_AT_KEY = "lastSyncAt"

# Fields a local visit edit may change. Flags and serverUpdatedAt are not editable.
VISIT_EDITABLE_FIELDS = ("course_id", "visit_date", "holes_played", "gross_score", "tee_box_id", "tee_name")


def _columns(model: Type[CamelModel], exclude: Tuple[str, ...] = ()) -> List[str]:
    return [to_camel(name) for name in model.model_fields if name not in exclude]


COURSE_COLUMNS = _columns(Course)
TEE_BOX_COLUMNS = _columns(TeeBox)
VISIT_COLUMNS = _columns(Visit)
WISHLIST_COLUMNS = _columns(WishlistEntry)
SUGGESTION_COLUMNS = _columns(CourseSuggestion)


def _upsert_sql(table: str, columns: List[str]) -> str:
    placeholders = ", ".join(f":{c}" for c in columns)
    updates = ", ".join(f"{c} = excluded.{c}" for c in columns if c != "id")
    return (f"INSERT INTO {table} ({', '.join(columns)}) VALUES ({placeholders}) "
            f"ON CONFLICT(id) DO UPDATE SET {updates}")


def _validate(model: Type[ModelT], data: Union[ModelT, Dict[str, Any]], entity: str) -> ModelT:
    """Builds a model from a dict or re-validates a model, raising ValidationError on bad input."""
    try:
        if isinstance(data, CamelModel):
            data = data.model_dump(exclude_unset=True)
        return model.model_validate(data)
    except pydantic.ValidationError as e:
        entity_id = data.get("id") if isinstance(data, dict) else None
        raise ValidationError(f"Invalid {entity}: {e}", entity=entity, entity_id=entity_id) from e


def _is_valid_marker(value: Optional[str]) -> bool:
    if not value:
        return False
    try:
        parse_server_timestamp(value)
    except ValueError:
        return False
    return True


@dataclass
class ApplyResult:
    """Outcome of writing a batch of server rows."""
    applied: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)
    rejected: List[str] = field(default_factory=list)
    # serverUpdatedAt of every valid incoming row, applied or not.
    server_timestamps: List[str] = field(default_factory=list)
    # Rows that could not be written yet (id -> serverUpdatedAt); a later pull must see them again.
    deferred: Dict[str, str] = field(default_factory=dict)

    def checkpoint_candidates(self) -> List[str]:
        """Timestamps a checkpoint may advance to without skipping past a deferred row."""
        if not self.deferred:
            return list(self.server_timestamps)
        earliest = min(self.deferred.values(), key=parse_server_timestamp)
        return [ts for ts in self.server_timestamps if is_later(earliest, ts)]


class EntityRepository:
    """
    Typed operations over a `CourseTrackerDB`.

    Every public method is a single statement or a single transaction, so
    readers interleaving with a sync cycle always see committed state.
    """

    def __init__(self, db: CourseTrackerDB):
        self.db = db

    # --- Courses & Tee Boxes ---
    def upsert_courses(self, courses: Iterable[Union[Course, CourseDetail, Dict[str, Any]]]) -> ApplyResult:
        """
        Inserts or replaces server-owned courses, and their tee boxes when the payload carries them.

        Rows are written verbatim and never marked dirty. A course whose stored
        serverUpdatedAt is later than the incoming one is left untouched. When a
        payload includes `teeBoxes`, it is the complete set for that course and
        local tee boxes missing from it are removed.

        Args:
            courses: Course payloads as received from the server.

        Returns:
            ApplyResult with the written, skipped (older than local) and rejected (invalid) ids.
        """
        result = ApplyResult()
        with self.db.transaction():
            for raw in courses:
                try:
                    course = _validate(CourseDetail, raw, "course")
                except ValidationError as e:
                    logger.warning(f"Rejecting invalid course payload: {e}")
                    result.rejected.append(str(e.entity_id))
                    continue
                if course.server_updated_at:
                    if not _is_valid_marker(course.server_updated_at):
                        result.rejected.append(course.id)
                        continue
                    result.server_timestamps.append(course.server_updated_at)

                existing = self.db.query_one("SELECT serverUpdatedAt FROM courses WHERE id = ?", (course.id,))
                if existing and is_later(existing["serverUpdatedAt"], course.server_updated_at):
                    logger.debug(f"Skipping course {course.id}: local version {existing['serverUpdatedAt']} "
                                 f"is newer than {course.server_updated_at}")
                    result.skipped.append(course.id)
                    continue

                row = {c: v for c, v in course.to_row().items() if c in COURSE_COLUMNS}
                self.db.execute(_upsert_sql("courses", COURSE_COLUMNS), row)
                if "tee_boxes" in course.model_fields_set:
                    self._replace_tee_boxes(course.id, course.tee_boxes)
                result.applied.append(course.id)
        logger.debug(f"upsert_courses: {len(result.applied)} written, {len(result.skipped)} skipped, "
                     f"{len(result.rejected)} rejected")
        return result

    def _replace_tee_boxes(self, course_id: str, tee_boxes: List[TeeBox]):
        keep_ids = []
        for tee_box in tee_boxes:
            if tee_box.course_id is None:
                tee_box = tee_box.model_copy(update={"course_id": course_id})
            elif tee_box.course_id != course_id:
                logger.warning(f"Ignoring tee box {tee_box.id}: it belongs to course {tee_box.course_id}, "
                               f"not {course_id}")
                continue
            self.db.execute(_upsert_sql("tee_boxes", TEE_BOX_COLUMNS), tee_box.to_row())
            keep_ids.append(tee_box.id)
        placeholders = ", ".join("?" for _ in keep_ids)
        if keep_ids:
            self.db.execute(f"DELETE FROM tee_boxes WHERE courseId = ? AND id NOT IN ({placeholders})",
                            (course_id, *keep_ids))
        else:
            self.db.execute("DELETE FROM tee_boxes WHERE courseId = ?", (course_id,))

    def get_course(self, course_id: str) -> Optional[CourseDetail]:
        row = self.db.query_one("SELECT * FROM courses WHERE id = ?", (course_id,))
        if row is None:
            return None
        return CourseDetail.model_validate({**row, "teeBoxes": self.list_tee_boxes(course_id)})

    def list_courses(self, search: Optional[str] = None, country: Optional[str] = None,
                     region: Optional[str] = None, limit: int = 50, offset: int = 0) -> List[Course]:
        clauses, params = [], []
        if search:
            clauses.append("(name LIKE ? OR city LIKE ?)")
            params.extend([f"%{search}%", f"%{search}%"])
        if country:
            clauses.append("country = ?")
            params.append(country)
        if region:
            clauses.append("stateRegion = ?")
            params.append(region)
        where = f"WHERE {' AND '.join(clauses)}" if clauses else ""
        rows = self.db.query(f"SELECT * FROM courses {where} ORDER BY name COLLATE NOCASE LIMIT ? OFFSET ?",
                             (*params, limit, offset))
        return [Course.model_validate(r) for r in rows]

    def list_tee_boxes(self, course_id: str) -> List[TeeBox]:
        rows = self.db.query("SELECT * FROM tee_boxes WHERE courseId = ? ORDER BY name", (course_id,))
        return [TeeBox.model_validate(r) for r in rows]

    def course_exists(self, course_id: str) -> bool:
        return self.db.query_one("SELECT 1 AS found FROM courses WHERE id = ?", (course_id,)) is not None

    # --- Visits ---
    def _score_to_par(self, course_id: str, tee_box_id: Optional[str], holes_played: int,
                      gross_score: Optional[int]) -> Tuple[Optional[int], Optional[str]]:
        """Returns (toPar, tee box name). Par for a 9-hole round is half the tee box total, rounded."""
        if tee_box_id is None:
            return None, None
        tee_box = self.db.query_one("SELECT * FROM tee_boxes WHERE id = ?", (tee_box_id,))
        if tee_box is None or tee_box["courseId"] != course_id:
            raise ValidationError(f"Tee box {tee_box_id} does not belong to course {course_id}",
                                  entity="visits", entity_id=tee_box_id)
        par_total = tee_box["parTotal"]
        if gross_score is None or par_total is None:
            return None, tee_box["name"]
        par = par_total if holes_played == 18 else round(par_total / 2)
        return gross_score - par, tee_box["name"]

    def _check_visit_fields(self, visit: Visit) -> Visit:
        try:
            date.fromisoformat(visit.visit_date[:10])
        except ValueError as e:
            raise ValidationError(f"visitDate must be an ISO 8601 date, got {visit.visit_date!r}",
                                  entity="visits", entity_id=visit.id) from e
        if not visit.user_id:
            raise ValidationError("userId is required", entity="visits", entity_id=visit.id)
        if not self.course_exists(visit.course_id):
            raise ValidationError(f"Visit references unknown course {visit.course_id}",
                                  entity="visits", entity_id=visit.id)
        to_par, tee_box_name = self._score_to_par(visit.course_id, visit.tee_box_id, visit.holes_played,
                                                  visit.gross_score)
        return visit.model_copy(update={"to_par": to_par, "tee_name": visit.tee_name or tee_box_name})

    def create_visit(self, visit: Union[Visit, Dict[str, Any]]) -> Visit:
        """
        Records a visit locally, pending push.

        The row is written with isDirty=1, isDeleted=0 and no serverUpdatedAt;
        toPar is computed from the tee box par. An id is generated when absent.

        Raises:
            ValidationError: Unknown course, tee box of another course, bad holesPlayed or visitDate.
        """
        data = visit.model_dump() if isinstance(visit, CamelModel) else dict(visit)
        if not data.get("id"):
            data["id"] = generate_id()
        new_visit = _validate(Visit, data, "visit").model_copy(
            update={"is_dirty": True, "is_deleted": False, "server_updated_at": None})
        new_visit = self._check_visit_fields(new_visit)

        if self.get_visit(new_visit.id, include_deleted=True) is not None:
            raise ValidationError(f"Visit {new_visit.id} already exists", entity="visits", entity_id=new_visit.id)
        columns = ", ".join(VISIT_COLUMNS)
        placeholders = ", ".join(f":{c}" for c in VISIT_COLUMNS)
        self.db.execute(f"INSERT INTO visits ({columns}) VALUES ({placeholders})", new_visit.to_row())
        logger.info(f"Visit {new_visit.id} recorded for course {new_visit.course_id} (pending sync)")
        return new_visit

    def update_visit(self, visit_id: str, changes: Dict[str, Any]) -> Visit:
        """Applies a local edit to an active visit and marks it dirty."""
        current = self.get_visit(visit_id)
        if current is None:
            raise ValidationError(f"No active visit {visit_id}", entity="visits", entity_id=visit_id)
        unknown = set(changes) - set(VISIT_EDITABLE_FIELDS)
        if unknown:
            raise ValidationError(f"Fields not editable on a visit: {sorted(unknown)}",
                                  entity="visits", entity_id=visit_id)
        merged = _validate(Visit, {**current.model_dump(), **changes}, "visit")
        if "tee_box_id" in changes and "tee_name" not in changes:
            merged = merged.model_copy(update={"tee_name": None})
        updated = self._check_visit_fields(merged).model_copy(update={"is_dirty": True})

        assignments = ", ".join(f"{to_camel(f)} = :{to_camel(f)}" for f in VISIT_EDITABLE_FIELDS)
        self.db.execute(f"UPDATE visits SET {assignments}, toPar = :toPar, isDirty = 1 WHERE id = :id",
                        updated.to_row())
        return updated

    def soft_delete_visit(self, visit_id: str) -> bool:
        """
        Marks a visit deleted and dirty. Succeeds without change when it is already soft-deleted.

        Raises:
            ValidationError: If no visit with that id exists.
        """
        row = self.db.query_one("SELECT isDeleted FROM visits WHERE id = ?", (visit_id,))
        if row is None:
            raise ValidationError(f"No visit {visit_id}", entity="visits", entity_id=visit_id)
        if row["isDeleted"]:
            return True
        self.db.execute("UPDATE visits SET isDeleted = 1, isDirty = 1 WHERE id = ?", (visit_id,))
        logger.info(f"Visit {visit_id} soft-deleted (pending sync)")
        return True

    def get_visit(self, visit_id: str, include_deleted: bool = False) -> Optional[Visit]:
        sql = "SELECT * FROM visits WHERE id = ?" + ("" if include_deleted else " AND isDeleted = 0")
        row = self.db.query_one(sql, (visit_id,))
        return Visit.model_validate(row) if row else None

    def list_visits(self, user_id: str, course_id: Optional[str] = None, year: Optional[int] = None,
                    country: Optional[str] = None, limit: Optional[int] = None, offset: int = 0) -> List[Visit]:
        clauses, params = ["v.userId = ?", "v.isDeleted = 0"], [user_id]
        if course_id:
            clauses.append("v.courseId = ?")
            params.append(course_id)
        if year is not None:
            clauses.append("substr(v.visitDate, 1, 4) = ?")
            params.append(f"{int(year):04d}")
        if country:
            clauses.append("c.country = ?")
            params.append(country)
        sql = (f"SELECT v.* FROM visits v JOIN courses c ON c.id = v.courseId "
               f"WHERE {' AND '.join(clauses)} ORDER BY v.visitDate DESC, v.rowid DESC LIMIT ? OFFSET ?")
        rows = self.db.query(sql, (*params, limit if limit is not None else -1, offset))
        return [Visit.model_validate(r) for r in rows]

    def list_visited_courses(self, user_id: str) -> List[VisitedCourse]:
        rows = self.db.query(
            """
            SELECT c.id AS courseId, c.name, c.city, c.stateRegion, c.country,
                   COUNT(v.id) AS visitCount, MAX(v.visitDate) AS lastVisitDate
              FROM visits v JOIN courses c ON c.id = v.courseId
             WHERE v.userId = ? AND v.isDeleted = 0
             GROUP BY c.id
             ORDER BY lastVisitDate DESC
            """, (user_id,))
        return [VisitedCourse.model_validate(r) for r in rows]

    def list_dirty_visits(self) -> List[Visit]:
        rows = self.db.query("SELECT * FROM visits WHERE isDirty = 1 ORDER BY rowid")
        return [Visit.model_validate(r) for r in rows]

    # --- Wishlist ---
    def add_wishlist_entry(self, user_id: str, course_id: str) -> WishlistEntry:
        """
        Wishlists a course for a user.

        Returns the existing active entry unchanged when there is one. A removal
        still waiting to be pushed is undone instead of creating a second row.
        """
        if not user_id or not course_id:
            raise ValidationError("userId and courseId are required", entity="wishlist_entries")
        active = self._active_wishlist_row(user_id, course_id)
        if active is not None:
            return active

        pending = self.db.query_one(
            "SELECT * FROM wishlist_entries WHERE userId = ? AND courseId = ? AND isDeleted = 1 "
            "ORDER BY rowid DESC LIMIT 1", (user_id, course_id))
        if pending is not None:
            # The server still holds the entry if it was ever created there.
            still_dirty = 0 if pending["serverUpdatedAt"] else 1
            self.db.execute("UPDATE wishlist_entries SET isDeleted = 0, isDirty = ? WHERE id = ?",
                            (still_dirty, pending["id"]))
            logger.debug(f"Revived wishlist entry {pending['id']} for course {course_id}")
            return self._active_wishlist_row(user_id, course_id)

        entry = WishlistEntry(id=generate_id(), user_id=user_id, course_id=course_id,
                              created_at=utc_now_iso(), is_dirty=True)
        placeholders = ", ".join(f":{c}" for c in WISHLIST_COLUMNS)
        self.db.execute(f"INSERT INTO wishlist_entries ({', '.join(WISHLIST_COLUMNS)}) VALUES ({placeholders})",
                        entry.to_row())
        logger.info(f"Course {course_id} added to wishlist (pending sync)")
        return entry

    def remove_wishlist_entry(self, user_id: str, course_id: str) -> Optional[WishlistEntry]:
        """Soft-deletes the active entry. No-op returning None when the course is not wishlisted."""
        active = self._active_wishlist_row(user_id, course_id)
        if active is None:
            return None
        self.db.execute("UPDATE wishlist_entries SET isDeleted = 1, isDirty = 1 WHERE id = ?", (active.id,))
        logger.info(f"Course {course_id} removed from wishlist (pending sync)")
        return active.model_copy(update={"is_deleted": True, "is_dirty": True})

    def _active_wishlist_row(self, user_id: str, course_id: str) -> Optional[WishlistEntry]:
        row = self.db.query_one(
            "SELECT * FROM wishlist_entries WHERE userId = ? AND courseId = ? AND isDeleted = 0",
            (user_id, course_id))
        return WishlistEntry.model_validate(row) if row else None

    def is_wishlisted(self, user_id: str, course_id: str) -> bool:
        return self._active_wishlist_row(user_id, course_id) is not None

    def list_wishlist(self, user_id: str) -> List[WishlistEntry]:
        rows = self.db.query(
            "SELECT * FROM wishlist_entries WHERE userId = ? AND isDeleted = 0 ORDER BY createdAt DESC",
            (user_id,))
        return [WishlistEntry.model_validate(r) for r in rows]

    def get_wishlist_entry(self, entry_id: str) -> Optional[WishlistEntry]:
        row = self.db.query_one("SELECT * FROM wishlist_entries WHERE id = ?", (entry_id,))
        return WishlistEntry.model_validate(row) if row else None

    def list_dirty_wishlist_entries(self) -> List[WishlistEntry]:
        rows = self.db.query("SELECT * FROM wishlist_entries WHERE isDirty = 1 ORDER BY rowid")
        return [WishlistEntry.model_validate(r) for r in rows]

    # --- Push Confirmation ---
    def mark_synced(self, table: str, entity_id: str, server_updated_at: Optional[str],
                    pushed: Optional[Union[Visit, WishlistEntry]] = None) -> bool:
        """
        Records the server's acknowledgment of a pushed row.

        Clears isDirty and stores serverUpdatedAt, or physically deletes the row
        when it is soft-deleted. When `pushed` (the snapshot that was sent) is
        given and the row has been edited locally since, only serverUpdatedAt is
        stored and the row stays dirty for the next cycle.

        Args:
            table: 'visits' or 'wishlist_entries'.
            entity_id: Row id.
            server_updated_at: Version marker from the server response. None keeps the stored one.
            pushed: The row as it was when pushed.

        Returns:
            False if the row no longer exists, True otherwise.
        """
        if table not in SYNCABLE_TABLES:
            raise ValidationError(f"Table {table!r} is not synced from local edits", entity=table, entity_id=entity_id)
        model = Visit if table == "visits" else WishlistEntry
        row = self.db.query_one(f"SELECT * FROM {table} WHERE id = ?", (entity_id,))
        if row is None:
            return False
        current = model.model_validate(row)

        if pushed is not None and pushed.is_deleted and not current.is_deleted:
            # Removed remotely, then revived locally: it has to be created again.
            logger.debug(f"{table} {entity_id} was revived while its delete was in flight; re-queueing create")
            self.db.execute(f"UPDATE {table} SET serverUpdatedAt = NULL, isDirty = 1 WHERE id = ?", (entity_id,))
            return True

        if pushed is not None and self._changed_since_push(current, pushed):
            logger.debug(f"{table} {entity_id} changed while its push was in flight; keeping it dirty")
            self.db.execute(f"UPDATE {table} SET serverUpdatedAt = COALESCE(?, serverUpdatedAt) WHERE id = ?",
                            (server_updated_at, entity_id))
            return True

        if current.is_deleted:
            self.db.execute(f"DELETE FROM {table} WHERE id = ?", (entity_id,))
            logger.debug(f"{table} {entity_id} deletion confirmed; row removed")
        else:
            self.db.execute(
                f"UPDATE {table} SET isDirty = 0, serverUpdatedAt = COALESCE(?, serverUpdatedAt) WHERE id = ?",
                (server_updated_at, entity_id))
        return True

    @staticmethod
    def _changed_since_push(current: CamelModel, pushed: CamelModel) -> bool:
        ignore = {"is_dirty", "server_updated_at", "to_par"}
        return current.model_dump(exclude=ignore) != pushed.model_dump(exclude=ignore)

    # --- Applying pulled user-owned rows ---
    def _remote_may_overwrite(self, local: Union[Visit, WishlistEntry], remote_ts: str) -> bool:
        """Last-write-wins by serverUpdatedAt. Pending deletes and never-pushed rows are kept."""
        if local.is_deleted:
            return False
        if local.is_dirty and local.server_updated_at is None:
            return False
        return is_later(remote_ts, local.server_updated_at)

    def apply_remote_visits(self, visits: Iterable[Union[Visit, Dict[str, Any]]]) -> ApplyResult:
        """
        Writes visits pulled from the server, as clean rows.

        A row is skipped when the local copy has a pending delete, was never
        pushed, or already holds the same or a later serverUpdatedAt. Visits for
        courses not yet stored locally are deferred and picked up by a later pull.
        """
        result = ApplyResult()
        with self.db.transaction():
            for raw in visits:
                try:
                    remote = _validate(Visit, raw, "visit")
                except ValidationError as e:
                    logger.warning(f"Rejecting invalid visit payload: {e}")
                    result.rejected.append(str(e.entity_id))
                    continue
                if not _is_valid_marker(remote.server_updated_at):
                    result.rejected.append(remote.id)
                    continue
                result.server_timestamps.append(remote.server_updated_at)

                local = self.get_visit(remote.id, include_deleted=True)
                if local is not None and not self._remote_may_overwrite(local, remote.server_updated_at):
                    result.skipped.append(remote.id)
                    continue
                if not self.course_exists(remote.course_id):
                    logger.info(f"Deferring visit {remote.id}: course {remote.course_id} not stored locally yet")
                    result.deferred[remote.id] = remote.server_updated_at
                    continue

                row = remote.model_copy(update={"is_dirty": False, "is_deleted": False}).to_row()
                if remote.to_par is None:
                    try:
                        row["toPar"], _ = self._score_to_par(remote.course_id, remote.tee_box_id,
                                                             remote.holes_played, remote.gross_score)
                    except ValidationError:
                        row["toPar"] = None
                self.db.execute(_upsert_sql("visits", VISIT_COLUMNS), row)
                result.applied.append(remote.id)
        return result

    def apply_remote_wishlist_entries(self, entries: Iterable[Union[WishlistEntry, Dict[str, Any]]]) -> ApplyResult:
        """Writes wishlist entries pulled from the server, with the same rules as visits."""
        result = ApplyResult()
        with self.db.transaction():
            for raw in entries:
                try:
                    remote = _validate(WishlistEntry, raw, "wishlist entry")
                except ValidationError as e:
                    logger.warning(f"Rejecting invalid wishlist payload: {e}")
                    result.rejected.append(str(e.entity_id))
                    continue
                if not _is_valid_marker(remote.server_updated_at):
                    result.rejected.append(remote.id)
                    continue
                result.server_timestamps.append(remote.server_updated_at)

                local = self.get_wishlist_entry(remote.id)
                if local is not None and not self._remote_may_overwrite(local, remote.server_updated_at):
                    result.skipped.append(remote.id)
                    continue
                if local is None:
                    other = self.db.query_one(
                        "SELECT id, isDirty, isDeleted FROM wishlist_entries WHERE userId = ? AND courseId = ? "
                        "AND id != ? ORDER BY isDirty DESC LIMIT 1",
                        (remote.user_id, remote.course_id, remote.id))
                    if other is not None and (other["isDirty"] or other["isDeleted"]):
                        # Unpushed local state for the same course wins until it is pushed.
                        result.skipped.append(remote.id)
                        continue
                    if other is not None:
                        # Confirmed local copy stored under its client id; adopt the server id.
                        self.db.execute("DELETE FROM wishlist_entries WHERE id = ?", (other["id"],))
                row = remote.model_copy(update={"is_dirty": False, "is_deleted": False}).to_row()
                self.db.execute(_upsert_sql("wishlist_entries", WISHLIST_COLUMNS), row)
                result.applied.append(remote.id)
        return result

    # --- Course Suggestions ---
    def create_course_suggestion(self, suggestion: Union[CourseSuggestion, Dict[str, Any]]) -> CourseSuggestion:
        data = suggestion.model_dump() if isinstance(suggestion, CamelModel) else dict(suggestion)
        data.update({
            "id": data.get("id") or generate_id(),
            "created_at": data.get("created_at") or data.get("createdAt") or utc_now_iso(),
            "status": "Pending",
            "decision_by": None,
            "decision_at": None,
            "server_updated_at": None,
        })
        for camel in ("createdAt", "decisionBy", "decisionAt", "serverUpdatedAt"):
            data.pop(camel, None)
        new_suggestion = _validate(CourseSuggestion, data, "course suggestion")
        placeholders = ", ".join(f":{c}" for c in SUGGESTION_COLUMNS)
        self.db.execute(f"INSERT INTO course_suggestions ({', '.join(SUGGESTION_COLUMNS)}) VALUES ({placeholders})",
                        new_suggestion.to_row())
        logger.info(f"Course suggestion {new_suggestion.id} ({new_suggestion.name}) saved for submission")
        return new_suggestion

    def list_unsubmitted_suggestions(self) -> List[CourseSuggestion]:
        rows = self.db.query("SELECT * FROM course_suggestions WHERE serverUpdatedAt IS NULL ORDER BY rowid")
        return [CourseSuggestion.model_validate(r) for r in rows]

    def list_course_suggestions(self, user_id: str) -> List[CourseSuggestion]:
        rows = self.db.query(
            "SELECT * FROM course_suggestions WHERE submittedByUserId = ? ORDER BY createdAt DESC", (user_id,))
        return [CourseSuggestion.model_validate(r) for r in rows]

    def upsert_course_suggestions(self, suggestions: Iterable[Union[CourseSuggestion, Dict[str, Any]]]) -> ApplyResult:
        result = ApplyResult()
        with self.db.transaction():
            for raw in suggestions:
                try:
                    suggestion = _validate(CourseSuggestion, raw, "course suggestion")
                except ValidationError as e:
                    logger.warning(f"Rejecting invalid course suggestion payload: {e}")
                    result.rejected.append(str(e.entity_id))
                    continue
                if suggestion.server_updated_at:
                    if not _is_valid_marker(suggestion.server_updated_at):
                        result.rejected.append(suggestion.id)
                        continue
                    result.server_timestamps.append(suggestion.server_updated_at)
                existing = self.db.query_one("SELECT serverUpdatedAt FROM course_suggestions WHERE id = ?",
                                             (suggestion.id,))
                if existing and is_later(existing["serverUpdatedAt"], suggestion.server_updated_at):
                    result.skipped.append(suggestion.id)
                    continue
                self.db.execute(_upsert_sql("course_suggestions", SUGGESTION_COLUMNS), suggestion.to_row())
                result.applied.append(suggestion.id)
        return result

    def confirm_course_suggestion(self, local_id: str, server_row: Union[CourseSuggestion, Dict[str, Any]]) -> CourseSuggestion:
        """Replaces a locally created suggestion with the server's copy once submitted."""
        confirmed = _validate(CourseSuggestion, server_row, "course suggestion")
        if not confirmed.server_updated_at:
            raise ValidationError("Server confirmation is missing serverUpdatedAt",
                                  entity="course_suggestions", entity_id=local_id)
        with self.db.transaction():
            if confirmed.id != local_id:
                self.db.execute("DELETE FROM course_suggestions WHERE id = ?", (local_id,))
            self.db.execute(_upsert_sql("course_suggestions", SUGGESTION_COLUMNS), confirmed.to_row())
        return confirmed

    # --- Sync State ---
    def get_sync_value(self, key: str) -> Optional[str]:
        row = self.db.query_one("SELECT value FROM sync_state WHERE key = ?", (key,))
        return row["value"] if row else None

    def set_sync_value(self, key: str, value: str):
        self.db.execute(
            "INSERT INTO sync_state (key, value) VALUES (?, ?) ON CONFLICT(key) DO UPDATE SET value = excluded.value",
            (key, value))

    def get_checkpoint(self, collection: str) -> Optional[str]:
        return self.get_sync_value(f"{CHECKPOINT_KEY_PREFIX}{collection}")

    def set_checkpoint(self, collection: str, value: Optional[str]) -> Optional[str]:
        """Advances a collection's checkpoint. Never moves it backwards; returns the stored value."""
        current = self.get_checkpoint(collection)
        if value is None or not is_later(value, current):
            return current
        self.set_sync_value(f"{CHECKPOINT_KEY_PREFIX}{collection}", value)
        logger.debug(f"Checkpoint for {collection} advanced {current} -> {value}")
        return value

    def pending_counts(self) -> Dict[str, int]:
        visits = self.db.query_one("SELECT COUNT(*) AS n FROM visits WHERE isDirty = 1")
        wishlist = self.db.query_one("SELECT COUNT(*) AS n FROM wishlist_entries WHERE isDirty = 1")
        suggestions = self.db.query_one("SELECT COUNT(*) AS n FROM course_suggestions WHERE serverUpdatedAt IS NULL")
        return {"visits": visits["n"], "wishlist_entries": wishlist["n"], "course_suggestions": suggestions["n"]}

#
# End of Entity_Repository.py
########################################################################################################################
