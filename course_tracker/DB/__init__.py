from .Course_Tracker_DB import CourseTrackerDB, StorageError, SchemaError, ValidationError, ExecuteResult
from .Entity_Repository import EntityRepository, ApplyResult, SYNCABLE_TABLES

__all__ = [
    "CourseTrackerDB", "StorageError", "SchemaError", "ValidationError", "ExecuteResult",
    "EntityRepository", "ApplyResult", "SYNCABLE_TABLES",
]
