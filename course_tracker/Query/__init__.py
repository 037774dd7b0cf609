from .query_cache import QueryCache, QueryKey
from .queries import CourseTrackerQueries, MutationResult

__all__ = ["QueryCache", "QueryKey", "CourseTrackerQueries", "MutationResult"]
