# course_tracker/courses_api/__init__.py
from .client import CourseTrackerAPIClient
from .exceptions import (
    NetworkError, APIConnectionError, APITimeoutError,
    APIResponseError, AuthenticationError
)
from .schemas import (
    CreateVisitRequest, UpdateVisitRequest, AddWishlistRequest, CourseSuggestionRequest,
    LoginRequest, RegisterRequest, AuthResponse, VisitRecord, WishlistRecord,
    StatsOverview, StatsTimelinePoint, YearCount, RegionCount, TimelineGroupBy, PublicProfile
)

__all__ = [
    "CourseTrackerAPIClient",
    "NetworkError", "APIConnectionError", "APITimeoutError",
    "APIResponseError", "AuthenticationError",
    "CreateVisitRequest", "UpdateVisitRequest", "AddWishlistRequest", "CourseSuggestionRequest",
    "LoginRequest", "RegisterRequest", "AuthResponse", "VisitRecord", "WishlistRecord",
    "StatsOverview", "StatsTimelinePoint", "YearCount", "RegionCount", "TimelineGroupBy", "PublicProfile"
]
