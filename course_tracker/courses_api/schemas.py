# course_tracker/courses_api/schemas.py
from typing import List, Optional, Literal
from pydantic import Field

from course_tracker.models import CamelModel, HolesPlayed, UserProfile

TimelineGroupBy = Literal['year', 'month']


# --- Request Payloads ---
class CreateVisitRequest(CamelModel):
    id: str
    course_id: str
    visit_date: str
    holes_played: HolesPlayed
    gross_score: Optional[int] = None
    tee_box_id: Optional[str] = None
    tee_name: Optional[str] = None

class UpdateVisitRequest(CamelModel):
    # Partial update: only fields that are set are sent.
    course_id: Optional[str] = None
    visit_date: Optional[str] = None
    holes_played: Optional[HolesPlayed] = None
    gross_score: Optional[int] = None
    tee_box_id: Optional[str] = None
    tee_name: Optional[str] = None

class AddWishlistRequest(CamelModel):
    course_id: str

class CourseSuggestionRequest(CamelModel):
    id: str
    name: str
    address1: str
    address2: Optional[str] = None
    city: str
    state_region: Optional[str] = None
    country: str
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None

class LoginRequest(CamelModel):
    email: str
    password: str

class RegisterRequest(LoginRequest):
    display_name: str


# --- Responses ---
class VisitRecord(CamelModel):
    """A visit as the server returns it. userId is omitted on some /me and profile routes."""
    id: str
    user_id: Optional[str] = None
    course_id: str
    visit_date: str
    holes_played: HolesPlayed
    gross_score: Optional[int] = None
    tee_box_id: Optional[str] = None
    tee_name: Optional[str] = None
    to_par: Optional[int] = None
    server_updated_at: Optional[str] = None

class WishlistRecord(CamelModel):
    id: str
    user_id: Optional[str] = None
    course_id: str
    created_at: Optional[str] = None
    server_updated_at: Optional[str] = None

class AuthResponse(CamelModel):
    token: str
    user: UserProfile

class YearCount(CamelModel):
    year: int
    count: int

class RegionCount(CamelModel):
    country: str
    region: Optional[str] = None
    count: int

class StatsOverview(CamelModel):
    total_courses: int = 0
    total_visits: int = 0
    most_recent_visit_date: Optional[str] = None
    visits_by_year: List[YearCount] = Field(default_factory=list)
    visits_by_region: List[RegionCount] = Field(default_factory=list)
    longest_month_streak: int = 0

class PublicProfile(CamelModel):
    slug: str
    stats: StatsOverview
    visited_courses: List[VisitRecord] = Field(default_factory=list)

class StatsTimelinePoint(CamelModel):
    period: str
    visits: int
    courses_played: int

#
# End of course_tracker/courses_api/schemas.py
########################################################################################################################
