# models.py
# Description: Entity models shared by the local store and the remote API client.
#
# Imports
from typing import List, Optional, Literal
#
# 3rd-party Libraries
from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel
#
#######################################################################################################################
#
# Functions:

Role = Literal['User', 'Admin']
SuggestionStatus = Literal['Pending', 'Approved', 'Rejected']
HolesPlayed = Literal[9, 18]


class CamelModel(BaseModel):
    """Snake_case attributes over the camelCase names used by both the SQLite columns and the JSON API."""
    model_config = ConfigDict(populate_by_name=True, alias_generator=to_camel, extra="ignore")

    def to_row(self) -> dict:
        return self.model_dump(by_alias=True)


class TeeBox(CamelModel):
    id: str
    # Omitted when nested under a course payload.
    course_id: Optional[str] = None
    name: str
    par_total: Optional[int] = None
    yardage_total: Optional[int] = None
    slope: Optional[float] = None
    rating: Optional[float] = None
    server_updated_at: Optional[str] = None


class Course(CamelModel):
    id: str
    name: str
    address1: str
    address2: Optional[str] = None
    city: str
    state_region: Optional[str] = None
    country: str
    postal_code: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    is_approved: bool = False
    created_by_user_id: Optional[str] = None
    created_at: str
    updated_at: str
    server_updated_at: Optional[str] = None


class CourseDetail(Course):
    tee_boxes: List[TeeBox] = Field(default_factory=list)


class Visit(CamelModel):
    id: str
    user_id: str
    course_id: str
    visit_date: str
    holes_played: HolesPlayed
    gross_score: Optional[int] = None
    tee_box_id: Optional[str] = None
    tee_name: Optional[str] = None
    to_par: Optional[int] = None
    server_updated_at: Optional[str] = None
    # Local-only tracking flags; the server never sends them.
    is_dirty: bool = False
    is_deleted: bool = False


class WishlistEntry(CamelModel):
    id: str
    user_id: str
    course_id: str
    created_at: str
    server_updated_at: Optional[str] = None
    is_dirty: bool = False
    is_deleted: bool = False


class CourseSuggestion(CamelModel):
    id: str
    submitted_by_user_id: str
    name: str
    address1: str
    address2: Optional[str] = None
    city: str
    state_region: Optional[str] = None
    country: str
    postal_code: Optional[str] = None
    phone: Optional[str] = None
    website: Optional[str] = None
    status: SuggestionStatus = 'Pending'
    decision_by: Optional[str] = None
    decision_at: Optional[str] = None
    created_at: str
    server_updated_at: Optional[str] = None


    @model_validator(mode='after')
    def _decision_only_after_moderation(self):
        if self.status == 'Pending' and (self.decision_by is not None or self.decision_at is not None):
            raise ValueError("decisionBy/decisionAt can only be set once a suggestion is Approved or Rejected")
        return self


class VisitedCourse(CamelModel):
    course_id: str
    name: Optional[str] = None
    city: Optional[str] = None
    state_region: Optional[str] = None
    country: Optional[str] = None
    visit_count: int = 0
    last_visit_date: Optional[str] = None


class UserProfile(CamelModel):
    id: str
    email: str
    display_name: str
    role: Role = 'User'
    public_slug: str

#
# End of models.py
#######################################################################################################################
