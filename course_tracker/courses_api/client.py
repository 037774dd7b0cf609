# course_tracker/courses_api/client.py
#
#
# Imports
import json
from typing import Optional, Dict, Any, List, Callable, Type, TypeVar
from urllib.parse import quote
#
# 3rd-party Libraries
import httpx
import pydantic
from loguru import logger
#
# Local Imports
from course_tracker.config import get_api_base_url, get_api_timeout
from course_tracker.models import CamelModel, CourseDetail, Course, CourseSuggestion, UserProfile
from .schemas import (
    AddWishlistRequest, AuthResponse, CourseSuggestionRequest, CreateVisitRequest, LoginRequest,
    RegisterRequest, StatsOverview, StatsTimelinePoint, TimelineGroupBy, UpdateVisitRequest,
    VisitRecord, WishlistRecord,
)
from .exceptions import APIConnectionError, APIResponseError, APITimeoutError, AuthenticationError
#
########################################################################################################################
#
# Functions:

ModelT = TypeVar("ModelT", bound=CamelModel)
TokenProvider = Callable[[], Optional[str]]


def _drop_none(params: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in params.items() if v is not None}


class CourseTrackerAPIClient:
    """
    Async client for the course tracker REST API.

    Every endpoint method performs exactly one HTTP call and returns parsed
    models, or raises a `NetworkError` subclass. The bearer token is read from
    `token_provider` on every request so a session can sign in and out without
    rebuilding the client.
    """

    def __init__(self, base_url: Optional[str] = None, token_provider: Optional[TokenProvider] = None,
                 timeout: Optional[float] = None, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = (base_url or get_api_base_url()).rstrip('/')
        self.token_provider = token_provider
        self.timeout = timeout if timeout is not None else get_api_timeout()
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                headers={"Content-Type": "application/json"},
                timeout=self.timeout,
                follow_redirects=True,
                transport=self._transport,
            )
        return self._client

    async def close(self):
        if self._client and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    def _auth_headers(self) -> Dict[str, str]:
        token = self.token_provider() if self.token_provider else None
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
        json_body: Optional[Dict[str, Any]] = None,
    ) -> Any:
        client = await self._get_client()
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"{method} {endpoint} params={params}")

        try:
            response = await client.request(method, endpoint, params=_drop_none(params or {}), json=json_body,
                                            headers=self._auth_headers())
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            error_detail = e.response.reason_phrase or str(e)
            body = None
            try:
                body = e.response.json()
                if isinstance(body, dict):
                    error_detail = body.get("detail") or body.get("title") or body.get("message") or error_detail
            except ValueError:
                body = {"raw_text": e.response.text} if e.response.text else None

            if e.response.status_code == 401:
                raise AuthenticationError(f"Authentication failed: {error_detail}", body=body)
            raise APIResponseError(e.response.status_code, str(error_detail), body=body)
        except httpx.TimeoutException as e:
            raise APITimeoutError(f"Request to {url} timed out after {self.timeout}s: {e}")
        except httpx.RequestError as e:
            raise APIConnectionError(f"Connection error to {url}: {e}")

        if response.status_code == 204 or not response.content:
            return None
        try:
            return response.json()
        except json.JSONDecodeError:
            raise APIResponseError(response.status_code, "Failed to decode JSON response",
                                   body={"raw_text": response.text})

    @staticmethod
    def _parse(model: Type[ModelT], data: Any, endpoint: str) -> ModelT:
        try:
            return model.model_validate(data)
        except pydantic.ValidationError as e:
            raise APIResponseError(200, f"Unexpected response shape from {endpoint}: {e}", body={"data": data})

    @classmethod
    def _parse_list(cls, model: Type[ModelT], data: Any, endpoint: str) -> List[ModelT]:
        if data is None:
            return []
        if not isinstance(data, list):
            raise APIResponseError(200, f"Expected a list from {endpoint}", body={"data": data})
        return [cls._parse(model, item, endpoint) for item in data]

    # --- Courses ---
    async def list_courses(self, search: Optional[str] = None, country: Optional[str] = None,
                           region: Optional[str] = None, near: Optional[str] = None,
                           radius_km: Optional[float] = None, skip: Optional[int] = None,
                           take: Optional[int] = None) -> List[Course]:
        params = {"search": search, "country": country, "region": region, "near": near,
                  "radiusKm": radius_km, "skip": skip, "take": take}
        data = await self._request("GET", "/api/courses", params=params)
        return self._parse_list(Course, data, "/api/courses")

    async def get_course(self, course_id: str) -> CourseDetail:
        endpoint = f"/api/courses/{quote(course_id, safe='')}"
        return self._parse(CourseDetail, await self._request("GET", endpoint), endpoint)

    async def list_course_deltas(self, since: Optional[str] = None) -> List[CourseDetail]:
        data = await self._request("GET", "/api/courses/delta", params={"since": since})
        return self._parse_list(CourseDetail, data, "/api/courses/delta")

    # --- Visits ---
    async def list_visits(self, course_id: Optional[str] = None, year: Optional[int] = None,
                          country: Optional[str] = None, limit: Optional[int] = None,
                          offset: Optional[int] = None, since: Optional[str] = None) -> List[VisitRecord]:
        params = {"courseId": course_id, "year": year, "country": country, "limit": limit,
                  "offset": offset, "since": since}
        data = await self._request("GET", "/api/me/visits", params=params)
        return self._parse_list(VisitRecord, data, "/api/me/visits")

    async def create_visit(self, payload: CreateVisitRequest) -> VisitRecord:
        data = await self._request("POST", "/api/visits", json_body=payload.model_dump(by_alias=True))
        return self._parse(VisitRecord, data, "/api/visits")

    async def update_visit(self, visit_id: str, payload: UpdateVisitRequest) -> VisitRecord:
        endpoint = f"/api/me/visits/{quote(visit_id, safe='')}"
        data = await self._request("PATCH", endpoint, json_body=payload.model_dump(by_alias=True, exclude_unset=True))
        return self._parse(VisitRecord, data, endpoint)

    async def delete_visit(self, visit_id: str) -> str:
        await self._request("DELETE", f"/api/me/visits/{quote(visit_id, safe='')}")
        return visit_id

    async def list_visited_courses(self) -> List[VisitRecord]:
        data = await self._request("GET", "/api/me/visited-courses")
        return self._parse_list(VisitRecord, data, "/api/me/visited-courses")

    # --- Wishlist ---
    async def list_wishlist(self) -> List[WishlistRecord]:
        data = await self._request("GET", "/api/me/wishlist")
        return self._parse_list(WishlistRecord, data, "/api/me/wishlist")

    async def add_to_wishlist(self, course_id: str) -> WishlistRecord:
        payload = AddWishlistRequest(course_id=course_id)
        data = await self._request("POST", "/api/wishlist", json_body=payload.model_dump(by_alias=True))
        return self._parse(WishlistRecord, data, "/api/wishlist")

    async def remove_from_wishlist(self, course_id: str) -> str:
        await self._request("DELETE", f"/api/wishlist/{quote(course_id, safe='')}")
        return course_id

    # --- Course Suggestions ---
    async def submit_course_suggestion(self, payload: CourseSuggestionRequest) -> CourseSuggestion:
        data = await self._request("POST", "/api/course-suggestions", json_body=payload.model_dump(by_alias=True))
        return self._parse(CourseSuggestion, data, "/api/course-suggestions")

    async def list_course_suggestion_deltas(self, since: Optional[str] = None) -> List[CourseSuggestion]:
        data = await self._request("GET", "/api/me/course-suggestions", params={"since": since})
        return self._parse_list(CourseSuggestion, data, "/api/me/course-suggestions")

    # --- Stats & Profiles ---
    async def get_stats_overview(self) -> StatsOverview:
        data = await self._request("GET", "/api/me/stats/overview")
        return self._parse(StatsOverview, data, "/api/me/stats/overview")

    async def get_stats_timeline(self, group_by: TimelineGroupBy = "year") -> List[StatsTimelinePoint]:
        data = await self._request("GET", "/api/me/stats/timeline", params={"groupBy": group_by})
        return self._parse_list(StatsTimelinePoint, data, "/api/me/stats/timeline")

    async def get_public_stats(self, slug: str) -> StatsOverview:
        endpoint = f"/api/profile/{quote(slug, safe='')}/stats/overview"
        return self._parse(StatsOverview, await self._request("GET", endpoint), endpoint)

    async def get_public_visited_courses(self, slug: str) -> List[VisitRecord]:
        endpoint = f"/api/profile/{quote(slug, safe='')}/visited-courses"
        return self._parse_list(VisitRecord, await self._request("GET", endpoint), endpoint)

    # --- Auth ---
    async def login(self, email: str, password: str) -> AuthResponse:
        payload = LoginRequest(email=email, password=password)
        data = await self._request("POST", "/api/auth/login", json_body=payload.model_dump(by_alias=True))
        return self._parse(AuthResponse, data, "/api/auth/login")

    async def register(self, email: str, password: str, display_name: str) -> AuthResponse:
        payload = RegisterRequest(email=email, password=password, display_name=display_name)
        data = await self._request("POST", "/api/user", json_body=payload.model_dump(by_alias=True))
        return self._parse(AuthResponse, data, "/api/user")

    async def get_me(self) -> UserProfile:
        return self._parse(UserProfile, await self._request("GET", "/api/auth/me"), "/api/auth/me")

#
# End of course_tracker/courses_api/client.py
########################################################################################################################
