# Tests/conftest.py
#
# Shared fixtures: isolated config, in-memory store, and a fake course tracker
# server mounted on httpx.MockTransport.
#
# Imports
import itertools
import json
import re
from typing import Any, Dict, List, Optional, Tuple
#
# Third-Party Imports
import httpx
import pytest
#
# Local Imports
from course_tracker import config
from course_tracker.courses_api.client import CourseTrackerAPIClient
from course_tracker.DB.Course_Tracker_DB import CourseTrackerDB
from course_tracker.DB.Entity_Repository import EntityRepository
from course_tracker.models import UserProfile
from course_tracker.Query.query_cache import QueryCache
from course_tracker.session import AppSession
from course_tracker.Sync.Sync_Engine import SyncEngine
#
########################################################################################################################
#
# Functions:

USER_ID = "u1"
USER = {"id": USER_ID, "email": "pat@example.com", "displayName": "Pat", "role": "User", "publicSlug": "pat"}


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Points the config loader at a throwaway file so tests never touch ~/.config."""
    monkeypatch.setenv(config.CONFIG_PATH_ENV_VAR, str(tmp_path / "config" / "config.toml"))
    monkeypatch.delenv(config.API_URL_ENV_VAR, raising=False)
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)
    yield
    monkeypatch.setattr(config, "_CONFIG_CACHE", None)


@pytest.fixture
def db():
    instance = CourseTrackerDB(":memory:")
    yield instance
    instance.close_connection()


@pytest.fixture
def repo(db):
    return EntityRepository(db)


def course_payload(course_id: str = "c1", server_updated_at: Optional[str] = "2024-01-15T00:00:00Z",
                   tee_boxes: Optional[List[Dict[str, Any]]] = None, **overrides) -> Dict[str, Any]:
    """A course as the API returns it (camelCase)."""
    payload = {
        "id": course_id,
        "name": f"Course {course_id}",
        "address1": "1 Fairway Dr",
        "city": "Pinehurst",
        "stateRegion": "NC",
        "country": "USA",
        "isApproved": True,
        "createdAt": "2023-06-01T00:00:00Z",
        "updatedAt": "2023-06-01T00:00:00Z",
        "serverUpdatedAt": server_updated_at,
    }
    if tee_boxes is not None:
        payload["teeBoxes"] = tee_boxes
    payload.update(overrides)
    return payload


def tee_box_payload(tee_box_id: str = "t1", course_id: str = "c1", name: str = "Blue",
                    par_total: Optional[int] = 72) -> Dict[str, Any]:
    return {"id": tee_box_id, "courseId": course_id, "name": name, "parTotal": par_total,
            "yardageTotal": 6800, "slope": 131.0, "rating": 72.4}


@pytest.fixture
def seeded_repo(repo):
    """Repository holding course c1 (Blue par 72 tee t1) and course c2 (no tee boxes)."""
    repo.upsert_courses([
        course_payload("c1", tee_boxes=[tee_box_payload("t1", "c1")]),
        course_payload("c2", country="Scotland", stateRegion="Fife", city="St Andrews"),
    ])
    return repo


class FakeCourseServer:
    """
    Minimal in-memory stand-in for the course tracker API.

    Every request is recorded in `requests`. `fail(method, pattern, ...)` makes
    matching requests return an error status or raise a transport error.
    """

    def __init__(self):
        self.requests: List[Tuple[str, str, Dict[str, str], Any]] = []
        self.course_deltas: List[Dict[str, Any]] = []
        self.suggestion_deltas: List[Dict[str, Any]] = []
        self.visits: List[Dict[str, Any]] = []
        self.wishlist: List[Dict[str, Any]] = []
        self.missing_visit_ids: set = set()
        self.token = "token-123"
        self.omit_server_updated_at = False
        self._failures: List[Tuple[str, re.Pattern, Optional[int], Optional[type]]] = []
        self._clock = (f"2024-06-01T00:00:{n:02d}Z" for n in itertools.count(1))
        self._ids = (f"srv-{n}" for n in itertools.count(1))

    # --- Test Controls ---
    def fail(self, method: str, pattern: str, status: Optional[int] = None, exc: Optional[type] = None):
        self._failures.append((method, re.compile(pattern), status, exc))

    def clear_failures(self):
        self._failures = []

    def calls(self, method: Optional[str] = None, path: Optional[str] = None):
        return [r for r in self.requests
                if (method is None or r[0] == method) and (path is None or r[1] == path)]

    @property
    def writes(self):
        return [r for r in self.requests if r[0] in ("POST", "PATCH", "DELETE")]

    def _stamp(self, body: Dict[str, Any]) -> Dict[str, Any]:
        if not self.omit_server_updated_at:
            body["serverUpdatedAt"] = next(self._clock)
        return body

    # --- Transport Handler ---
    def handler(self, request: httpx.Request) -> httpx.Response:
        method, path = request.method, request.url.path
        params = dict(request.url.params)
        body = json.loads(request.content) if request.content else None
        self.requests.append((method, path, params, body))

        for f_method, pattern, status, exc in self._failures:
            if f_method == method and pattern.fullmatch(path):
                if exc is not None:
                    raise exc("simulated transport failure", request=request)
                return httpx.Response(status, json={"detail": f"simulated {status}"})

        if path.startswith("/api/me") or path in ("/api/visits", "/api/wishlist", "/api/course-suggestions") \
                or path.startswith("/api/wishlist/") or path == "/api/auth/me":
            if request.headers.get("Authorization") != f"Bearer {self.token}":
                return httpx.Response(401, json={"detail": "Unauthorized"})

        if method == "GET" and path == "/api/courses/delta":
            return httpx.Response(200, json=self.course_deltas)
        if method == "GET" and path == "/api/courses":
            return httpx.Response(200, json=self.course_deltas)
        m = re.fullmatch(r"/api/courses/([^/]+)", path)
        if method == "GET" and m:
            for course in self.course_deltas:
                if course["id"] == m.group(1):
                    return httpx.Response(200, json=course)
            return httpx.Response(404, json={"detail": "Course not found"})
        if method == "GET" and path == "/api/me/course-suggestions":
            return httpx.Response(200, json=self.suggestion_deltas)
        if method == "GET" and path == "/api/me/visits":
            return httpx.Response(200, json=self.visits)
        if method == "GET" and path == "/api/me/wishlist":
            return httpx.Response(200, json=self.wishlist)
        if method == "POST" and path == "/api/visits":
            return httpx.Response(201, json=self._stamp({**body, "userId": USER_ID}))
        m = re.fullmatch(r"/api/me/visits/([^/]+)", path)
        if m and method == "PATCH":
            return httpx.Response(200, json=self._stamp({**body, "id": m.group(1), "userId": USER_ID}))
        if m and method == "DELETE":
            if m.group(1) in self.missing_visit_ids:
                return httpx.Response(404, json={"detail": "Visit not found"})
            return httpx.Response(204)
        if method == "POST" and path == "/api/wishlist":
            return httpx.Response(201, json=self._stamp({"id": next(self._ids), "userId": USER_ID,
                                                         "courseId": body["courseId"],
                                                         "createdAt": "2024-06-01T00:00:00Z"}))
        if method == "DELETE" and path.startswith("/api/wishlist/"):
            return httpx.Response(204)
        if method == "POST" and path == "/api/course-suggestions":
            return httpx.Response(201, json=self._stamp({**body, "submittedByUserId": USER_ID, "status": "Pending",
                                                         "createdAt": "2024-06-01T00:00:00Z"}))
        if method == "GET" and path == "/api/me/stats/overview":
            return httpx.Response(200, json={"totalCourses": 2, "totalVisits": 3, "longestMonthStreak": 2,
                                             "visitsByYear": [{"year": 2024, "count": 3}],
                                             "visitsByRegion": [{"country": "USA", "region": "NC", "count": 3}]})
        if method == "GET" and path == "/api/me/stats/timeline":
            return httpx.Response(200, json=[{"period": "2024", "visits": 3, "coursesPlayed": 2}])
        m = re.fullmatch(r"/api/profile/([^/]+)/stats/overview", path)
        if method == "GET" and m:
            return httpx.Response(200, json={"totalCourses": 1, "totalVisits": 1, "longestMonthStreak": 1})
        m = re.fullmatch(r"/api/profile/([^/]+)/visited-courses", path)
        if method == "GET" and m:
            return httpx.Response(200, json=[{"id": "pv1", "courseId": "c1", "visitDate": "2024-04-01",
                                              "holesPlayed": 18}])
        if method == "POST" and path in ("/api/auth/login", "/api/user"):
            if body.get("password") != "correct-horse":
                return httpx.Response(401, json={"detail": "Invalid credentials"})
            user = {**USER, "email": body["email"]}
            if "displayName" in body:
                user["displayName"] = body["displayName"]
            return httpx.Response(200, json={"token": self.token, "user": user})
        if method == "GET" and path == "/api/auth/me":
            return httpx.Response(200, json=USER)
        return httpx.Response(404, json={"detail": f"No route for {method} {path}"})


@pytest.fixture
def fake_server():
    return FakeCourseServer()


@pytest.fixture
def api_client(fake_server):
    return CourseTrackerAPIClient("http://testserver", token_provider=lambda: fake_server.token,
                                  timeout=5.0, transport=httpx.MockTransport(fake_server.handler))


@pytest.fixture
def sync_engine(seeded_repo, api_client):
    return SyncEngine(seeded_repo, api_client, user_id_provider=lambda: USER_ID,
                      retry_base_seconds=1.0, retry_max_seconds=8.0)


@pytest.fixture
def session(tmp_path, fake_server):
    return AppSession(base_url="http://testserver", auth_state_path=tmp_path / "auth" / "auth_state.json",
                      cache=QueryCache(stale_time=60.0), timeout=5.0,
                      transport=httpx.MockTransport(fake_server.handler))


@pytest.fixture
def signed_in_session(session, fake_server):
    session.token = fake_server.token
    session.user = UserProfile.model_validate(USER)
    return session


@pytest.fixture
def make_course():
    return course_payload


@pytest.fixture
def make_tee_box():
    return tee_box_payload
