# session.py
# Description: Explicit session context owning the auth token, current user and query cache.
#
# Imports
import json
import os
from pathlib import Path
from typing import Optional, Union
#
# Third-Party Imports
import httpx
import pydantic
from loguru import logger
#
# Local Imports
from course_tracker.config import get_api_base_url, get_auth_state_path
from course_tracker.courses_api.client import CourseTrackerAPIClient
from course_tracker.courses_api.exceptions import AuthenticationError, NetworkError
from course_tracker.courses_api.schemas import AuthResponse
from course_tracker.models import UserProfile
from course_tracker.Query.query_cache import QueryCache
#
#######################################################################################################################
#
# Functions:

class AppSession:
    """
    Holds who is signed in and everything whose lifetime follows that.

    The API client built here reads the bearer token from the session on every
    request. Token and profile are persisted to a JSON file so a restart keeps
    the user signed in; an unreadable file means signed out.
    """

    def __init__(self, base_url: Optional[str] = None, auth_state_path: Optional[Union[str, Path]] = None,
                 cache: Optional[QueryCache] = None, timeout: Optional[float] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = base_url or get_api_base_url()
        self.auth_state_path = Path(auth_state_path) if auth_state_path else get_auth_state_path()
        self.cache = cache if cache is not None else QueryCache()
        self.token: Optional[str] = None
        self.user: Optional[UserProfile] = None
        self.api = CourseTrackerAPIClient(self.base_url, token_provider=lambda: self.token,
                                          timeout=timeout, transport=transport)
        self._load_auth_state()

    @property
    def is_authenticated(self) -> bool:
        return self.token is not None and self.user is not None

    @property
    def user_id(self) -> Optional[str]:
        return self.user.id if self.user else None

    # --- Persisted Auth State ---
    def _load_auth_state(self):
        try:
            if not self.auth_state_path.exists():
                logger.debug(f"No auth state at {self.auth_state_path}; starting signed out.")
                return
            with open(self.auth_state_path, 'r', encoding='utf-8') as f:
                state = json.load(f)
            token, user = state.get('token'), state.get('user')
            if token and user:
                self.token = token
                self.user = UserProfile.model_validate(user)
                logger.info(f"Restored session for {self.user.email}")
        except (json.JSONDecodeError, OSError, AttributeError, pydantic.ValidationError) as e:
            logger.error(f"Could not load auth state from {self.auth_state_path}: {e}. Treating as signed out.")
            self.token = None
            self.user = None

    def _save_auth_state(self):
        state = {
            'token': self.token,
            'user': self.user.model_dump(by_alias=True) if self.user else None,
        }
        try:
            os.makedirs(os.path.dirname(self.auth_state_path) or '.', exist_ok=True)
            with open(self.auth_state_path, 'w', encoding='utf-8') as f:
                json.dump(state, f, indent=4)
            logger.debug(f"Saved auth state to {self.auth_state_path}")
        except OSError as e:
            logger.error(f"Error saving auth state to {self.auth_state_path}: {e}")

    def _clear_auth_state(self):
        self.token = None
        self.user = None
        try:
            if self.auth_state_path.exists():
                self.auth_state_path.unlink()
        except OSError as e:
            logger.error(f"Error removing auth state {self.auth_state_path}: {e}")

    def _adopt(self, auth: AuthResponse) -> UserProfile:
        self.token = auth.token
        self.user = auth.user
        self._save_auth_state()
        self.cache.clear()
        return auth.user

    # --- Auth Operations ---
    async def sign_in(self, email: str, password: str) -> UserProfile:
        """Raises NetworkError (AuthenticationError for bad credentials) after clearing the session."""
        try:
            auth = await self.api.login(email, password)
        except NetworkError as e:
            logger.error(f"Sign-in failed for {email}: {e}")
            self._clear_auth_state()
            raise
        logger.info(f"Signed in as {auth.user.email}")
        return self._adopt(auth)

    async def register(self, email: str, password: str, display_name: str) -> UserProfile:
        try:
            auth = await self.api.register(email, password, display_name)
        except NetworkError as e:
            logger.error(f"Registration failed for {email}: {e}")
            self._clear_auth_state()
            raise
        logger.info(f"Registered and signed in as {auth.user.email}")
        return self._adopt(auth)

    async def sign_out(self):
        self._clear_auth_state()
        self.cache.clear()
        logger.info("Signed out")

    async def refresh_profile(self) -> Optional[UserProfile]:
        """Reloads the current user. A rejected token signs the session out before re-raising."""
        if not self.token:
            return None
        try:
            user = await self.api.get_me()
        except AuthenticationError:
            logger.warning("Stored token was rejected; signing out")
            await self.sign_out()
            raise
        self.user = user
        self._save_auth_state()
        return user

    async def close(self):
        await self.api.close()

#
# End of session.py
#######################################################################################################################
