# course_tracker/courses_api/exceptions.py
#
#
#######################################################################################################################
#
# Functions:

class NetworkError(Exception):
    """Base exception for course API errors."""
    pass

class APIConnectionError(NetworkError):
    """Raised when the server could not be reached."""
    pass

class APITimeoutError(NetworkError):
    """Raised when a request exceeded its timeout."""
    pass

class APIResponseError(NetworkError):
    """Raised for non-2xx responses or bodies that could not be decoded."""
    def __init__(self, status_code: int, message: str, body: dict = None):
        super().__init__(f"API Error {status_code}: {message}")
        self.status_code = status_code
        self.message = message
        self.body = body or {}

class AuthenticationError(APIResponseError):
    """Raised when the server rejects the bearer token or credentials (401)."""
    def __init__(self, message: str, body: dict = None):
        super().__init__(401, message, body)

#
# End of course_tracker/courses_api/exceptions.py
########################################################################################################################
