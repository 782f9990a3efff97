"""
Error taxonomy shared by every coordinator.

Each error carries the user-facing message and the HTTP status the API
layer answers with; the app factory turns them into ``{"error": message}``.
"""


class TourneyError(Exception):
    status_code = 500

    def __init__(self, message: str, status_code: int = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class Unauthorized(TourneyError):
    status_code = 401

    def __init__(self, message: str = "Unauthorized"):
        super().__init__(message)


class Forbidden(TourneyError):
    status_code = 403


class ValidationError(TourneyError):
    status_code = 400


class Conflict(TourneyError):
    status_code = 409


class NotFound(TourneyError):
    status_code = 404
