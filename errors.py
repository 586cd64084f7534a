"""
Error taxonomy shared by the HTTP and the Socket.IO transport.

Services raise these; each transport maps them to its own idiom
(status code + JSON body, or an ``{"error", "code"}`` acknowledgement).
"""


class TaskTrackerError(Exception):
    status_code = 500
    code = "INTERNAL"
    default_message = "Internal server error"

    def __init__(self, message: str = None):
        self.message = message or self.default_message
        super().__init__(self.message)

    def to_payload(self) -> dict:
        return {"error": self.message, "code": self.code}


class ValidationError(TaskTrackerError):
    status_code = 400
    code = "VALIDATION_ERROR"
    default_message = "Invalid input"


class Unauthenticated(TaskTrackerError):
    status_code = 401
    code = "AUTH_REQUIRED"
    default_message = "Authentication required"


class NotFound(TaskTrackerError):
    status_code = 404
    code = "NOT_FOUND"
    default_message = "Not found"


class Conflict(TaskTrackerError):
    # Duplicate registrations answer 400 like every other bad registration.
    status_code = 400
    code = "CONFLICT"
    default_message = "Already exists"


class UploadRejected(TaskTrackerError):
    status_code = 400
    code = "UPLOAD_REJECTED"
    default_message = "Upload rejected"


class InternalError(TaskTrackerError):
    pass
