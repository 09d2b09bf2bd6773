"""Error taxonomy for the release lifecycle.

Every error carries its HTTP status and a stable ``code``; ``extra`` fields
are merged into the JSON error body by the API layer.
"""


class ReleaseError(Exception):
    status_code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None, **extra):
        self.message = message or self.default_message
        self.extra = extra
        super().__init__(self.message)

    @property
    def code(self) -> str:
        return type(self).__name__

    def to_body(self) -> dict:
        return {"error": self.message, "code": self.code, **self.extra}


class ValidationMissing(ReleaseError):
    status_code = 400
    default_message = "Missing required fields"


class UploadTooLarge(ReleaseError):
    status_code = 413
    default_message = "File size exceeds limit"


class InvalidTransition(ReleaseError):
    status_code = 400
    default_message = "Job must be released before marking as completed"


class TokenInvalid(ReleaseError):
    status_code = 403
    default_message = "Invalid token"


class AlreadyViewed(ReleaseError):
    status_code = 403
    default_message = "Document already viewed (one-time only)"

    def __init__(self, view_count: int = 1):
        super().__init__(alreadyViewed=True, viewCount=view_count)


class RequiresView(ReleaseError):
    status_code = 403
    default_message = "Document must be viewed before releasing"

    def __init__(self):
        super().__init__(requiresView=True)


class PrintTokenMissing(ReleaseError):
    status_code = 400
    default_message = "Print token is required"


class PrintTokenInvalid(ReleaseError):
    status_code = 403
    default_message = "Invalid print token"


class PrintTokenExpired(ReleaseError):
    status_code = 403
    default_message = "Print token has expired"


class PrintTokenUsed(ReleaseError):
    status_code = 403
    default_message = "Print token has already been used"


class RateLimited(ReleaseError):
    status_code = 429
    default_message = "Too many requests, please try again later"


class CryptoAuth(ReleaseError):
    status_code = 403
    default_message = "Decryption failed"


class NotFound(ReleaseError):
    status_code = 404
    default_message = "Job not found"


class AlreadyReleased(ReleaseError):
    status_code = 409
    default_message = "Print job has already been released"


class LinkExpired(ReleaseError):
    status_code = 410
    default_message = "Print link has expired"


class Internal(ReleaseError):
    status_code = 500
