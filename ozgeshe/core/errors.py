from typing import Optional
from fastapi import HTTPException, status


class AppError(HTTPException):
    """HTTP failure that also carries a machine-readable code."""

    status_code_default = status.HTTP_500_INTERNAL_SERVER_ERROR
    code_default = "SERVER_ERROR"
    detail_default = "Internal server error"

    def __init__(self, detail: Optional[str] = None, code: Optional[str] = None):
        super().__init__(
            status_code=self.status_code_default,
            detail=detail or self.detail_default,
        )
        self.code = code or self.code_default


class ValidationFailed(AppError):
    status_code_default = status.HTTP_400_BAD_REQUEST
    code_default = "VALIDATION_ERROR"
    detail_default = "Invalid request"


class Unauthorized(AppError):
    status_code_default = status.HTTP_401_UNAUTHORIZED
    code_default = "UNAUTHORIZED"
    detail_default = "Unauthorized"


class Forbidden(AppError):
    status_code_default = status.HTTP_403_FORBIDDEN
    code_default = "FORBIDDEN"
    detail_default = "Forbidden"


class NotFound(AppError):
    status_code_default = status.HTTP_404_NOT_FOUND
    code_default = "NOT_FOUND"
    detail_default = "Not found"


class Conflict(AppError):
    status_code_default = status.HTTP_409_CONFLICT
    code_default = "CONFLICT"
    detail_default = "Conflict"


class ServerError(AppError):
    pass
