from typing import Any, Dict, Optional

from fastapi import status


class ServiceError(Exception):
    status_code = status.HTTP_400_BAD_REQUEST

    def __init__(self, message: str, code: str = "BAD_REQUEST", details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.code = code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"code": self.code, "message": self.message, "details": self.details}


class UnauthorizedError(ServiceError):
    status_code = status.HTTP_401_UNAUTHORIZED

    def __init__(self, message: str = "unauthorized", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "UNAUTHORIZED", details)


class ForbiddenError(ServiceError):
    status_code = status.HTTP_403_FORBIDDEN

    def __init__(self, message: str = "forbidden", details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "FORBIDDEN", details)


class BadRequestError(ServiceError):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "BAD_REQUEST", details)


class NotFoundError(ServiceError):
    status_code = status.HTTP_404_NOT_FOUND

    def __init__(self, resource: str, identifier: Any):
        super().__init__(
            f"{resource} not found: {identifier}",
            "NOT_FOUND",
            {"resource": resource, "identifier": str(identifier)},
        )


class ConflictError(ServiceError):
    status_code = status.HTTP_409_CONFLICT

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message, "CONFLICT", details)


class LocationRequiredError(BadRequestError):
    def __init__(self):
        super().__init__("location required", {"rule": "LOCATION_REQUIRED"})


class InsufficientStockError(BadRequestError):
    def __init__(self, item_name: str, required: int, available: int):
        super().__init__(
            "insufficient stock",
            {"item": item_name, "required": required, "available": available},
        )


class BillingDraftError(BadRequestError):
    """A billing draft broke one of the validation rules; `rule` names which one."""

    def __init__(self, message: str, rule: str):
        super().__init__(message, {"rule": rule})
        self.rule = rule


class ReportError(BadRequestError):
    pass
