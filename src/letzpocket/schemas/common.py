"""Schemas shared by every router: the base model, errors and health."""

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field


class BaseSchema(BaseModel):
    """Base for request/response bodies; builds from ORM rows and dataclasses."""

    model_config = ConfigDict(
        from_attributes=True,
        populate_by_name=True,
        str_strip_whitespace=True,
    )


class ErrorDetail(BaseModel):
    """Body of every error response, rendered from ``LetzPocketError.to_dict``."""

    code: str = Field(..., description="Stable machine-readable code")
    message: str
    request_id: str | None = Field(None, description="Echo of X-Request-ID")
    details: dict[str, Any] | None = None

    model_config = ConfigDict(
        json_schema_extra={
            "example": {
                "code": "INSUFFICIENT_CREDITS",
                "message": "Insufficient credits. Required: 3, Available: 2",
                "request_id": "abc-123-def-456",
                "details": {"required": 3, "available": 2},
            }
        }
    )


class ErrorResponse(BaseModel):
    error: ErrorDetail


class HealthCheckResponse(BaseModel):
    """Readiness result with one entry per dependency."""

    status: Literal["ok", "degraded", "error"]
    checks: dict[str, str] = Field(
        default_factory=dict,
        examples=[{"database": "ok", "propertydata": "not_configured"}],
    )
