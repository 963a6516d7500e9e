"""
API request and response models for Packspace REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

Auth endpoints take form-encoded bodies, so there are no request models here:
fields are declared with Form() on the route and validated by auth/validation.py.
"""

from pydantic import BaseModel, ConfigDict

# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class MessageResponse(BaseModel):
    """Success envelope shared by every auth endpoint."""

    model_config = ConfigDict(frozen=True)

    success: bool = True
    message: str


class MeResponse(BaseModel):
    """Response for GET /api/auth/me."""

    user_id: str
    username: str
    email: str
    session_expires_at: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload.

    field names the offending form field for validation and conflict errors so
    the client can attach the message to the right input.
    """

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    field: str | None = None
    detail: str | None = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /api/health."""

    model_config = ConfigDict(frozen=True)

    status: str = "healthy"
    version: str
    components: dict[str, str]
