"""
API request and response models for ResumeLens REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two.

The /auth status payload keeps the camelCase keys the frontend already reads
(isAuthenticated); fields use snake_case with a serialization alias.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import User

# ---------------------------------------------------------------------------
# Auth
# ---------------------------------------------------------------------------


class PublicUser(BaseModel):
    """The user fields exposed to the browser. Internal ids stay server-side."""

    uuid: str
    username: str
    email: Optional[str] = None

    @classmethod
    def from_user(cls, user: User) -> "PublicUser":
        return cls(uuid=user.uuid, username=user.name, email=user.email)


class TrialInfo(BaseModel):
    """Trial accounting is disabled: every account reports unlimited use."""

    used: int = 0
    remaining: int = 999
    max: int = 999


class StatusResponse(BaseModel):
    """Response body for GET /auth?action=status.

    Serialize with to_content(): user is always set explicitly (null when
    signed out), while trial, plan_type and error only appear when they apply.
    """

    model_config = ConfigDict(populate_by_name=True)

    is_authenticated: bool = Field(alias="isAuthenticated")
    user: Optional[PublicUser] = None
    trial: Optional[TrialInfo] = None
    plan_type: Optional[str] = None
    error: Optional[str] = None

    def to_content(self) -> dict:
        """Dump by alias, dropping top-level fields that were never set.

        Only the top level is filtered; nested models (trial) keep their
        defaults.
        """
        data = self.model_dump(by_alias=True)
        fields = type(self).model_fields
        keep = {fields[name].alias or name for name in self.model_fields_set}
        return {key: value for key, value in data.items() if key in keep}


class SignOutResponse(BaseModel):
    success: bool = True
    message: str = "Signed out successfully"


# ---------------------------------------------------------------------------
# Payments (disabled)
# ---------------------------------------------------------------------------


class PaymentsDisabledResponse(BaseModel):
    success: bool = True
    message: str = "Payments are disabled. All users have unlimited access."
    disabled: bool = True


# ---------------------------------------------------------------------------
# Error envelope and health
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    """Machine-readable error code plus a human message."""

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Envelope for every non-2xx JSON response."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response body for GET /health."""

    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
