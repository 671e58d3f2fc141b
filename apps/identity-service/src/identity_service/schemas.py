from typing import Any

from pydantic import BaseModel, Field, field_validator


class _EmailPasswordRequest(BaseModel):
    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1, max_length=255)

    @field_validator("email")
    @classmethod
    def _normalize_email(cls, value: str) -> str:
        normalized = value.strip().lower()
        if "@" not in normalized:
            raise ValueError("email must contain '@'")
        return normalized


class TokenRequest(_EmailPasswordRequest):
    pass


class SignupRequest(_EmailPasswordRequest):
    password: str = Field(min_length=6, max_length=255)
    user_metadata: dict[str, Any] = Field(default_factory=dict)


class RefreshRequest(BaseModel):
    refresh_token: str
