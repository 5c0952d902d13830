from pydantic import BaseModel, Field, model_validator


class LoginRequest(BaseModel):
    """Staff sign-in at a till; either identifier field may carry the username or email."""

    model_config = {
        "json_schema_extra": {
            "examples": [
                {"username_or_email": "cashier-front", "password": "Pass1234!"},
            ]
        }
    }

    email: str | None = None
    username_or_email: str | None = None
    password: str = Field(min_length=1)

    @model_validator(mode="after")
    def require_identifier(self):
        if not (self.email or self.username_or_email):
            raise ValueError("email or username_or_email is required")
        return self

    @property
    def identifier(self) -> str:
        return (self.email or self.username_or_email or "").strip()


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    business_id: str
    role: str
    trace_id: str
