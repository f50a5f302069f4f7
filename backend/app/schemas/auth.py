from pydantic import BaseModel, Field


class CurrentUserResponse(BaseModel):
    """Schema for the signed-in user."""

    id: str = Field(..., description="Supabase user id (token subject)")
    email: str = Field(..., description="User email")
    name: str | None = Field(None, description="Display name from the identity provider")
    avatar_url: str | None = None
    domain: str | None = Field(None, description="Email domain used for access control")
