from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class AuthUser(BaseModel):
    """
    A storefront customer, as resolved by the content backend's users/me.
    """

    model_config = ConfigDict(populate_by_name=True)

    user_id: str = Field(..., alias="id")
    email: Optional[str] = None
    username: Optional[str] = None
    role: str = "authenticated"

    @property
    def normalized_email(self) -> str:
        return (self.email or "").strip().lower()


class ServicePrincipal(BaseModel):
    """Caller of an internal endpoint, from a service-role JWT."""

    sub: str
    role: str
