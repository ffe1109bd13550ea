from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class AuthUser(BaseModel):
    """
    Represents an authenticated caller decoded from a bearer token.
    """

    user_id: str = Field(..., alias="sub")
    email: Optional[EmailStr] = None
    role: str = "authenticated"
    # Store the token was issued for (owners only)
    store_id: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    @property
    def is_operator(self) -> bool:
        return self.role == "service_role"
