from typing import Optional
from pydantic import BaseModel, ConfigDict, Field


class AuthenticatedUser(BaseModel):
    """User context passed through authentication dependencies"""

    model_config = ConfigDict(from_attributes=True)

    user_id: str
    email: Optional[str] = None
    # Raw bearer token, forwarded to services that own usage counters
    access_token: Optional[str] = Field(default=None, exclude=True, repr=False)
