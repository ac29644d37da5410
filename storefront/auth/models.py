from typing import Tuple
from pydantic import BaseModel, Field


class Principal(BaseModel):
    """Caller identity as asserted by the external identity service's token."""

    user_id: str
    roles: Tuple[str, ...] = Field(default_factory=tuple)
    is_admin: bool = False
