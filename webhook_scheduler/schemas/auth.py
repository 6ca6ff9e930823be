from typing import Literal, Optional

from pydantic import BaseModel


class TokenData(BaseModel):
    sub: Optional[str] = None
    tier: Optional[str] = None


class Owner(BaseModel):
    """Authenticated schedule owner."""
    id: str
    tier: Literal['free', 'paid'] = 'free'
