"""
User profile schemas
"""

from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field, field_validator


class UserProfile(BaseModel):
    """Public profile of a user, mutated only by its owner"""
    id: str
    display_name: str
    email: Optional[str] = None
    avatar_url: Optional[str] = None
    last_active: Optional[datetime] = None

    @property
    def avatar(self) -> str:
        """Avatar URL with a generated fallback"""
        return self.avatar_url or f"https://avatar.vercel.sh/{self.id}.png"


class ProfileUpdate(BaseModel):
    """Owner edits to a profile"""
    display_name: Optional[str] = Field(default=None, min_length=2, max_length=80)
    avatar_url: Optional[str] = Field(default=None, max_length=2048)

    @field_validator("display_name")
    @classmethod
    def strip_display_name(cls, v: Optional[str]) -> Optional[str]:
        if v is None:
            return v
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Display name must be at least 2 characters")
        return v


class UserSearchResponse(BaseModel):
    users: list[UserProfile]
