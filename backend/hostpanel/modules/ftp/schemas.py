from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field


class FtpUserCreate(BaseModel):
    username: str = Field(min_length=1, max_length=64)
    password: Optional[str] = None  # generated when empty
    default_route: str = ""


class FtpUserUpdate(BaseModel):
    default_route: str = ""


class FtpUserResponse(BaseModel):
    id: int
    site_id: int
    username: str
    default_route: Optional[str] = ""
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class FtpCredentials(BaseModel):
    id: int
    login: str
    password: str
    home: str
