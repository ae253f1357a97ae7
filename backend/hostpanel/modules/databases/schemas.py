from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel

from hostpanel.system.mysql_manager import Privilege


class DatabaseCreate(BaseModel):
    name: str
    site_id: Optional[int] = None


class SiteDatabaseCreate(BaseModel):
    name: str
    # new: create a user with a generated password, existing: grant to a known user
    user_mode: Literal["new", "existing", "none"] = "new"
    username: Optional[str] = None
    db_user_id: Optional[int] = None
    privileges: Privilege = Privilege.ALL


class DbUserCreate(BaseModel):
    username: str
    password: Optional[str] = None
    host: str = "localhost"


class GrantUpdate(BaseModel):
    db_user_id: int
    privileges: Privilege = Privilege.ALL


class GrantResponse(BaseModel):
    db_user_id: int
    username: str
    privileges: Privilege


class DatabaseResponse(BaseModel):
    id: int
    name: str
    site_id: Optional[int] = None
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DatabaseDetail(DatabaseResponse):
    domain: Optional[str] = None
    size: Optional[int] = None
    grants: List[GrantResponse] = []


class DbUserResponse(BaseModel):
    id: int
    username: str
    host: str
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class Credentials(BaseModel):
    """Shown once, right after creation or a password reset."""
    username: str
    password: str
    host: str = "localhost"


class SiteDatabaseCreated(BaseModel):
    database: DatabaseResponse
    credentials: Optional[Credentials] = None
    privileges: Optional[Privilege] = None
