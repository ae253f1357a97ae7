import logging
import os
from typing import List

from fastapi import APIRouter, Depends
from fastapi.responses import FileResponse
from sqlalchemy.orm import Session

from hostpanel.core.config import Settings
from hostpanel.core.database import get_db
from hostpanel.core.deps import get_config
from hostpanel.core.exceptions import ExternalToolError
from hostpanel.modules.auth.deps import get_current_user
from hostpanel.modules.databases import models, schemas, service
from hostpanel.modules.databases.deps import get_mysql_manager, require_mysql
from hostpanel.modules.sites.service import get_site
from hostpanel.modules.users.models import User
from hostpanel.modules.wizard.deps import require_wizard_complete

logger = logging.getLogger(__name__)

gated = [Depends(get_current_user), Depends(require_wizard_complete)]

router = APIRouter(prefix="/databases", tags=["Databases"], dependencies=gated)
site_router = APIRouter(prefix="/sites", tags=["Databases"], dependencies=gated)
backups_router = APIRouter(prefix="/backups", tags=["Databases"], dependencies=[Depends(get_current_user)])


# --- GLOBAL ---

@router.get("", response_model=List[schemas.DatabaseDetail])
def list_databases(db: Session = Depends(get_db), mysql=Depends(get_mysql_manager)):
    databases = db.query(models.Database).order_by(models.Database.name).all()
    sizes = {}
    if mysql is not None and databases:
        try:
            sizes = mysql.database_sizes([d.name for d in databases])
        except ExternalToolError as e:
            logger.warning("database sizes unavailable: %s", e.message)
    return [service.database_detail(d, sizes) for d in databases]


@router.post("", response_model=schemas.DatabaseResponse, status_code=201)
def create_database(payload: schemas.DatabaseCreate, db: Session = Depends(get_db),
                    mysql=Depends(get_mysql_manager)):
    name = service.check_new_database(db, payload.name)
    if payload.site_id is not None:
        get_site(db, payload.site_id)
    mysql = require_mysql(mysql)

    mysql.create_database(name)
    database = models.Database(name=name, site_id=payload.site_id)
    db.add(database)
    db.commit()
    db.refresh(database)
    return database


@router.get("/users", response_model=List[schemas.DbUserResponse])
def list_db_users(db: Session = Depends(get_db)):
    return db.query(models.DbUser).order_by(models.DbUser.username).all()


@router.post("/users", response_model=schemas.Credentials, status_code=201)
def create_db_user(payload: schemas.DbUserCreate, db: Session = Depends(get_db),
                   mysql=Depends(get_mysql_manager)):
    service.check_new_user(db, payload.username)
    mysql = require_mysql(mysql)
    user, password = service.create_db_user(db, mysql, payload.username, payload.password, payload.host)
    db.commit()
    return {"username": user.username, "password": password, "host": user.host}


# --- PER SITE ---

@site_router.post("/{site_id}/databases", response_model=schemas.SiteDatabaseCreated, status_code=201)
def create_site_database(site_id: int, payload: schemas.SiteDatabaseCreate, db: Session = Depends(get_db),
                         mysql=Depends(get_mysql_manager)):
    get_site(db, site_id)
    mysql = require_mysql(mysql)
    database, credentials = service.create_site_database(db, mysql, site_id, payload)
    return {
        "database": database,
        "credentials": credentials,
        "privileges": payload.privileges if payload.user_mode != "none" else None,
    }


@site_router.post("/{site_id}/databases/{db_id}/grants", response_model=schemas.GrantResponse)
def set_grant(site_id: int, db_id: int, payload: schemas.GrantUpdate, db: Session = Depends(get_db),
              mysql=Depends(get_mysql_manager)):
    database = service.get_database(db, db_id, site_id)
    user = service.get_db_user(db, payload.db_user_id)
    mysql = require_mysql(mysql)
    grant = service.set_grant(db, mysql, database, user, payload.privileges)
    db.commit()
    return {"db_user_id": user.id, "username": user.username, "privileges": grant.privileges}


@site_router.delete("/{site_id}/databases/{db_id}/grants/{user_id}")
def revoke_grant(site_id: int, db_id: int, user_id: int, db: Session = Depends(get_db),
                 mysql=Depends(get_mysql_manager)):
    database = service.get_database(db, db_id, site_id)
    user = service.get_db_user(db, user_id)
    mysql = require_mysql(mysql)
    service.revoke_grant(db, mysql, database, user)
    db.commit()
    return {"message": f"Access to {database.name} revoked for {user.username}"}


@site_router.post("/{site_id}/db-users/{user_id}/reset-password", response_model=schemas.Credentials)
def reset_password(site_id: int, user_id: int, db: Session = Depends(get_db),
                   mysql=Depends(get_mysql_manager)):
    get_site(db, site_id)
    user = service.get_site_db_user(db, site_id, user_id)
    mysql = require_mysql(mysql)
    password = service.reset_user_password(db, mysql, user)
    return {"username": user.username, "password": password, "host": user.host}


@site_router.delete("/{site_id}/databases/{db_id}")
def delete_database(site_id: int, db_id: int, db: Session = Depends(get_db),
                    mysql=Depends(get_mysql_manager)):
    database = service.get_database(db, db_id, site_id)
    mysql = require_mysql(mysql)
    name = database.name
    service.delete_database(db, mysql, database)
    return {"message": f"Database {name} deleted"}


@site_router.post("/{site_id}/databases/{db_id}/backup")
def backup_database(site_id: int, db_id: int, db: Session = Depends(get_db),
                    mysql=Depends(get_mysql_manager)):
    database = service.get_database(db, db_id, site_id)
    mysql = require_mysql(mysql)
    path = mysql.dump_database(database.name)
    filename = os.path.basename(path)
    return {"message": "Backup created", "filename": filename, "download_url": f"/backups/{filename}"}


@site_router.post("/{site_id}/databases/{db_id}/repair")
def repair_database(site_id: int, db_id: int, db: Session = Depends(get_db),
                    mysql=Depends(get_mysql_manager)):
    database = service.get_database(db, db_id, site_id)
    mysql = require_mysql(mysql)
    output = mysql.repair_database(database.name)
    return {"message": f"{database.name} checked", "output": output}


# --- DOWNLOAD ---

@backups_router.get("/{filename}")
def download_backup(filename: str, cfg: Settings = Depends(get_config)):
    path = service.backup_file(cfg.backup_dir, filename)
    return FileResponse(path, filename=filename, media_type="application/sql")
