import logging
import os
import re
from typing import Optional

from sqlalchemy.orm import Session

from hostpanel.core.exceptions import ExternalToolError, InvalidInput, NotFound
from hostpanel.core.security import generate_password, get_password_hash
from hostpanel.modules.databases import models
from hostpanel.system.mysql_manager import MySQLManager, Privilege, validate_host, validate_identifier, validate_user

logger = logging.getLogger(__name__)

BACKUP_NAME_RE = re.compile(r"^[A-Za-z0-9_]+-\d{8}-\d{6}\.sql$")


def get_database(db: Session, db_id: int, site_id: Optional[int] = None) -> models.Database:
    query = db.query(models.Database).filter(models.Database.id == db_id)
    if site_id is not None:
        query = query.filter(models.Database.site_id == site_id)
    database = query.first()
    if not database:
        raise NotFound("Database not found")
    return database


def get_db_user(db: Session, user_id: int) -> models.DbUser:
    user = db.get(models.DbUser, user_id)
    if not user:
        raise NotFound("Database user not found")
    return user


def get_site_db_user(db: Session, site_id: int, user_id: int) -> models.DbUser:
    """A user counts as the site's only while it holds a grant on one of the site's databases."""
    user = get_db_user(db, user_id)
    granted = (
        db.query(models.DbGrant)
        .join(models.Database, models.DbGrant.database_id == models.Database.id)
        .filter(models.DbGrant.db_user_id == user.id, models.Database.site_id == site_id)
        .first()
    )
    if granted is None:
        raise NotFound("Database user not found")
    return user


def check_new_database(db: Session, name: str) -> str:
    name = validate_identifier(name, "database name")
    if db.query(models.Database).filter(models.Database.name == name).first():
        raise InvalidInput("Database name already exists")
    return name


def check_new_user(db: Session, username: str) -> str:
    username = validate_user(username)
    if db.query(models.DbUser).filter(models.DbUser.username == username).first():
        raise InvalidInput("Database user already exists")
    return username


def create_db_user(db: Session, mysql: MySQLManager, username: str, password: Optional[str] = None,
                   host: str = "localhost"):
    """Engine first, then the record. Returns (user, plaintext password)."""
    username = check_new_user(db, username)
    host = validate_host(host)
    password = password or generate_password()

    mysql.create_user(username, password, host)
    user = models.DbUser(
        username=username,
        password_hash=get_password_hash(password),
        password_plain=password,
        host=host,
    )
    db.add(user)
    db.flush()
    return user, password


def set_grant(db: Session, mysql: MySQLManager, database: models.Database, user: models.DbUser,
              privileges: Privilege) -> models.DbGrant:
    """
    One grant row per (database, user). Changing the level revokes first so
    the user ends up with exactly the requested set.
    """
    grant = (
        db.query(models.DbGrant)
        .filter(models.DbGrant.database_id == database.id, models.DbGrant.db_user_id == user.id)
        .first()
    )
    if grant is not None:
        mysql.revoke(user.username, database.name, user.host)
    try:
        mysql.grant(user.username, database.name, privileges, user.host)
    except ExternalToolError:
        if grant is not None:
            _restore_grant(db, mysql, grant, database, user)
        raise

    if grant is None:
        grant = models.DbGrant(database_id=database.id, db_user_id=user.id, privileges=privileges)
        db.add(grant)
    else:
        grant.privileges = privileges
    db.flush()
    return grant


def _restore_grant(db: Session, mysql: MySQLManager, grant: models.DbGrant, database: models.Database,
                   user: models.DbUser):
    """Re-grant the previous level after the new one was refused; drop the row if even that fails."""
    try:
        mysql.grant(user.username, database.name, grant.privileges, user.host)
    except ExternalToolError as e:
        logger.error("could not restore %s on %s: %s", user.username, database.name, e.message)
        db.delete(grant)
        db.commit()


def revoke_grant(db: Session, mysql: MySQLManager, database: models.Database, user: models.DbUser):
    grant = (
        db.query(models.DbGrant)
        .filter(models.DbGrant.database_id == database.id, models.DbGrant.db_user_id == user.id)
        .first()
    )
    if grant is None:
        raise NotFound("Grant not found")
    mysql.revoke(user.username, database.name, user.host)
    db.delete(grant)
    db.flush()


def create_site_database(db: Session, mysql: MySQLManager, site_id: int, payload):
    """
    Database + optional user + grant. Everything is validated before the
    engine is touched; if a later engine step fails the new database is
    dropped again. Returns (database, credentials or None).
    """
    name = check_new_database(db, payload.name)
    existing_user = None
    if payload.user_mode == "new":
        check_new_user(db, payload.username or name[:32])
    elif payload.user_mode == "existing":
        if payload.db_user_id is None:
            raise InvalidInput("Choose an existing database user")
        existing_user = get_db_user(db, payload.db_user_id)

    mysql.create_database(name)
    database = models.Database(name=name, site_id=site_id)
    db.add(database)
    db.flush()

    credentials = None
    new_user = None
    try:
        if payload.user_mode == "new":
            new_user, password = create_db_user(db, mysql, payload.username or name[:32])
            credentials = {"username": new_user.username, "password": password, "host": new_user.host}
            set_grant(db, mysql, database, new_user, payload.privileges)
        elif existing_user is not None:
            set_grant(db, mysql, database, existing_user, payload.privileges)
    except ExternalToolError:
        created_user = (new_user.username, new_user.host) if new_user is not None else None
        db.rollback()
        try:
            if created_user:
                mysql.drop_user(*created_user)
            mysql.drop_database(name)
        except ExternalToolError as e:
            logger.error("could not clean up %s after failed setup: %s", name, e.diagnostic)
        raise

    db.commit()
    db.refresh(database)
    logger.info("database %s created for site %s", name, site_id)
    return database, credentials


def reset_user_password(db: Session, mysql: MySQLManager, user: models.DbUser) -> str:
    """The engine changes first; the stored record only when that worked."""
    password = generate_password()
    mysql.set_user_password(user.username, password, user.host)
    user.password_hash = get_password_hash(password)
    user.password_plain = password
    db.commit()
    logger.info("password reset for database user %s", user.username)
    return password


def delete_database(db: Session, mysql: MySQLManager, database: models.Database):
    name = database.name
    for grant in database.grants:
        mysql.revoke(grant.user.username, database.name, grant.user.host)
    mysql.drop_database(name)
    db.delete(database)
    db.commit()
    logger.info("database %s deleted", name)


def backup_file(backup_dir: str, filename: str) -> str:
    """Path of an existing dump inside the backup directory."""
    if not BACKUP_NAME_RE.match(filename or ""):
        raise InvalidInput("Invalid backup name")
    root = os.path.realpath(backup_dir)
    path = os.path.realpath(os.path.join(root, filename))
    if os.path.dirname(path) != root or not os.path.isfile(path):
        raise NotFound("Backup not found")
    return path


def database_detail(database: models.Database, sizes: dict) -> dict:
    return {
        "id": database.id,
        "name": database.name,
        "site_id": database.site_id,
        "domain": database.site.domain if database.site else None,
        "created_at": database.created_at,
        "size": sizes.get(database.name),
        "grants": [
            {"db_user_id": g.db_user_id, "username": g.user.username, "privileges": g.privileges}
            for g in sorted(database.grants, key=lambda g: g.user.username)
        ],
    }
