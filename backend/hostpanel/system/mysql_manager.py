import enum
import logging
import os
import re
import tempfile
from datetime import datetime

from sqlalchemy import bindparam, create_engine, text
from sqlalchemy.engine import URL
from sqlalchemy.exc import DBAPIError
from sqlalchemy.pool import NullPool

from hostpanel.core.exceptions import ExternalToolError, InvalidInput, NotConfigured
from hostpanel.system import runner

logger = logging.getLogger(__name__)

IDENTIFIER_RE = re.compile(r"[^a-zA-Z0-9_]")
HOST_RE = re.compile(r"^[A-Za-z0-9._%:-]+$")
MAX_DATABASE_NAME = 64
MAX_USER_NAME = 32
DEFAULT_SOCKET = "/var/run/mysqld/mysqld.sock"

ER_ACCESS_DENIED = 1045
ER_NONEXISTING_GRANT = 1141


class Privilege(str, enum.Enum):
    ALL = "ALL"
    READ_WRITE = "READ_WRITE"
    READ_ONLY = "READ_ONLY"


PRIVILEGE_SETS = {
    Privilege.ALL: "ALL PRIVILEGES",
    Privilege.READ_WRITE: "SELECT, INSERT, UPDATE, DELETE",
    Privilege.READ_ONLY: "SELECT",
}


# --- IDENTIFIERS ---

def sanitize_identifier(value: str) -> str:
    return IDENTIFIER_RE.sub("", value or "")


def validate_identifier(value: str, kind: str = "database name", max_length: int = MAX_DATABASE_NAME) -> str:
    """
    Only [a-zA-Z0-9_] is accepted. Input that would change under sanitizing is
    rejected, never silently truncated.
    """
    value = value or ""
    if not value or sanitize_identifier(value) != value:
        raise InvalidInput(f"Invalid {kind}: only letters, digits and underscore are allowed")
    if len(value) > max_length:
        raise InvalidInput(f"Invalid {kind}: at most {max_length} characters")
    return value


def validate_user(value: str) -> str:
    return validate_identifier(value, "username", MAX_USER_NAME)


def validate_host(value: str) -> str:
    value = value or "localhost"
    if not HOST_RE.match(value):
        raise InvalidInput("Invalid database user host")
    return value


def quote_identifier(value: str) -> str:
    return f"`{validate_identifier(value)}`"


def _error_code(exc: DBAPIError):
    orig = getattr(exc, "orig", None)
    if orig is not None and getattr(orig, "args", None):
        return orig.args[0]
    return None


def _error_text(exc: DBAPIError) -> str:
    orig = getattr(exc, "orig", None)
    if orig is not None and len(getattr(orig, "args", ())) > 1:
        return str(orig.args[1])
    return str(orig or exc)


# --- ENGINE ---

class MySQLManager:
    """
    Root connection to the local MySQL/MariaDB server.
    The unix socket is tried first, then TCP on 127.0.0.1 when root is denied
    (some installs only grant root@127.0.0.1 with a password).
    """

    def __init__(self, root_password: str, host: str = "localhost", socket_path: str = DEFAULT_SOCKET,
                 backup_dir: str = "/var/backups/hostpanel", timeout: int = 600):
        if not root_password:
            raise NotConfigured("MySQL root password not set in Settings")
        self.root_password = root_password
        self.host = host
        self.socket_path = socket_path
        self.backup_dir = backup_dir
        self.timeout = timeout
        self._engine = None

    def _urls(self):
        if self.host == "localhost" and os.path.exists(self.socket_path):
            yield URL.create("mysql+pymysql", username="root", password=self.root_password,
                             host="localhost", query={"unix_socket": self.socket_path})
        else:
            yield URL.create("mysql+pymysql", username="root", password=self.root_password, host=self.host)
        if self.host == "localhost":
            yield URL.create("mysql+pymysql", username="root", password=self.root_password, host="127.0.0.1")

    def _connect(self):
        if self._engine is not None:
            return self._engine.connect()

        last_error = None
        for url in self._urls():
            engine = create_engine(url, poolclass=NullPool)
            try:
                conn = engine.connect()
            except DBAPIError as e:
                last_error = e
                if _error_code(e) == ER_ACCESS_DENIED:
                    logger.warning("root access denied via %s, trying next", url.host)
                    continue
                raise ExternalToolError("mysql", _error_text(e), _error_code(e))
            self._engine = engine
            return conn

        raise ExternalToolError(
            "mysql",
            "Access denied for root. Check that the password in Settings matches the MySQL root password. "
            + (_error_text(last_error) if last_error else ""),
            ER_ACCESS_DENIED,
        )

    def execute(self, statement, params=None, ignore_codes=()):
        conn = self._connect()
        try:
            with conn.begin():
                result = conn.execute(statement, params or {})
                rows = result.fetchall() if result.returns_rows else []
            return rows
        except DBAPIError as e:
            if _error_code(e) in ignore_codes:
                logger.info("mysql: ignored error %s", _error_code(e))
                return []
            raise ExternalToolError("mysql", _error_text(e), _error_code(e))
        finally:
            conn.close()

    # --- DATABASES ---

    def create_database(self, name: str):
        self.execute(text(
            f"CREATE DATABASE IF NOT EXISTS {quote_identifier(name)} "
            "CHARACTER SET utf8mb4 COLLATE utf8mb4_unicode_ci"
        ))
        logger.info("mysql: database %s ensured", name)

    def drop_database(self, name: str):
        self.execute(text(f"DROP DATABASE IF EXISTS {quote_identifier(name)}"))
        logger.info("mysql: database %s dropped", name)

    def database_sizes(self, names: list) -> dict:
        names = [validate_identifier(n) for n in names]
        if not names:
            return {}
        stmt = text(
            "SELECT table_schema, COALESCE(SUM(data_length + index_length), 0) "
            "FROM information_schema.tables WHERE table_schema IN :names GROUP BY table_schema"
        ).bindparams(bindparam("names", expanding=True))
        rows = self.execute(stmt, {"names": names})
        sizes = {n: 0 for n in names}
        for schema, size in rows:
            sizes[schema] = int(size or 0)
        return sizes

    # --- USERS ---

    def create_user(self, username: str, password: str, host: str = "localhost"):
        self.execute(
            text("CREATE USER IF NOT EXISTS :user@:host IDENTIFIED BY :password"),
            {"user": validate_user(username), "host": validate_host(host), "password": password},
        )
        logger.info("mysql: user %s@%s ensured", username, host)

    def drop_user(self, username: str, host: str = "localhost"):
        self.execute(
            text("DROP USER IF EXISTS :user@:host"),
            {"user": validate_user(username), "host": validate_host(host)},
        )

    def set_user_password(self, username: str, password: str, host: str = "localhost"):
        self.execute(
            text("ALTER USER :user@:host IDENTIFIED BY :password"),
            {"user": validate_user(username), "host": validate_host(host), "password": password},
        )
        self.execute(text("FLUSH PRIVILEGES"))
        logger.info("mysql: password changed for %s@%s", username, host)

    # --- GRANTS ---

    def grant(self, username: str, database: str, privilege: Privilege = Privilege.ALL, host: str = "localhost"):
        privileges = PRIVILEGE_SETS[Privilege(privilege)]
        self.execute(
            text(f"GRANT {privileges} ON {quote_identifier(database)}.* TO :user@:host"),
            {"user": validate_user(username), "host": validate_host(host)},
        )
        self.execute(text("FLUSH PRIVILEGES"))
        logger.info("mysql: granted %s on %s to %s@%s", privileges, database, username, host)

    def revoke(self, username: str, database: str, host: str = "localhost"):
        # no grant on that database is already the wanted end state
        self.execute(
            text(f"REVOKE ALL PRIVILEGES ON {quote_identifier(database)}.* FROM :user@:host"),
            {"user": validate_user(username), "host": validate_host(host)},
            ignore_codes=(ER_NONEXISTING_GRANT,),
        )
        self.execute(text("FLUSH PRIVILEGES"))
        logger.info("mysql: revoked %s from %s@%s", database, username, host)

    def show_grants(self, username: str, host: str = "localhost") -> list:
        rows = self.execute(
            text("SHOW GRANTS FOR :user@:host"),
            {"user": validate_user(username), "host": validate_host(host)},
        )
        return sorted(row[0] for row in rows)

    # --- DUMP / REPAIR ---

    def _defaults_file(self) -> str:
        """Client option file so the root password never shows up in argv."""
        fd, path = tempfile.mkstemp(prefix="hostpanel-my-", suffix=".cnf")
        password = self.root_password.replace("\\", "\\\\").replace('"', '\\"')
        with os.fdopen(fd, "w") as f:
            f.write(f'[client]\nuser=root\npassword="{password}"\n')
            if self.host == "localhost" and os.path.exists(self.socket_path):
                f.write(f"socket={self.socket_path}\n")
            else:
                f.write(f"host={self.host}\n")
        os.chmod(path, 0o600)
        return path

    def dump_database(self, name: str) -> str:
        name = validate_identifier(name)
        os.makedirs(self.backup_dir, mode=0o700, exist_ok=True)
        stamp = datetime.utcnow().strftime("%Y%m%d-%H%M%S")
        target = os.path.join(self.backup_dir, f"{name}-{stamp}.sql")

        defaults = self._defaults_file()
        try:
            runner.run_command(
                [
                    "mysqldump", f"--defaults-extra-file={defaults}",
                    "--single-transaction", "--routines", "--triggers",
                    f"--result-file={target}", name,
                ],
                timeout=self.timeout,
                check=True,
                tool="mysqldump",
            )
        finally:
            os.unlink(defaults)

        logger.info("mysql: dumped %s to %s", name, target)
        return target

    def repair_database(self, name: str) -> str:
        name = validate_identifier(name)
        defaults = self._defaults_file()
        try:
            result = runner.run_command(
                ["mysqlcheck", f"--defaults-extra-file={defaults}", "--auto-repair", "--check", name],
                timeout=self.timeout,
                check=True,
                tool="mysqlcheck",
            )
        finally:
            os.unlink(defaults)
        return result.stdout
