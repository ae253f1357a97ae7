import pytest
from fastapi.testclient import TestClient

from hostpanel.core.config import Settings
from hostpanel.core.exceptions import ExternalToolError
from hostpanel.main import create_app
from hostpanel.modules.databases.deps import get_mysql_manager
from hostpanel.system import runner
from hostpanel.system.mysql_manager import PRIVILEGE_SETS, Privilege


class FakeRunner:
    """
    Stands in for runner.run_command. Every call is recorded; commands whose
    argv starts with a registered prefix fail (or print) as configured.
    """

    def __init__(self):
        self.calls = []
        self.failures = {}
        self.outputs = {}

    def fail(self, *prefix, stderr="error", returncode=1):
        self.failures[tuple(prefix)] = (returncode, stderr)

    def output(self, *prefix, stdout=""):
        self.outputs[tuple(prefix)] = stdout

    def clear(self):
        self.calls.clear()

    @staticmethod
    def _match(args, table):
        for prefix, value in table.items():
            if tuple(args[:len(prefix)]) == prefix:
                return value
        return None

    def __call__(self, args, timeout=None, input=None, cwd=None, env=None, check=False, tool=None):
        args = [str(a) for a in args]
        self.calls.append(args)

        failure = self._match(args, self.failures)
        if failure is not None:
            returncode, stderr = failure
            if check:
                raise ExternalToolError(tool or args[0], stderr, returncode)
            return runner.CommandResult(args, returncode, "", stderr)

        stdout = self._match(args, self.outputs) or ""
        return runner.CommandResult(args, 0, stdout, "")

    def count(self, *prefix):
        return sum(1 for c in self.calls if tuple(c[:len(prefix)]) == prefix)

    def called(self, *prefix):
        return self.count(*prefix) > 0


class FakeMySQL:
    """In-memory MySQL server: databases, users and their grants."""

    def __init__(self):
        self.databases = set()
        self.users = {}
        self.grants = {}
        self.dropped = []
        self.fail_on = set()

    def _check(self, operation):
        if operation in self.fail_on:
            raise ExternalToolError("mysql", f"{operation} refused by server", 1227)

    def create_database(self, name):
        self._check("create_database")
        self.databases.add(name)

    def drop_database(self, name):
        self._check("drop_database")
        self.databases.discard(name)
        self.dropped.append(name)

    def database_sizes(self, names):
        return {n: 16384 for n in names}

    def create_user(self, username, password, host="localhost"):
        self._check("create_user")
        self.users[(username, host)] = password

    def drop_user(self, username, host="localhost"):
        self.users.pop((username, host), None)

    def set_user_password(self, username, password, host="localhost"):
        self._check("set_user_password")
        self.users[(username, host)] = password

    def grant(self, username, database, privilege=Privilege.ALL, host="localhost"):
        self._check("grant")
        self.grants[(username, host, database)] = Privilege(privilege)

    def revoke(self, username, database, host="localhost"):
        self._check("revoke")
        self.grants.pop((username, host, database), None)

    def show_grants(self, username, host="localhost"):
        lines = [f"GRANT USAGE ON *.* TO `{username}`@`{host}`"]
        for (user, user_host, database), privilege in self.grants.items():
            if user == username and user_host == host:
                lines.append(f"GRANT {PRIVILEGE_SETS[privilege]} ON `{database}`.* TO `{username}`@`{host}`")
        return sorted(lines)


@pytest.fixture
def fake_runner(monkeypatch):
    fake = FakeRunner()
    monkeypatch.setattr(runner, "run_command", fake)
    return fake


@pytest.fixture
def fake_mysql():
    return FakeMySQL()


@pytest.fixture
def settings(tmp_path):
    return Settings(
        database_url=f"sqlite:///{tmp_path / 'panel.db'}",
        secret_key="test-secret-key",
        rate_limit_enabled=False,
        log_level="WARNING",
        sites_base_dir=str(tmp_path / "www"),
        nginx_sites_available=str(tmp_path / "nginx" / "sites-available"),
        nginx_sites_enabled=str(tmp_path / "nginx" / "sites-enabled"),
        php_fpm_socket_dir="/run/php",
        php_pool_dir=str(tmp_path / "php"),
        letsencrypt_dir=str(tmp_path / "letsencrypt"),
        proftpd_passwd_file=str(tmp_path / "proftpd" / "ftpd.passwd"),
        proftpd_conf_dir=str(tmp_path / "proftpd" / "conf.d"),
        mail_path=str(tmp_path / "mail"),
        backup_dir=str(tmp_path / "backups"),
    )


@pytest.fixture
def app(settings, fake_runner, fake_mysql):
    app = create_app(settings)
    app.dependency_overrides[get_mysql_manager] = lambda: fake_mysql
    return app


@pytest.fixture
def client(app):
    with TestClient(app) as c:
        yield c


@pytest.fixture
def auth_headers(client):
    response = client.post("/auth/setup", json={"username": "admin", "password": "supersecret"})
    assert response.status_code == 200
    return {"Authorization": f"Bearer {response.json()['access_token']}"}


@pytest.fixture
def ready(client, auth_headers):
    """Logged in with the setup wizard finished."""
    response = client.post("/wizard/complete", headers=auth_headers)
    assert response.status_code == 200
    return auth_headers
