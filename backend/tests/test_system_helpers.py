import json
import os
from types import SimpleNamespace

import pytest

from hostpanel.core.exceptions import ExternalToolError, InvalidInput
from hostpanel.system import package_installer, php_manager, pm2_manager, runner, service_manager, ssl_manager


# --- SSL ---

def test_cert_status_missing(settings, fake_runner):
    assert ssl_manager.cert_status("example.com", settings) == {"exists": False, "expires_at": None, "days_left": None}
    assert fake_runner.calls == []


def test_cert_status_reads_expiry(settings, fake_runner):
    path = ssl_manager.cert_path("example.com", settings)
    os.makedirs(os.path.dirname(path))
    open(path, "w").close()
    fake_runner.output("openssl", "x509", stdout="notAfter=Jan  1 00:00:00 2099 GMT\n")

    status = ssl_manager.cert_status("example.com", settings)
    assert status["exists"] is True
    assert status["expires_at"] == "2099-01-01T00:00:00"
    assert status["days_left"] > 0


def test_obtain_cert_surfaces_certbot_output(fake_runner):
    fake_runner.fail("certbot", stderr="Challenge failed for domain example.com")
    with pytest.raises(ExternalToolError) as exc:
        ssl_manager.obtain_cert("example.com")
    assert "Challenge failed" in exc.value.diagnostic
    assert fake_runner.calls[0][:4] == ["certbot", "certonly", "--nginx", "-d"]


def test_obtain_cert_rejects_bad_domain(fake_runner):
    with pytest.raises(InvalidInput):
        ssl_manager.obtain_cert("localhost")
    assert fake_runner.calls == []


# --- PM2 ---

def test_app_status_from_jlist(fake_runner):
    fake_runner.output("pm2", "jlist", stdout=json.dumps([
        {"name": "hostpanel-site-1", "pm2_env": {"status": "online"}},
        {"name": "hostpanel-site-2", "pm2_env": {"status": "stopped"}},
    ]))
    assert pm2_manager.app_status(1) == "running"
    assert pm2_manager.app_status(2) == "stopped"
    assert pm2_manager.app_status(3) == "not_found"


def test_app_status_unknown_without_pm2(fake_runner):
    fake_runner.fail("pm2", "jlist", returncode=127)
    assert pm2_manager.app_status(1) == "unknown"


def test_start_app_passes_port(fake_runner, monkeypatch):
    envs = []

    def recording(args, **kwargs):
        envs.append(kwargs.get("env"))
        return fake_runner(args, **kwargs)

    monkeypatch.setattr(runner, "run_command", recording)
    pm2_manager.start_app(7, "/var/www/app", 3007)

    assert ["pm2", "start", "npm", "--name", "hostpanel-site-7", "--", "run", "start"] in fake_runner.calls
    assert {"PORT": "3007"} in envs
    assert fake_runner.calls[-1] == ["pm2", "save"]


# --- SERVICES ---

def test_service_allow_list():
    state = SimpleNamespace(php_versions="8.2,8.3", database_choice="mysql", email_installed=False, ftp_installed=True)
    assert service_manager.is_allowed_unit("nginx", state)
    assert service_manager.is_allowed_unit("php8.3-fpm", state)
    assert not service_manager.is_allowed_unit("php7.4-fpm", state)
    assert not service_manager.is_allowed_unit("sshd", state)
    with pytest.raises(InvalidInput):
        service_manager.require_allowed("sshd", state)

    units = [s["unit"] for s in service_manager.installed_services(state)]
    assert units == ["nginx", "php8.2-fpm", "php8.3-fpm", "mysql", "proftpd"]


def test_control_service_rejects_unknown_action(fake_runner):
    with pytest.raises(InvalidInput):
        service_manager.control_service("nginx", "reboot")
    assert fake_runner.calls == []


# --- PHP ---

def test_enable_module_installs_missing_package(fake_runner, monkeypatch):
    attempts = []

    def ini_missing_once(args, **kwargs):
        if args[0] == "phpenmod":
            attempts.append(list(args))
            if len(attempts) == 1:
                return runner.CommandResult(list(args), 1, "", "WARNING: Cannot find intl in mods-available")
        return fake_runner(args, **kwargs)

    monkeypatch.setattr(runner, "run_command", ini_missing_once)
    php_manager.set_module("8.2", "intl", True)

    assert ["apt-get", "install", "-y", "-qq", "php8.2-intl"] in fake_runner.calls
    assert len(attempts) == 2


def test_enable_module_other_failure_raises(fake_runner):
    fake_runner.fail("phpenmod", stderr="permission denied")
    with pytest.raises(ExternalToolError):
        php_manager.set_module("8.2", "intl", True)
    assert not fake_runner.called("apt-get")


def test_unknown_module_rejected(fake_runner):
    with pytest.raises(InvalidInput):
        php_manager.set_module("8.2", "evil; rm -rf /", True)
    with pytest.raises(InvalidInput):
        php_manager.set_module("8", "intl", True)


def test_pool_file(settings):
    site = SimpleNamespace(domain="example.com", docroot="/var/www/example.com", php_version="8.2", dedicated_pool=True)
    php_manager.write_pool(site, settings)
    path = php_manager.pool_path(site, settings)

    with open(path) as f:
        content = f.read()
    assert "[example_com]" in content
    assert "listen = /run/php/php8.2-fpm-example.com.sock" in content
    assert "open_basedir] = /var/www/example.com:" in content
    assert php_manager.remove_pool(site, settings) is True
    assert php_manager.remove_pool(site, settings) is False


# --- INSTALLER ---

def test_build_plan_follows_wizard_choices(tmp_path):
    state = SimpleNamespace(
        php_versions="8.2", php_fpm_config="default", node_version=None,
        database_choice="mariadb", database_config="default",
        email_installed=False, ftp_installed=True, certbot_installed=True,
    )
    plan = package_installer.build_plan(state, root_password="pw", php_root=str(tmp_path))
    names = [name for name, _ in plan]

    assert names[0] == "apt-get update"
    assert names[1].startswith("PHP-FPM 8.2")
    assert "Database (mariadb)" in names
    assert "FTP (ProFTPD)" in names
    assert "Certbot" in names
    assert not any(n.startswith("Node.js") for n in names)

    db_actions = dict(plan)["Database (mariadb)"]
    assert db_actions[0].args == ["debconf-set-selections"]
    assert "root_password password pw" in db_actions[0].input


def test_run_install_stops_at_first_failure(tmp_path, fake_runner):
    fake_runner.fail("apt-get", "install", stderr="E: Unable to locate package")
    state = SimpleNamespace(
        php_versions="", php_fpm_config="default", node_version=None,
        database_choice="mysql", database_config="default",
        email_installed=False, ftp_installed=True, certbot_installed=False,
    )
    success, log = package_installer.run_install(state, php_root=str(tmp_path))

    assert success is False
    assert "Unable to locate package" in log
    assert "Error in step: Database (mysql)" in log
    assert fake_runner.count("apt-get", "install") == 1
