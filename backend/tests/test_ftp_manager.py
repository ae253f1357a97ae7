import os
from types import SimpleNamespace

import pytest
from passlib.hash import sha512_crypt

from hostpanel.core.exceptions import InvalidInput
from hostpanel.system import ftp_manager


def test_crypt_hash_is_sha512_crypt():
    hashed = ftp_manager.crypt_hash("s3cret")
    assert hashed.startswith("$6$")
    assert sha512_crypt.verify("s3cret", hashed)


def test_crypt_hash_requires_password():
    with pytest.raises(InvalidInput):
        ftp_manager.crypt_hash("")


def test_ftp_home_stays_in_docroot(tmp_path):
    root = tmp_path / "site"
    root.mkdir()
    assert ftp_manager.ftp_home(str(root), "uploads") == os.path.join(os.path.realpath(root), "uploads")
    with pytest.raises(InvalidInput):
        ftp_manager.ftp_home(str(root), "../other")


def test_render_passwd(tmp_path, settings):
    docroot = tmp_path / "site"
    docroot.mkdir()
    enabled = SimpleNamespace(domain="example.com", docroot=str(docroot), ftp_enabled=True)
    disabled = SimpleNamespace(domain="example.org", docroot=str(docroot), ftp_enabled=False)

    rows = [
        (SimpleNamespace(username="bob", crypt_hash="$6$abc", default_route="public"), enabled),
        (SimpleNamespace(username="nohash", crypt_hash=None, default_route=""), enabled),
        (SimpleNamespace(username="alice", crypt_hash="$6$def", default_route=""), disabled),
    ]
    content = ftp_manager.render_passwd(rows, settings)

    home = os.path.join(os.path.realpath(docroot), "public")
    assert content == f"bob@example.com:$6$abc:33:33::{home}:/sbin/nologin\n"


def test_render_passwd_empty(settings):
    assert ftp_manager.render_passwd([], settings) == ""


def test_sync_writes_file_and_reloads(tmp_path, settings, fake_runner):
    docroot = tmp_path / "site"
    docroot.mkdir()
    site = SimpleNamespace(domain="example.com", docroot=str(docroot), ftp_enabled=True)
    user = SimpleNamespace(username="bob", crypt_hash="$6$abc", default_route="")

    count, warnings = ftp_manager.sync_ftp_users([(user, site)], settings)

    assert count == 1
    assert warnings == []
    with open(settings.proftpd_passwd_file) as f:
        assert f.read().startswith("bob@example.com:$6$abc:")
    assert oct(os.stat(settings.proftpd_passwd_file).st_mode & 0o777) == "0o640"
    assert os.path.exists(os.path.join(settings.proftpd_conf_dir, "hostpanel.conf"))
    assert fake_runner.called("systemctl", "reload", "proftpd")


def test_sync_reload_failure_is_a_warning(settings, fake_runner):
    fake_runner.fail("systemctl", "reload", "proftpd", stderr="Unit proftpd.service not found.")
    count, warnings = ftp_manager.sync_ftp_users([], settings)

    assert count == 0
    assert any("proftpd.service not found" in w for w in warnings)
