import io
import os
import zipfile

import pytest
import requests

from hostpanel.system import wordpress_installer


class FakeResponse:
    def __init__(self, content=b"", status_code=200):
        self.content = content
        self.status_code = status_code

    def raise_for_status(self):
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} Server Error")


def wordpress_zip():
    buffer = io.BytesIO()
    with zipfile.ZipFile(buffer, "w") as z:
        z.writestr("wordpress/index.php", "<?php // wordpress\n")
        z.writestr("wordpress/wp-config-sample.php", "<?php\n")
        z.writestr("wordpress/wp-includes/version.php", "<?php $wp_version = '6.6';\n")
    return buffer.getvalue()


@pytest.fixture
def downloads(monkeypatch):
    response = FakeResponse(wordpress_zip())

    def get(url, timeout=None):
        assert url == "https://wordpress.org/latest.zip"
        return response

    monkeypatch.setattr(wordpress_installer.requests, "get", get)
    return response


@pytest.fixture
def site(client, ready):
    response = client.post("/sites", json={"domain": "example.com"}, headers=ready)
    assert response.status_code == 201
    return response.json()


def test_install_into_subfolder(client, ready, site, downloads, fake_runner):
    response = client.post(f"/sites/{site['id']}/scripts/wordpress", json={"folder": "blog"}, headers=ready)
    assert response.status_code == 200

    blog = os.path.join(site["docroot"], "blog")
    assert os.path.isfile(os.path.join(blog, "wp-includes", "version.php"))
    assert not os.path.exists(os.path.join(blog, "wordpress"))
    assert ["chown", "-R", "www-data:www-data", os.path.realpath(blog)] in fake_runner.calls


def test_install_overwrites_placeholder_index(client, ready, site, downloads):
    response = client.post(f"/sites/{site['id']}/scripts/wordpress", json={}, headers=ready)
    assert response.status_code == 200
    with open(os.path.join(site["docroot"], "index.php")) as f:
        assert f.read() == "<?php // wordpress\n"


def test_install_rejects_bad_folder(client, ready, site, downloads):
    url = f"/sites/{site['id']}/scripts/wordpress"
    assert client.post(url, json={"folder": "../outside"}, headers=ready).status_code == 400
    assert client.post(url, json={"folder": "blog post"}, headers=ready).status_code == 400


def test_install_refuses_link_in_the_way(client, ready, site, downloads, tmp_path):
    outside = tmp_path / "elsewhere"
    outside.mkdir()
    os.symlink(str(outside), os.path.join(site["docroot"], "wp-includes"))

    response = client.post(f"/sites/{site['id']}/scripts/wordpress", json={}, headers=ready)
    assert response.status_code == 400
    assert os.listdir(str(outside)) == []


def test_download_failure(client, ready, site, downloads):
    downloads.status_code = 503

    response = client.post(f"/sites/{site['id']}/scripts/wordpress", json={"folder": "blog"}, headers=ready)
    assert response.status_code == 502
    assert response.json()["tool"] == "wordpress download"
    assert not os.path.exists(os.path.join(site["docroot"], "blog"))


def test_corrupt_archive(client, ready, site, downloads):
    downloads.content = b"not a zip"

    response = client.post(f"/sites/{site['id']}/scripts/wordpress", json={"folder": "blog"}, headers=ready)
    assert response.status_code == 502
    assert "invalid archive" in response.json()["diagnostic"]


def test_install_needs_php_site(client, ready, downloads):
    sid = client.post("/sites", json={"domain": "app.example.com", "app_type": "node", "node_port": 3001},
                      headers=ready).json()["id"]
    response = client.post(f"/sites/{sid}/scripts/wordpress", json={}, headers=ready)
    assert response.status_code == 400


def test_uninstall(client, ready, site, downloads):
    client.post(f"/sites/{site['id']}/scripts/wordpress", json={"folder": "blog"}, headers=ready)
    url = f"/sites/{site['id']}/scripts/uninstall"
    blog = os.path.join(site["docroot"], "blog")

    # not configured yet: no wp-config.php
    assert client.post(url, json={"subfolder": "blog"}, headers=ready).status_code == 404
    assert os.path.isdir(blog)

    with open(os.path.join(blog, "wp-config.php"), "w") as f:
        f.write("<?php\n")
    assert client.post(url, json={"script_id": "joomla", "subfolder": "blog"}, headers=ready).status_code == 400
    assert client.post(url, json={"subfolder": "blog"}, headers=ready).status_code == 200
    assert not os.path.exists(blog)
    assert os.path.isfile(os.path.join(site["docroot"], "index.php"))


def test_uninstall_never_removes_docroot(client, ready, site, downloads):
    client.post(f"/sites/{site['id']}/scripts/wordpress", json={}, headers=ready)
    with open(os.path.join(site["docroot"], "wp-config.php"), "w") as f:
        f.write("<?php\n")

    response = client.post(f"/sites/{site['id']}/scripts/uninstall", json={"subfolder": ""}, headers=ready)
    assert response.status_code == 400
    assert os.path.isfile(os.path.join(site["docroot"], "wp-config.php"))
