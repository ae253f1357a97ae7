import io
import logging
import os
import shutil
import tempfile
import zipfile

import requests

from hostpanel.core.exceptions import ExternalToolError, InvalidInput, NotFound
from hostpanel.system import runner

logger = logging.getLogger(__name__)

WORDPRESS_URL = "https://wordpress.org/latest.zip"
DOWNLOAD_TIMEOUT = 120
TOOL = "wordpress download"

# present in every WordPress tree; uninstall refuses folders without them
MARKERS = ("wp-config.php", "wp-includes")


def download() -> bytes:
    try:
        response = requests.get(WORDPRESS_URL, timeout=DOWNLOAD_TIMEOUT)
        response.raise_for_status()
    except requests.RequestException as e:
        raise ExternalToolError(TOOL, str(e))
    return response.content


def _check_links(source: str, target: str):
    """Copying onto an existing link would write wherever it points."""
    for folder, dirs, files in os.walk(source):
        relative = os.path.relpath(folder, source)
        for name in dirs + files:
            if os.path.islink(os.path.normpath(os.path.join(target, relative, name))):
                raise InvalidInput(f"Refusing to overwrite link {os.path.join(relative, name)}")


def install(target: str) -> bool:
    """
    Download the latest release and copy its `wordpress/` tree into `target`,
    overwriting files that already exist there. Returns whether the tree
    could be handed to www-data.
    """
    archive = download()
    with tempfile.TemporaryDirectory(prefix="hostpanel-wp-") as workdir:
        try:
            with zipfile.ZipFile(io.BytesIO(archive)) as z:
                z.extractall(workdir)
        except zipfile.BadZipFile as e:
            raise ExternalToolError(TOOL, f"invalid archive: {e}")

        source = os.path.join(workdir, "wordpress")
        if not os.path.isdir(source):
            raise ExternalToolError(TOOL, "archive has no wordpress/ folder")

        os.makedirs(target, exist_ok=True)
        _check_links(source, target)
        shutil.copytree(source, target, dirs_exist_ok=True)

    logger.info("wordpress installed into %s", target)
    return runner.try_command(["chown", "-R", "www-data:www-data", target], timeout=120).ok


def uninstall(target: str, docroot: str):
    if target == os.path.realpath(docroot):
        raise InvalidInput("Refusing to remove the site folder itself")
    if not all(os.path.exists(os.path.join(target, marker)) for marker in MARKERS):
        raise NotFound("No WordPress installation in that folder")
    shutil.rmtree(target)
    logger.info("wordpress removed from %s", target)
