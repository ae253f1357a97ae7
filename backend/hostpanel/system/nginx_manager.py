import logging
import os
import re
import tempfile
from typing import Optional

from hostpanel.core.exceptions import ExternalToolError, InvalidInput
from hostpanel.system import runner

logger = logging.getLogger(__name__)

VHOST_PREFIX = "hostpanel-"
INI_KEY_RE = re.compile(r"[^a-zA-Z0-9_.]")
INI_VALUE_RE = re.compile(r'[\r\n"\\]')

# --- TEMPLATES ---

HTTP_SERVER_TEMPLATE = """
server {{
    listen 80;
    server_name {domain};
    root {root};
    index index.php index.html;
{locations}
}}
"""

HTTPS_SERVER_TEMPLATE = """
server {{
    listen 80;
    server_name {domain};
    return 301 https://$host$request_uri;
}}
server {{
    listen 443 ssl;
    server_name {domain};
    ssl_certificate {cert_dir}/fullchain.pem;
    ssl_certificate_key {cert_dir}/privkey.pem;
    root {root};
    index index.php index.html;
{locations}
}}
"""

HTACCESS_COMPAT_BLOCK = """    location ~ /\\. {
        return 404;
    }
    location ~* \\.(htaccess|htpasswd|env)$ {
        return 404;
    }
"""

PHP_LOCATION_TEMPLATE = """{sensitive}    location / {{
        try_files $uri $uri/ /index.php?$query_string;
    }}
    location ~ \\.php$ {{
        include snippets/fastcgi-php.conf;
        fastcgi_pass unix:{socket};
{php_value}    }}
"""

PROXY_LOCATION_TEMPLATE = """    location / {{
        proxy_pass http://127.0.0.1:{port};
        proxy_http_version 1.1;
        proxy_set_header Host $host;
        proxy_set_header X-Real-IP $remote_addr;
        proxy_set_header X-Forwarded-For $proxy_add_x_forwarded_for;
        proxy_set_header X-Forwarded-Proto $scheme;
        proxy_set_header Connection "";
    }}
"""


# --- PATHS ---

def safe_name(domain: str) -> str:
    return re.sub(r"[^a-zA-Z0-9._-]", "_", domain)


def vhost_path(domain: str, cfg) -> str:
    return os.path.join(cfg.nginx_sites_available, f"{VHOST_PREFIX}{safe_name(domain)}.conf")


def enabled_path(domain: str, cfg) -> str:
    return os.path.join(cfg.nginx_sites_enabled, f"{VHOST_PREFIX}{safe_name(domain)}.conf")


def php_socket(site, cfg) -> str:
    version = site.php_version or cfg.default_php_version
    if getattr(site, "dedicated_pool", False):
        return os.path.join(cfg.php_fpm_socket_dir, f"php{version}-fpm-{safe_name(site.domain)}.sock")
    return os.path.join(cfg.php_fpm_socket_dir, f"php{version}-fpm.sock")


# --- RENDER ---

def clean_php_options(options: Optional[dict]) -> dict:
    """Keep ini keys from [a-zA-Z0-9_.] and strip quotes, backslashes and newlines from values."""
    cleaned = {}
    for key, value in (options or {}).items():
        if not isinstance(key, str) or value is None:
            continue
        key = INI_KEY_RE.sub("", key)
        value = INI_VALUE_RE.sub("", str(value)).strip()
        if key and value:
            cleaned[key] = value
    return cleaned


def php_option_lines(site) -> list:
    return [f"{k}={v}" for k, v in clean_php_options(site.php_options).items()]


def render_vhost(site, cfg) -> str:
    """
    Pure function of the site row and the configured paths.
    Same row in, same bytes out.
    """
    if site.app_type == "node":
        port = site.node_port
        if not isinstance(port, int) or port < 1 or port > 65535:
            raise InvalidInput("Node app requires a valid port (1-65535)")
        locations = PROXY_LOCATION_TEMPLATE.format(port=port)
    else:
        lines = php_option_lines(site)
        php_value = ""
        if lines:
            php_value = '        fastcgi_param PHP_VALUE "' + "\n        ".join(lines) + '";\n'
        locations = PHP_LOCATION_TEMPLATE.format(
            sensitive=HTACCESS_COMPAT_BLOCK if site.htaccess_compat else "",
            socket=php_socket(site, cfg),
            php_value=php_value,
        )

    if site.ssl:
        config = HTTPS_SERVER_TEMPLATE.format(
            domain=site.domain,
            root=site.docroot,
            cert_dir=os.path.join(cfg.letsencrypt_dir, "live", site.domain),
            locations=locations,
        )
    else:
        config = HTTP_SERVER_TEMPLATE.format(domain=site.domain, root=site.docroot, locations=locations)

    return config.strip() + "\n"


# --- APPLY ---

def atomic_write(path: str, content: str, mode: int = 0o644):
    """Write to a temp file in the same directory, then rename over the target."""
    directory = os.path.dirname(path)
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp-")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            f.write(content)
        os.chmod(tmp_path, mode)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.unlink(tmp_path)
        raise


def _read(path: str) -> Optional[str]:
    try:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()
    except FileNotFoundError:
        return None


def enable_vhost(domain: str, cfg):
    """Point sites-enabled at the vhost. A link that already points there is left alone."""
    target = vhost_path(domain, cfg)
    link = enabled_path(domain, cfg)
    os.makedirs(os.path.dirname(link), exist_ok=True)

    if os.path.islink(link):
        if os.readlink(link) == target:
            return
        os.unlink(link)
    elif os.path.exists(link):
        os.unlink(link)
    os.symlink(target, link)


def write_vhost(site, cfg) -> Optional[str]:
    """
    Render, write and enable the vhost for `site`.
    Returns the previous file content (None when the file did not exist).
    """
    path = vhost_path(site.domain, cfg)
    content = render_vhost(site, cfg)
    previous = _read(path)

    if previous != content:
        atomic_write(path, content)
        logger.info("vhost written: %s", path)
    enable_vhost(site.domain, cfg)
    return previous


def restore_vhost(domain: str, previous: Optional[str], cfg):
    """Put back what write_vhost replaced, or remove the vhost if there was none."""
    if previous is None:
        remove_vhost(domain, cfg)
    else:
        atomic_write(vhost_path(domain, cfg), previous)
        enable_vhost(domain, cfg)
    logger.info("vhost restored for %s", domain)


def remove_vhost(domain: str, cfg):
    for path in (enabled_path(domain, cfg), vhost_path(domain, cfg)):
        if os.path.lexists(path):
            os.unlink(path)
            logger.info("removed %s", path)


def check_config():
    runner.run_command(["nginx", "-t"], check=True, tool="nginx -t")


def reload_nginx():
    """Validate the whole config, then reload (never restart)."""
    check_config()
    runner.run_command(["systemctl", "reload", "nginx"], check=True, tool="systemctl reload nginx")
    logger.info("nginx reloaded")


def apply_site(site, cfg, old_domain: Optional[str] = None):
    """
    Write + enable + reload for one site. If nginx rejects the result the
    previous vhost content is put back and the error is raised.
    A changed domain removes the old vhost once the new one is live.
    """
    previous = write_vhost(site, cfg)
    old_previous = None
    if old_domain and old_domain != site.domain:
        old_previous = _read(vhost_path(old_domain, cfg))
        remove_vhost(old_domain, cfg)

    try:
        reload_nginx()
    except ExternalToolError:
        restore_vhost(site.domain, previous, cfg)
        if old_previous is not None:
            atomic_write(vhost_path(old_domain, cfg), old_previous)
            enable_vhost(old_domain, cfg)
        raise
