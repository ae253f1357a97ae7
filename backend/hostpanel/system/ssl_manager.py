import logging
import os
from datetime import datetime

from hostpanel.core.validators import validate_ssl_domain
from hostpanel.system import runner

logger = logging.getLogger(__name__)

CERTBOT_TIMEOUT = 180


def cert_path(domain: str, cfg) -> str:
    return os.path.join(cfg.letsencrypt_dir, "live", domain, "fullchain.pem")


def obtain_cert(domain: str):
    """
    Ask Let's Encrypt for a certificate using the nginx authenticator.
    Fails when DNS does not point here or port 80 is blocked; the raw
    certbot output is raised to the caller.
    """
    domain = validate_ssl_domain(domain)
    logger.info("requesting certificate for %s", domain)
    runner.run_command(
        [
            "certbot", "certonly", "--nginx",
            "-d", domain,
            "--non-interactive", "--agree-tos", "--register-unsafely-without-email",
        ],
        timeout=CERTBOT_TIMEOUT,
        check=True,
        tool="certbot",
    )


def renew_cert(domain: str):
    domain = validate_ssl_domain(domain)
    runner.run_command(
        ["certbot", "renew", "--cert-name", domain, "--non-interactive"],
        timeout=CERTBOT_TIMEOUT,
        check=True,
        tool="certbot",
    )


def delete_cert(domain: str):
    domain = validate_ssl_domain(domain)
    runner.run_command(
        ["certbot", "delete", "--cert-name", domain, "--non-interactive"],
        timeout=CERTBOT_TIMEOUT,
        check=True,
        tool="certbot",
    )


def cert_status(domain: str, cfg) -> dict:
    path = cert_path(domain, cfg)
    status = {"exists": os.path.exists(path), "expires_at": None, "days_left": None}
    if not status["exists"]:
        return status

    result = runner.try_command(["openssl", "x509", "-enddate", "-noout", "-in", path], timeout=10)
    # notAfter=Jan  1 00:00:00 2027 GMT
    if result.ok and "=" in result.stdout:
        raw = result.stdout.strip().split("=", 1)[1]
        try:
            expires = datetime.strptime(raw, "%b %d %H:%M:%S %Y %Z")
        except ValueError:
            logger.warning("unparsed certificate date for %s: %s", domain, raw)
            return status
        status["expires_at"] = expires.isoformat()
        status["days_left"] = (expires - datetime.utcnow()).days
    return status
