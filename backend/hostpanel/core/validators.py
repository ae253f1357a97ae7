import re

from hostpanel.core.exceptions import InvalidInput

LABEL_RE = re.compile(r"^[a-z0-9](?:[a-z0-9-]{0,61}[a-z0-9])?$")
SSL_DOMAIN_RE = re.compile(r"^[a-z0-9.-]+\.[a-z]{2,}$", re.IGNORECASE)


def validate_domain(value: str) -> str:
    """
    Hostname as used for vhosts and mail domains: lower-cased, at most 253
    characters, two or more labels of up to 63 characters, no empty labels.
    """
    domain = (value or "").strip().lower()
    if not domain or len(domain) > 253:
        raise InvalidInput("Invalid domain")
    if domain.startswith(".") or domain.endswith(".") or ".." in domain:
        raise InvalidInput("Invalid domain")

    labels = domain.split(".")
    if len(labels) < 2:
        raise InvalidInput("Domain needs at least two labels (e.g. example.com)")
    for label in labels:
        if not LABEL_RE.match(label):
            raise InvalidInput(f"Invalid domain label: {label!r}")
    return domain


def validate_ssl_domain(value: str) -> str:
    domain = (value or "").strip()
    if not SSL_DOMAIN_RE.match(domain):
        raise InvalidInput("Invalid domain for SSL")
    return domain
