import os
import re
from typing import Optional

from hostpanel.core.exceptions import InvalidInput

DOCROOT_RE = re.compile(r"^/[A-Za-z0-9._/-]*$")
SEGMENT_RE = re.compile(r"[^A-Za-z0-9_.-]")


def resolve_docroot_path(docroot: str, relative: str = "") -> Optional[str]:
    """
    Join `relative` onto the site docroot and canonicalize.
    Returns None when the result would leave the docroot.
    """
    root = os.path.realpath(docroot)
    relative = (relative or "").replace("\\", "/").lstrip("/")
    target = os.path.realpath(os.path.join(root, relative))

    if target == root or target.startswith(root.rstrip(os.sep) + os.sep):
        return target
    return None


def validate_docroot(docroot: str) -> str:
    docroot = (docroot or "").strip()
    if len(docroot) > 1 and docroot.endswith("/"):
        docroot = docroot.rstrip("/")
    if not DOCROOT_RE.match(docroot):
        raise InvalidInput("Docroot must be an absolute path using letters, digits, '.', '_', '-' and '/'")
    if ".." in docroot.split("/"):
        raise InvalidInput("Docroot must not contain '..'")
    if docroot == "/":
        raise InvalidInput("Docroot cannot be the filesystem root")
    return docroot


def clean_subfolder(raw: Optional[str]) -> str:
    """
    Single-segment subfolder for a clone target / app directory.
    Rejects anything that changes under sanitizing instead of rewriting it.
    """
    raw = (raw or "").strip().lstrip("/").replace("\\", "")
    safe = SEGMENT_RE.sub("", raw)
    if raw != safe or safe in (".", ".."):
        raise InvalidInput("Invalid subfolder name")
    return safe


def clean_route(raw: Optional[str]) -> str:
    """Relative home route for FTP users: one or more safe segments, no '..'."""
    raw = (raw or "").strip().strip("/")
    if not raw:
        return ""
    segments = raw.split("/")
    for segment in segments:
        if not segment or segment in (".", "..") or SEGMENT_RE.search(segment):
            raise InvalidInput("Invalid home folder")
    return "/".join(segments)
