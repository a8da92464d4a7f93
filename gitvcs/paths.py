"""Path and URL helpers for working copies and remote URLs."""

from pathlib import Path
from typing import Optional, Tuple, Union
from urllib.parse import urlsplit, unquote, parse_qs, urlencode, urlunsplit

BRANCH_ANNOTATION = "branch"


def to_unix_path(path: Optional[str]) -> Optional[str]:
    """Replace backslashes with forward slashes; git path specs always use ``/``."""
    if path is None:
        return None
    return path.replace("\\", "/")


def url_to_path(location: Union[str, Path]) -> Path:
    """
    Convert a working-copy location into a filesystem path.

    Accepts plain paths, ``~``-prefixed paths and ``file:`` URLs
    (``file:///srv/config``, ``file:/srv/config`` or ``file:relative/dir``).
    """
    if isinstance(location, Path):
        return location.expanduser().absolute()

    if location.lower().startswith("file:"):
        parts = urlsplit(location)
        path = unquote(parts.path)
        if parts.netloc and parts.netloc != "localhost":
            # file://relative/dir style references keep the host as first segment
            path = parts.netloc + path
        return Path(path).expanduser().absolute()

    return Path(location).expanduser().absolute()


def split_branch_annotation(remote_url: str) -> Tuple[str, Optional[str]]:
    """
    Split a ``?branch=<name>`` annotation off a remote URL.

    Returns:
        Tuple of (URL without the annotation, branch name or None)
    """
    if "?" not in remote_url:
        return remote_url, None

    base, _, query = remote_url.partition("?")
    params = parse_qs(query, keep_blank_values=False)
    branch = params.pop(BRANCH_ANNOTATION, [None])[0]
    if params:
        remaining = urlencode(params, doseq=True)
        base = f"{base}?{remaining}"
    return base, branch


def redact_url(remote_url: str) -> str:
    """Strip any embedded password from a URL before it is logged."""
    if "://" not in remote_url:
        return remote_url
    parts = urlsplit(remote_url)
    if parts.password is None:
        return remote_url
    netloc = f"{parts.username}:***@{parts.hostname}"
    if parts.port:
        netloc += f":{parts.port}"
    return urlunsplit((parts.scheme, netloc, parts.path, parts.query, parts.fragment))
