"""Canonical keys for page observations.

Two driver visits to the same logical page must collapse to a single State, so
the fingerprint is a pure function of the URL. Normalization rules, applied in
this order:

1. scheme and host are lower-cased; ``http`` and ``https`` collapse to ``https``
2. the default port of the URL's own scheme is dropped (``:80`` for http, ``:443`` for https)
3. the fragment is dropped
4. a trailing slash is stripped from the path; an empty path becomes ``/``
5. tracking parameters (``utm_*``, ``gclid``, ``fbclid`` ...) are dropped
6. the remaining query parameters are sorted by key (stable for repeated keys)

Path case and non-tracking query values are preserved, so ``/Cart`` and
``/cart`` or ``?page=1`` and ``?page=2`` remain distinct states.
"""

from __future__ import annotations

import logging
import re
from typing import Any, Mapping
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

logger = logging.getLogger(__name__)

TRACKING_PARAMS = frozenset({"gclid", "fbclid", "msclkid", "mc_cid", "mc_eid", "_ga"})
TRACKING_PREFIXES = ("utm_",)

_DEFAULT_PORTS = {"http": 80, "https": 443}

_NON_HTTP_SCHEME = re.compile(r"^(mailto|tel|sms|ftp|javascript|data|file):", re.I)
_NON_HTML_EXTENSIONS = frozenset({
    "pdf", "doc", "docx", "xls", "xlsx", "ppt", "pptx", "csv", "txt",
    "zip", "rar", "tar", "gz", "7z", "mp3", "mp4", "avi", "mov", "wmv",
    "jpg", "jpeg", "png", "gif", "svg", "webp", "bmp", "ico", "exe",
})


def _is_tracking(key: str) -> bool:
    k = key.lower()
    return k in TRACKING_PARAMS or k.startswith(TRACKING_PREFIXES)


def normalize_url(url: str) -> str:
    """Return the canonical form of `url` (see module docstring for the rules)."""
    parts = urlsplit(url.strip())
    scheme = parts.scheme.lower()
    if scheme == "http":
        scheme = "https"

    host = (parts.hostname or "").lower()
    port = parts.port
    if port is not None and port != _DEFAULT_PORTS.get(parts.scheme.lower()):
        host = f"{host}:{port}"

    path = parts.path.rstrip("/") or "/"

    query_pairs = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if not _is_tracking(k)]
    query_pairs.sort(key=lambda kv: kv[0])
    query = urlencode(query_pairs)

    return urlunsplit((scheme, host, path, query, ""))


def fingerprint(observation: Any) -> str:
    """Map an observation (URL string, mapping with ``url`` or object with ``.url``) to its key."""
    if isinstance(observation, str):
        url = observation
    elif isinstance(observation, Mapping):
        url = observation["url"]
    else:
        url = observation.url
    return normalize_url(url)


# ----------------------------------------------------------------------
# crawl scope -----------------------------------------------------------

def should_skip_url(url: str | None) -> bool:
    """True for URLs the explorer must never follow (non-HTTP schemes, binary resources)."""
    if not url or url.strip() in ("#", ""):
        return True
    if _NON_HTTP_SCHEME.match(url.strip()):
        logger.debug("Skipping non-HTTP URL %s", url)
        return True
    path = urlsplit(url).path.lower()
    match = re.search(r"\.([a-z0-9]{2,4})$", path)
    if match and match.group(1) in _NON_HTML_EXTENSIONS:
        logger.debug("Skipping non-HTML resource %s", url)
        return True
    return False


def is_same_origin(url: str, start_url: str) -> bool:
    """Compare hosts after normalization; relative URLs count as same-origin."""
    host = urlsplit(url).netloc
    if not host:
        return True
    return urlsplit(normalize_url(url)).netloc == urlsplit(normalize_url(start_url)).netloc
