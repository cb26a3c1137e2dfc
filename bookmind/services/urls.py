"""URL canonicalisation used for duplicate detection.

Two URLs refer to the same resource when their normalized forms are equal.
Normalization is total: malformed input falls back to a lower-cased copy so
callers never have to guard against exceptions.
"""

from __future__ import annotations

import re
from urllib.parse import urlsplit, urlunsplit

DEFAULT_TRACKING_PARAMS = frozenset(
    {
        "utm_source",
        "utm_medium",
        "utm_campaign",
        "utm_term",
        "utm_content",
        "fbclid",
        "gclid",
        "msclkid",
        "ref",
        "source",
        "mc_cid",
        "mc_eid",
        "_hsenc",
        "_hsmi",
        "yclid",
        "zanpid",
        "dclid",
    }
)

_SCHEME_RE = re.compile(r"^[a-z][a-z0-9+.\-]*://", re.IGNORECASE)
_COUNTRY_SLDS = {"co", "com", "org", "net", "gov", "edu"}


def _is_tracking_param(name: str, tracking_params: frozenset[str]) -> bool:
    return name in tracking_params or name.startswith("utm_")


def _strip_tracking(query: str, tracking_params: frozenset[str]) -> str:
    kept = []
    for part in query.split("&"):
        if not part:
            continue
        name = part.split("=", 1)[0]
        if _is_tracking_param(name, tracking_params):
            continue
        kept.append(part)
    return "&".join(kept)


def normalize_url(
    url: str,
    strip_tracking: bool = False,
    tracking_params: frozenset[str] | None = None,
) -> str:
    if not url:
        return ""

    candidate = url.strip()
    try:
        if not _SCHEME_RE.match(candidate):
            candidate = "https://" + candidate
        candidate = candidate.lower()

        parts = urlsplit(candidate)
        scheme = "https" if parts.scheme == "http" else parts.scheme

        userinfo, _, host = parts.netloc.rpartition("@")
        while host.startswith("www."):
            host = host[4:]
        netloc = f"{userinfo}@{host}" if userinfo else host

        query = parts.query
        if strip_tracking and query:
            query = _strip_tracking(
                query,
                DEFAULT_TRACKING_PARAMS if tracking_params is None else tracking_params,
            )

        path = parts.path
        if path == "/" and not query and not parts.fragment:
            path = ""

        return urlunsplit((scheme, netloc, path, query, parts.fragment))
    except ValueError:
        return url.strip().lower()


def urls_equivalent(
    first: str,
    second: str,
    strip_tracking: bool = False,
    tracking_params: frozenset[str] | None = None,
) -> bool:
    if not first or not second:
        return False
    return normalize_url(
        first, strip_tracking=strip_tracking, tracking_params=tracking_params
    ) == normalize_url(
        second, strip_tracking=strip_tracking, tracking_params=tracking_params
    )


def extract_root_domain(url: str) -> str:
    """Return the registrable domain, e.g. ``news.bbc.co.uk`` -> ``bbc.co.uk``."""
    normalized = normalize_url(url)
    if not normalized:
        return ""
    try:
        hostname = urlsplit(normalized).hostname or ""
    except ValueError:
        return ""

    labels = [label for label in hostname.split(".") if label]
    if len(labels) >= 3 and labels[-2] in _COUNTRY_SLDS and len(labels[-1]) == 2:
        return ".".join(labels[-3:])
    if len(labels) > 1:
        return ".".join(labels[-2:])
    return hostname
