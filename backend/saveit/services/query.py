"""Query classification: default browsing vs search, and bare-domain detection."""
from __future__ import annotations

import re
from enum import Enum

_HOST = r"(?:[a-z0-9](?:[a-z0-9-]*[a-z0-9])?\.)+[a-z]{2,}(?::\d{1,5})?"

# Without a scheme only a trailing slash, query or fragment may follow the
# host; with one, any path is accepted as long as it has no whitespace.
_BARE_DOMAIN_RE = re.compile(rf"^(?:www\.)?{_HOST}/?(?:[?#]\S*)?$")
_URL_DOMAIN_RE = re.compile(rf"^https?://(?:www\.)?{_HOST}(?:[/?#]\S*)?$")


class QueryKind(str, Enum):
    DEFAULT = "default"
    DOMAIN = "domain"
    GENERAL = "general"


def is_search_query(query: str | None) -> bool:
    return bool(query and query.strip())


def is_domain_query(query: str | None) -> bool:
    """True if the query looks like a bare domain or a URL pointing at one.

    A single word with no dot is never a domain.
    """
    if not query:
        return False
    clean = query.strip().lower()
    if "." not in clean:
        return False
    return bool(_BARE_DOMAIN_RE.match(clean) or _URL_DOMAIN_RE.match(clean))


def extract_domain(text: str) -> str:
    """Canonicalize a domain query or URL: no scheme, no www., no path/query/fragment."""
    domain = text.strip().lower()
    domain = re.sub(r"^[a-z][a-z0-9+.-]*://", "", domain)
    domain = re.sub(r"^www\.", "", domain)
    for sep in ("/", "?", "#"):
        domain = domain.split(sep, 1)[0]
    return domain.strip()


def classify_query(query: str | None, tags: list[str] | None = None) -> QueryKind:
    if not is_search_query(query):
        return QueryKind.GENERAL if tags else QueryKind.DEFAULT
    if is_domain_query(query):
        return QueryKind.DOMAIN
    return QueryKind.GENERAL
