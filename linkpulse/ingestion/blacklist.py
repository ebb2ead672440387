"""Blacklist matching for the ingestor.

Entries are either a domain (exact host match, ``www.`` ignored) or a URL
pattern (exact URL, or a ``*`` glob). All comparisons are case-insensitive.
"""

from __future__ import annotations

from fnmatch import fnmatchcase
from typing import Iterable, Optional

from linkpulse.ingestion.url_utils import extract_domain
from linkpulse.storage.records import BlacklistEntry


def _strip_www(host: str) -> str:
    host = host.strip().lower().rstrip(".")
    return host[4:] if host.startswith("www.") else host


def _norm_url(url: str) -> str:
    u = (url or "").strip().lower()
    return u.rstrip("/") if u.count("/") > 2 else u


def entry_matches(entry: BlacklistEntry, url: str) -> bool:
    pattern = (entry.pattern or "").strip()
    if not pattern or not url:
        return False
    if entry.type == "domain":
        return extract_domain(url) == _strip_www(pattern)
    if entry.type == "url":
        target = _norm_url(url)
        pat = _norm_url(pattern)
        if "*" in pat:
            return fnmatchcase(target, pat)
        return target == pat
    return False


def find_match(entries: Iterable[BlacklistEntry], url: str) -> Optional[BlacklistEntry]:
    for entry in entries:
        if entry_matches(entry, url):
            return entry
    return None
