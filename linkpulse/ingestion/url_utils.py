"""URL canonicalization helpers for ingestion/dedup."""

from __future__ import annotations

import ipaddress
import re
from typing import Iterable, Optional
from urllib.parse import parse_qsl, unquote, urlencode, urlparse, urlunparse


DEFAULT_STRIP_QUERY_PARAMS = {
    # campaign tags
    "utm_source",
    "utm_medium",
    "utm_campaign",
    "utm_term",
    "utm_content",
    "utm_id",
    "utm_creative",
    "utm_name",
    "utm_reader",
    "utm_referrer",
    "utm_pubreferrer",
    "utm_swu",
    # ad click ids
    "fbclid",
    "gclid",
    "gclsrc",
    "msclkid",
    "twclid",
    "li_fat_id",
    "dclid",
    "yclid",
    "ttclid",
    "sccid",
    "igshid",
    "s_kwcid",
    "s_cid",
    "ef_id",
    "zanpid",
    "kclickid",
    # email service providers
    "mc_cid",
    "mc_eid",
    "ck_subscriber_id",
    "email_subscriber_id",
    "subscriber_id",
    "user_id",
    "uid",
    "_bta_tid",
    "_bta_c",
    "trk_contact",
    "trk_msg",
    "trk_module",
    "trk_sid",
    "_hsenc",
    "_hsmi",
    "mkt_tok",
    "vero_id",
    "nr_email_referer",
    "publication_id",
    "isfreemail",
    "__s",
    "_ke",
    "vgo_ee",
    # analytics / referral
    "_ga",
    "_gl",
    "ref",
    "ref_src",
    "ref_url",
    "referer",
    "referrer",
    "source",
    "src",
    "trk",
    "srid",
    "_openstat",
    "ncid",
    "spm",
    "scm",
    "smid",
    "smtyp",
    # sharing widgets
    "sr_share",
    "share_bandit_exp",
    "share_bandit_var",
    "share_source",
    "shareuid",
    # affiliates / campaigns
    "affiliate",
    "affiliate_id",
    "partner",
    "partner_id",
    "campaign",
    "campaign_id",
    # subscriber identity leaks
    "email",
    "subscriber",
    "hash",
    "token",
    "sid",
    "eid",
    "mid",
}

# Params that carry content identity and must survive even if a tracker list grows.
PRESERVED_QUERY_PARAMS = {"id", "p", "page", "v", "q", "s", "t", "tab", "section", "anchor"}

TWO_PART_TLDS = {"co.uk", "co.nz", "co.jp", "com.au", "com.br", "org.uk"}

_DEFAULT_PORTS = {"http": 80, "https": 443}


def canonicalize_url(url: str, *, strip_params: Optional[Iterable[str]] = None) -> str:
    """Canonicalize a URL for dedup.

    - Upgrade http to https, lowercase hostname, drop ``www.`` and default ports
    - Remove fragments
    - Strip tracking query parameters, keep content params sorted
    - Collapse duplicate slashes, drop the trailing slash except at root

    Returns "" for input that cannot be parsed as an http(s) URL.
    """
    if not url:
        return ""
    strip = {p.lower() for p in strip_params} if strip_params is not None else DEFAULT_STRIP_QUERY_PARAMS
    try:
        p = urlparse(url.strip())
        port = p.port
    except ValueError:
        return ""
    scheme = (p.scheme or "").lower()
    if scheme not in ("http", "https"):
        return ""
    host = (p.hostname or "").lower().rstrip(".")
    if not host:
        return ""
    if host.startswith("www."):
        host = host[4:]
    netloc = host
    if port and port not in _DEFAULT_PORTS.values():
        netloc = f"{host}:{port}"

    path = re.sub(r"/{2,}", "/", p.path or "/")
    if len(path) > 1 and path.endswith("/"):
        path = path.rstrip("/") or "/"

    kept = []
    for k, v in parse_qsl(p.query, keep_blank_values=True):
        lk = k.lower()
        if lk in strip and lk not in PRESERVED_QUERY_PARAMS:
            continue
        kept.append((k, v))
    kept.sort(key=lambda kv: (kv[0].lower(), kv[1]))
    query = urlencode(kept, doseq=True)

    return urlunparse(("https", netloc, path, "", query, ""))


def extract_domain(url: str) -> str:
    try:
        host = (urlparse(url or "").hostname or "").lower()
    except ValueError:
        return ""
    return host[4:] if host.startswith("www.") else host


def extract_base_domain(url: str) -> str:
    """Registrable domain: last two labels, three for known two-part TLDs."""
    host = extract_domain(url) if "://" in (url or "") else (url or "").lower().strip()
    if host.startswith("www."):
        host = host[4:]
    parts = [p for p in host.split(".") if p]
    if len(parts) <= 2:
        return ".".join(parts)
    if ".".join(parts[-2:]) in TWO_PART_TLDS:
        return ".".join(parts[-3:])
    return ".".join(parts[-2:])


def exclusion_reason(url: str) -> Optional[str]:
    """Return an error string if the URL must not be fetched or stored."""
    try:
        p = urlparse((url or "").strip())
    except ValueError:
        return "invalid_url"
    if p.scheme not in ("http", "https"):
        return "bad_scheme"
    host = (p.hostname or "").strip().lower()
    if not host:
        return "missing_host"
    if host in ("localhost", "localhost.localdomain") or host.endswith(".localhost"):
        return "blocked_host"
    try:
        ipaddress.ip_address(host)
        return "blocked_ip_literal"
    except ValueError:
        return None


def unwrap_tracking_redirect(url: str) -> Optional[str]:
    """Pull the destination out of newsletter click-wrappers without a network call."""
    try:
        p = urlparse(url)
    except ValueError:
        return None
    host = (p.hostname or "").lower()
    params = dict(parse_qsl(p.query, keep_blank_values=False))
    target = None
    if host.endswith("substack.com") and p.path.startswith("/redirect"):
        target = params.get("uri") or params.get("url")
    elif host.endswith("list-manage.com") and "/track/click" in p.path:
        target = params.get("url")
    if not target:
        return None
    target = unquote(target)
    if not target.startswith(("http://", "https://")):
        return None
    return target
