"""
URL canonicalization for consistent deduplication
"""

from urllib.parse import urlparse, urlunparse, parse_qsl, urlencode

import tldextract

TRACKING_PARAMS = {
    "gclid", "fbclid", "msclkid", "yclid", "dclid",
    "mc_cid", "mc_eid", "igshid", "_ga", "_gl", "ref_src",
}
TRACKING_PREFIXES = ("utm_",)
MOBILE_PREFIXES = ("m.", "mobile.")
DEFAULT_PORTS = {"http": 80, "https": 443}

# Bundled public suffix snapshot only; never fetch the list at runtime
_EXTRACT = tldextract.TLDExtract(suffix_list_urls=())


def _is_tracking(key: str) -> bool:
    k = key.lower()
    return k in TRACKING_PARAMS or k.startswith(TRACKING_PREFIXES)


def _strip_mobile(host: str) -> str:
    changed = True
    while changed:
        changed = False
        for prefix in MOBILE_PREFIXES:
            rest = host[len(prefix):]
            if host.startswith(prefix) and "." in rest:
                host = rest
                changed = True
    return host


def canonical_url(u: str) -> str:
    """
    Canonicalize a URL so equivalent links compare equal.

    Lowercases scheme and host, drops default ports, mobile subdomains,
    tracking parameters and the fragment, and sorts the remaining query.
    Non-HTTP or unparsable input is returned stripped. Idempotent.
    """
    if not u:
        return ""
    u = u.strip()

    try:
        p = urlparse(u)
        scheme = p.scheme.lower()
        if scheme not in DEFAULT_PORTS or not p.hostname:
            return u
        host = _strip_mobile(p.hostname.lower().rstrip("."))
        port = p.port
    except ValueError:
        return u

    if ":" in host:
        host = f"[{host}]"
    netloc = host
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{host}:{port}"
    if p.username:
        userinfo = p.username + (f":{p.password}" if p.password else "")
        netloc = f"{userinfo}@{netloc}"

    if p.query:
        q = [(k, v) for (k, v) in parse_qsl(p.query, keep_blank_values=True) if not _is_tracking(k)]
        # Sort for consistency
        q.sort()
        new_query = urlencode(q)
    else:
        new_query = ""

    path = p.path.rstrip("/") or "/"
    return urlunparse((scheme, netloc, path, p.params, new_query, ""))


def host_key(u: str) -> str:
    """Host without www./m. prefixes, used to match citations against search hits."""
    try:
        host = (urlparse((u or "").strip()).hostname or "").lower()
    except ValueError:
        return ""
    for prefix in ("www.", "m."):
        if host.startswith(prefix):
            host = host[len(prefix):]
    return host


def domain_of(url: str) -> str:
    """Registered domain (example.co.uk) of a URL, or 'unknown'."""
    ext = _EXTRACT(url or "")
    root = ".".join([p for p in [ext.domain, ext.suffix] if p])
    return root.lower() or "unknown"
