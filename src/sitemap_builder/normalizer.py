"""URL canonicalization for sitemap locations."""

import re
from typing import Optional
from urllib.parse import quote, urljoin, urlsplit, urlunsplit
from .errors import MalformedURLError, UnsupportedSchemeError

SUPPORTED_SCHEMES = ("http", "https")
DEFAULT_PORTS = {"http": 80, "https": 443}

# RFC 3986 reserved and unreserved characters, plus "%" for existing escapes
_PATH_SAFE = "/:@!$&'()*+,;=-._~%"
_QUERY_SAFE = _PATH_SAFE + "?"

_STRAY_PERCENT = re.compile(r"%(?![0-9A-Fa-f]{2})")
_ESCAPE = re.compile(r"%[0-9a-fA-F]{2}")
_DUPLICATE_SLASHES = re.compile(r"/{2,}")
_HAS_SCHEME = re.compile(r"^[A-Za-z][A-Za-z0-9+.\-]*:")
_INVALID_HOST_CHARS = re.compile(r"[\s<>\"{}|\\^`/?#@]")


def _encode_component(value: str, safe: str) -> str:
    """Percent-encode invalid characters without touching valid escapes."""
    value = _STRAY_PERCENT.sub("%25", value)
    value = quote(value, safe=safe)
    return _ESCAPE.sub(lambda m: m.group(0).upper(), value)


def _normalize_host(raw: str, hostname: str) -> str:
    if _INVALID_HOST_CHARS.search(hostname):
        raise MalformedURLError(raw, "invalid characters in host")
    try:
        host = hostname.encode("idna").decode("ascii")
    except UnicodeError as e:
        raise MalformedURLError(raw, f"invalid host ({e})") from e
    host = host.lower()
    if ":" in host:
        host = f"[{host}]"
    return host


def is_relative(url: str) -> bool:
    """True for page names without a scheme, protocol-relative ``//host`` included."""
    return not _HAS_SCHEME.match(url)


def join_url_parts(base: str, name: str) -> str:
    """
    Append ``name`` under ``base`` with exactly one "/" between them.

    Unlike ``urljoin`` the last segment of ``base`` is kept, so
    ``join_url_parts("https://example.com/blog", "post")`` gives
    ``https://example.com/blog/post``.
    """
    if not name:
        return base
    if not base:
        return name
    if base.endswith("/") and name.startswith("/"):
        return base + name[1:]
    if base.endswith("/") or name.startswith("/"):
        return base + name
    return f"{base}/{name}"


def resolve_url(url: str, base_url: Optional[str] = None) -> str:
    """Absolute form of ``url``; relative names are returned as-is without a base."""
    if not base_url or not is_relative(url):
        return url
    if url.startswith("//"):
        return urljoin(base_url, url)
    return join_url_parts(base_url, url)


def normalize_url(
    raw: str,
    base_url: Optional[str] = None,
    collapse_slashes: bool = False
) -> str:
    """
    Canonicalize a raw URL string.

    Lower-cases scheme and host, drops default ports and the fragment,
    percent-encodes characters that are not valid in a URI and resolves
    relative page names under ``base_url`` when given. Applying it to its
    own output returns the same string.

    Relative names are appended to the full base URL, path included; only
    protocol-relative ``//host/...`` references borrow just the base scheme.

    Raises:
        MalformedURLError: no scheme or host could be parsed, or ``raw`` is
            not a string.
        UnsupportedSchemeError: the scheme is not http or https.
    """
    if raw is None:
        raise MalformedURLError("", "empty URL")
    if not isinstance(raw, str):
        raise MalformedURLError(repr(raw), f"URL must be a string, not {type(raw).__name__}")

    url = raw.strip()
    if not url:
        raise MalformedURLError(raw, "empty URL")

    if is_relative(url):
        if not base_url:
            raise MalformedURLError(raw, "missing scheme")
        url = resolve_url(url, base_url)

    try:
        parts = urlsplit(url)
    except ValueError as e:
        raise MalformedURLError(raw, f"unparseable URL ({e})") from e

    scheme = parts.scheme.lower()
    if not scheme:
        raise MalformedURLError(raw, "missing scheme")
    if scheme not in SUPPORTED_SCHEMES:
        raise UnsupportedSchemeError(raw, f"unsupported scheme {scheme!r}")

    if not parts.hostname:
        raise MalformedURLError(raw, "missing host")

    try:
        port = parts.port
    except ValueError as e:
        raise MalformedURLError(raw, "invalid port") from e

    netloc = _normalize_host(raw, parts.hostname)
    if port is not None and port != DEFAULT_PORTS[scheme]:
        netloc = f"{netloc}:{port}"
    if "@" in parts.netloc:
        userinfo = parts.netloc.rsplit("@", 1)[0]
        netloc = f"{_encode_component(userinfo, _PATH_SAFE.replace('/', '').replace('@', ''))}@{netloc}"

    path = parts.path or "/"
    if collapse_slashes:
        path = _DUPLICATE_SLASHES.sub("/", path)
    path = _encode_component(path, _PATH_SAFE)

    query = _encode_component(parts.query, _QUERY_SAFE) if parts.query else ""

    return urlunsplit((scheme, netloc, path, query, ""))
