"""
Parsing and normalisation of Github funding declarations.

A repository declares where it can be funded in ``.github/FUNDING.yml``.
Each top-level key names a funding platform and holds one identifier or a
list of them; the special ``custom`` key holds free-form URLs.  This module
turns such a document into canonical, absolute ``http``/``https`` URLs,
preserving the order in which the document declares them.
"""

from __future__ import annotations

import ipaddress
import re
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from urllib.parse import SplitResult, urlsplit

import yaml

from cargo_fund.errors import MalformedDeclarationError
from cargo_fund.logging import get_logger
from cargo_fund.models import RawDeclaration

logger = get_logger("funding")

_SCHEME_RE = re.compile(r"^[A-Za-z][A-Za-z0-9+.-]*://")
_HOSTNAME_RE = re.compile(r"^[A-Za-z0-9](?:[A-Za-z0-9_-]*[A-Za-z0-9])?(?:\.[A-Za-z0-9](?:[A-Za-z0-9_-]*[A-Za-z0-9])?)*\.?$")


@dataclass(frozen=True)
class Platform:
    """A funding platform recognised in FUNDING.yml.

    ``template`` receives the identifier; ``None`` marks the free-form
    ``custom`` field whose entries are URLs in their own right.
    """

    field: str
    template: str | None

    def url_for(self, identifier: str) -> str | None:
        if self.template is None:
            return normalize_url(identifier)
        return normalize_url(self.template.format(identifier))


# Keyed by FUNDING.yml field name.  Adding a platform is a one-line change.
PLATFORMS: dict[str, Platform] = {
    platform.field: platform
    for platform in (
        Platform("github", "https://github.com/sponsors/{}"),
        Platform("patreon", "https://www.patreon.com/{}"),
        Platform("open_collective", "https://opencollective.com/{}"),
        Platform("ko_fi", "https://ko-fi.com/{}"),
        Platform("tidelift", "https://tidelift.com/funding/github/{}"),
        Platform("community_bridge", "https://funding.communitybridge.org/projects/{}"),
        Platform("liberapay", "https://liberapay.com/{}"),
        Platform("issuehunt", "https://issuehunt.io/r/{}"),
        Platform("otechie", "https://otechie.com/{}"),
        Platform("lfx_crowdfunding", "https://crowdfunding.lfx.linuxfoundation.org/projects/{}"),
        Platform("polar", "https://polar.sh/{}"),
        Platform("thanks_dev", "https://thanks.dev/{}"),
        Platform("buy_me_a_coffee", "https://www.buymeacoffee.com/{}"),
        Platform("custom", None),
    )
}


def split_absolute_url(url: str) -> SplitResult | None:
    """Strictly parse an absolute URL of any scheme.

    Args:
        url: The candidate URL.

    Returns:
        The split URL if it has a scheme, a syntactically valid host, a
        numeric port if any and no whitespace or control characters;
        otherwise ``None``.
    """
    if not url or any(ch.isspace() or ord(ch) < 0x20 or ord(ch) == 0x7F for ch in url):
        return None
    try:
        parts = urlsplit(url)
        parts.port  # raises ValueError for a non-numeric or out-of-range port
    except ValueError:
        return None
    host = parts.hostname
    if not parts.scheme or not host:
        return None
    if "[" in parts.netloc:
        try:
            ipaddress.IPv6Address(host)
        except ValueError:
            return None
        return parts
    return parts if _HOSTNAME_RE.match(host) else None


def with_default_scheme(value: str) -> str:
    """Prepend ``https://`` to ``value`` unless it already names a scheme."""
    return value if _SCHEME_RE.match(value) else f"https://{value}"


def is_valid_url(url: str) -> bool:
    """Strictly check that ``url`` is an absolute ``http``/``https`` URL.

    Unlike :func:`split_absolute_url`, credentials are rejected too.
    """
    parts = split_absolute_url(url)
    if parts is None:
        return False
    return parts.scheme.lower() in ("http", "https") and parts.username is None


def normalize_url(value: str) -> str | None:
    """Turn a possibly scheme-less link into a canonical absolute URL.

    Absolute ``http``/``https`` URLs are returned unchanged (apart from
    surrounding whitespace).  A value without a scheme, such as
    ``example.org/donate``, gets ``https://`` prepended.

    Args:
        value: The link as written by a repository owner.

    Returns:
        The canonical URL, or ``None`` if the value is still not a valid
        URL after the fallback.
    """
    value = value.strip()
    if not value:
        return None
    candidate = with_default_scheme(value)
    return candidate if is_valid_url(candidate) else None


def _identifiers(value: object) -> Iterator[str]:
    if value is None:
        return
    items: Iterable[object]
    if isinstance(value, (list, tuple)):
        items = value
    else:
        items = [value]
    for item in items:
        if item is None or isinstance(item, (bool, dict, list)):
            continue
        text = str(item).strip()
        if text:
            yield text


def _dedupe(urls: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    ordered: list[str] = []
    for url in urls:
        if url not in seen:
            seen.add(url)
            ordered.append(url)
    return ordered


def parse_funding_yaml(content: str) -> list[str]:
    """Parse a FUNDING.yml document into funding URLs.

    Fields are processed in document order and list entries in declaration
    order.  Unknown fields, blank identifiers and entries that do not form
    a valid URL are skipped.

    Raises:
        MalformedDeclarationError: The document is not YAML, or its top
            level is not a mapping.
    """
    try:
        data = yaml.safe_load(content)
    except yaml.YAMLError as exc:
        raise MalformedDeclarationError(f"invalid YAML: {exc}") from exc
    if data is None:
        return []
    if not isinstance(data, dict):
        raise MalformedDeclarationError(
            f"expected a mapping of platforms, got {type(data).__name__}"
        )
    urls: list[str] = []
    for field, value in data.items():
        platform = PLATFORMS.get(str(field).strip().lower())
        if platform is None:
            logger.debug("ignoring unknown funding platform %r", field)
            continue
        for identifier in _identifiers(value):
            url = platform.url_for(identifier)
            if url is None:
                logger.debug("dropping invalid %s entry %r", platform.field, identifier)
                continue
            urls.append(url)
    return _dedupe(urls)


def parse_declaration(raw: RawDeclaration) -> list[str]:
    """Convert a raw funding declaration into an ordered list of URLs.

    Args:
        raw: The declaration as fetched from the repository.

    Returns:
        Canonical funding URLs in declaration order.  An empty list means
        the repository declares no usable funding links.

    Raises:
        MalformedDeclarationError: The declaration cannot be parsed at all.
    """
    return parse_funding_yaml(raw.content)


__all__ = [
    "PLATFORMS",
    "Platform",
    "is_valid_url",
    "normalize_url",
    "split_absolute_url",
    "with_default_scheme",
    "parse_declaration",
    "parse_funding_yaml",
]
