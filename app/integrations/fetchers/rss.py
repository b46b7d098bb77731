"""
RSS 2.0 / Atom feed fetcher.

Options:
    feed_url: URL of the feed (required)

The fetcher always caches up to CACHE_MAX_ITEMS items. Each consumer's
``max_items`` is applied at serve time, so widgets sharing a feed share one
cache entry regardless of how many items they display.

Output:
    {
        "items": [{"title", "description", "link", "imageUrl",
                   "pubDate", "pubDateFormatted", "author"}],
        "feedTitle": str, "feedDescription": str, "feedImage": str | None,
        "lastUpdated": unix seconds
    }
"""
import html
import re
import xml.etree.ElementTree as ET
from email.utils import parsedate_to_datetime
from typing import Any, Dict, Iterable, List, Optional, Tuple

import httpx

from app.core.time_utils import ensure_utc, parse_datetime
from app.integrations.fetchers.base import (
    INVALID_OPTIONS,
    FetchContext,
    FetchError,
    Fetcher,
    FetchOk,
    FetchResult,
    error_from_response,
    error_from_transport,
)

CACHE_MAX_ITEMS = 100

ACCEPT = "application/rss+xml, application/atom+xml, application/xml, text/xml"

_TAG_RE = re.compile(r"<[^>]+>")
_SPACE_RE = re.compile(r"\s+")


class FeedParseError(ValueError):
    pass


def strip_html(text: Optional[str]) -> str:
    if not text:
        return ""
    without_tags = _TAG_RE.sub(" ", text)
    return _SPACE_RE.sub(" ", html.unescape(without_tags)).strip()


def _local(tag: str) -> str:
    """Element tag without its namespace."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


def _children(element: ET.Element, name: str) -> Iterable[ET.Element]:
    return (child for child in element if _local(child.tag) == name)


def _child(element: ET.Element, name: str) -> Optional[ET.Element]:
    return next(iter(_children(element, name)), None)


def _text(element: ET.Element, name: str) -> str:
    child = _child(element, name)
    if child is None:
        return ""
    return "".join(child.itertext()).strip()


def parse_date(value: str) -> Tuple[str, str]:
    """Return (ISO-8601, human readable) for RFC 822 or any dateutil-parseable date; unparseable input is echoed."""
    if not value:
        return "", ""
    try:
        parsed = ensure_utc(parsedate_to_datetime(value))
    except (TypeError, ValueError, IndexError):
        try:
            parsed = parse_datetime(value)
        except ValueError:
            return value, value
    return parsed.isoformat().replace("+00:00", "Z"), f"{parsed:%b} {parsed.day}, {parsed.year}"


def _rss_image(item: ET.Element) -> str:
    # media:content, then media:thumbnail, then enclosure
    for name in ("content", "thumbnail"):
        for child in _children(item, name):
            url = child.get("url")
            if url:
                return url
    enclosure = _child(item, "enclosure")
    if enclosure is not None and enclosure.get("url"):
        return enclosure.get("url")
    return ""


def _parse_rss(root: ET.Element, max_items: int) -> Dict[str, Any]:
    channel = _child(root, "channel")
    if channel is None:
        raise FeedParseError("RSS document has no channel")

    image = _child(channel, "image")
    items: List[Dict[str, Any]] = []
    for item in _children(channel, "item"):
        if len(items) >= max_items:
            break
        pub_date, pub_date_formatted = parse_date(_text(item, "pubDate") or _text(item, "date"))
        items.append({
            "title": strip_html(_text(item, "title")),
            "description": strip_html(_text(item, "description") or _text(item, "encoded")),
            "link": _text(item, "link"),
            "imageUrl": _rss_image(item),
            "pubDate": pub_date,
            "pubDateFormatted": pub_date_formatted,
            "author": _text(item, "author") or _text(item, "creator"),
        })

    return {
        "items": items,
        "feedTitle": strip_html(_text(channel, "title")),
        "feedDescription": strip_html(_text(channel, "description")),
        "feedImage": (_text(image, "url") or None) if image is not None else None,
    }


def _atom_link(entry: ET.Element) -> str:
    fallback = ""
    for link in _children(entry, "link"):
        href = link.get("href") or ""
        if link.get("rel", "alternate") == "alternate" and href:
            return href
        fallback = fallback or href
    return fallback


def _parse_atom(root: ET.Element, max_items: int) -> Dict[str, Any]:
    entries: List[Dict[str, Any]] = []
    for entry in _children(root, "entry"):
        if len(entries) >= max_items:
            break
        pub_date, pub_date_formatted = parse_date(_text(entry, "published") or _text(entry, "updated"))
        author = _child(entry, "author")
        thumbnail = _child(entry, "thumbnail")
        entries.append({
            "title": strip_html(_text(entry, "title")),
            "description": strip_html(_text(entry, "summary") or _text(entry, "content")),
            "link": _atom_link(entry),
            "imageUrl": (thumbnail.get("url") or "") if thumbnail is not None else "",
            "pubDate": pub_date,
            "pubDateFormatted": pub_date_formatted,
            "author": _text(author, "name") if author is not None else "",
        })

    return {
        "items": entries,
        "feedTitle": strip_html(_text(root, "title")),
        "feedDescription": strip_html(_text(root, "subtitle")),
        "feedImage": _text(root, "logo") or _text(root, "icon") or None,
    }


def parse_feed(content: bytes, max_items: int = CACHE_MAX_ITEMS) -> Dict[str, Any]:
    """
    Parse an RSS 2.0 or Atom document.

    Raises:
        FeedParseError: On malformed XML or an unknown root element
    """
    try:
        root = ET.fromstring(content)
    except ET.ParseError as e:
        raise FeedParseError(f"Malformed feed XML: {e}") from e

    kind = _local(root.tag)
    if kind == "rss":
        return _parse_rss(root, max_items)
    if kind == "feed":
        return _parse_atom(root, max_items)
    if kind == "RDF":
        # RSS 1.0 keeps items beside the channel; reuse the RSS item reader
        channel = _child(root, "channel")
        wrapper = ET.Element("rss")
        merged = ET.SubElement(wrapper, "channel")
        if channel is not None:
            merged.extend(list(channel))
        merged.extend(list(_children(root, "item")))
        return _parse_rss(wrapper, max_items)
    raise FeedParseError(f"Unknown feed format: <{kind}>")


class RssFetcher(Fetcher):
    name = "rss"

    async def fetch(self, credentials: Dict[str, Any], options: Dict[str, Any], context: FetchContext) -> FetchResult:
        feed_url = (options.get("feed_url") or "").strip()
        if not feed_url:
            return FetchError("feed_url option is required", credentials, kind=INVALID_OPTIONS)

        try:
            response = await context.http.get(feed_url, headers={"Accept": ACCEPT})
        except httpx.HTTPError as e:
            return error_from_transport(e, credentials, "RSS feed")

        if response.status_code != 200:
            return error_from_response(response, credentials, "RSS feed")

        try:
            feed = parse_feed(response.content)
        except FeedParseError as e:
            return FetchError(str(e), credentials)

        feed["lastUpdated"] = int(context.clock().timestamp())
        return FetchOk(feed, credentials)
