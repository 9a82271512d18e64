"""Downloading and parsing RSS feeds."""

from __future__ import annotations

import html
import http.client
import urllib.request
import xml.etree.ElementTree as ET
from dataclasses import dataclass, field

USER_AGENT = "gator"


class FeedError(Exception):
    """A feed could not be downloaded or parsed."""


@dataclass
class RSSItem:
    title: str = ""
    link: str = ""
    description: str = ""
    pub_date: str = ""


@dataclass
class RSSFeed:
    """The channel of an RSS document and its items."""

    title: str = ""
    link: str = ""
    description: str = ""
    items: list[RSSItem] = field(default_factory=list)


def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _direct_text(element: ET.Element) -> str:
    return (element.text or "") + "".join(child.tail or "" for child in element)


def _children(element: ET.Element, name: str) -> list[ET.Element]:
    return [child for child in element if _local_name(child.tag) == name]


def _text_of(element: ET.Element, name: str) -> str:
    # Repeated elements overwrite each other, so the last one wins.
    matches = _children(element, name)
    return _direct_text(matches[-1]) if matches else ""


def _item(element: ET.Element) -> RSSItem:
    return RSSItem(
        title=_text_of(element, "title"),
        link=_text_of(element, "link"),
        description=_text_of(element, "description"),
        pub_date=_text_of(element, "pubDate"),
    )


def parse_feed(data: bytes | str) -> RSSFeed:
    """Parse an RSS document; the channel title and description are HTML-unescaped."""
    try:
        root = ET.fromstring(data)
    except ET.ParseError as exc:
        raise FeedError(f"error unmarshalling xml to rssFeed: {exc}") from exc
    channels = _children(root, "channel")
    if not channels:
        return RSSFeed()
    channel = channels[-1]
    return RSSFeed(
        title=html.unescape(_text_of(channel, "title")),
        link=_text_of(channel, "link"),
        description=html.unescape(_text_of(channel, "description")),
        items=[_item(element) for element in _children(channel, "item")],
    )


def fetch_feed(url: str, timeout: float | None = None) -> RSSFeed:
    """Download the feed at ``url`` and parse it."""
    try:
        request = urllib.request.Request(url, headers={"User-Agent": USER_AGENT})
    except ValueError as exc:
        raise FeedError(f"error making request: {exc}") from exc
    try:
        response = urllib.request.urlopen(request, timeout=timeout)
    except (OSError, ValueError, http.client.HTTPException) as exc:
        raise FeedError(f"error doing the rss request: {exc}") from exc
    with response:
        try:
            data = response.read()
        except (OSError, http.client.HTTPException) as exc:
            raise FeedError(f"error reading the response body: {exc}") from exc
    return parse_feed(data)