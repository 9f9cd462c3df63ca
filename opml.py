#!/usr/bin/env python3
"""
OPML subscription list reader.

The document is parsed into a small typed tree of ``OutlineNode`` objects and a
recursive visitor collects every outline that points at a feed, however deeply it is
nested inside grouping outlines.
"""

from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Union
import xml.etree.ElementTree as ET

from config import get_logger
from errors import ParseError
from models import FeedDescriptor

logger = get_logger("opml")

FEED_URL_ATTRIBUTE = "xmlUrl"


def _local_name(tag: str) -> str:
    """Drop any ``{namespace}`` prefix from an element tag."""
    return tag.rsplit("}", 1)[-1] if "}" in tag else tag


@dataclass(frozen=True)
class OutlineNode:
    """One element of the OPML tree with its attributes and child elements."""
    tag: str
    attributes: Dict[str, str] = field(default_factory=dict)
    children: List["OutlineNode"] = field(default_factory=list)

    @classmethod
    def from_element(cls, element: ET.Element) -> "OutlineNode":
        return cls(
            tag=_local_name(element.tag),
            attributes={_local_name(k): v for k, v in element.attrib.items()},
            children=[cls.from_element(child) for child in element],
        )

    @property
    def is_outline(self) -> bool:
        return self.tag == "outline"

    def has_feed_url(self) -> bool:
        return self.is_outline and bool(self.attributes.get(FEED_URL_ATTRIBUTE, "").strip())

    def is_rss_typed(self) -> bool:
        return self.attributes.get("type", "").strip().lower() == "rss"

    def to_descriptor(self) -> FeedDescriptor:
        title = self.attributes.get("title") or self.attributes.get("text") or ""
        return FeedDescriptor(title=title.strip(), url=self.attributes[FEED_URL_ATTRIBUTE].strip())


def iter_feed_nodes(node: OutlineNode, require_rss_type: bool = False) -> Iterator[OutlineNode]:
    """Yield feed outlines depth-first in document order.

    Children are visited whether or not their parent is itself a feed.
    """
    if node.has_feed_url() and (node.is_rss_typed() or not require_rss_type):
        yield node
    for child in node.children:
        yield from iter_feed_nodes(child, require_rss_type)


def parse_opml(document: Union[str, bytes], *, require_rss_type: bool = False) -> List[FeedDescriptor]:
    """Parse an OPML document into feed descriptors.

    Args:
        document: The OPML XML text
        require_rss_type: Only accept outlines marked ``type="rss"``; otherwise any
            outline carrying an ``xmlUrl`` attribute is a feed

    Returns:
        Descriptors deduplicated by URL in first-seen order; the first title seen for
        a URL is kept.

    Raises:
        ParseError: If the document is not well-formed XML.
    """
    try:
        root = ET.fromstring(document)
    except ET.ParseError as e:
        raise ParseError(f"OPML document is not well-formed XML: {e}") from e

    tree = OutlineNode.from_element(root)

    descriptors: Dict[str, FeedDescriptor] = {}
    for node in iter_feed_nodes(tree, require_rss_type):
        descriptor = node.to_descriptor()
        if descriptor.url in descriptors:
            logger.debug(f"Skipping duplicate feed URL {descriptor.url}")
            continue
        descriptors[descriptor.url] = descriptor

    logger.debug(f"Parsed {len(descriptors)} feeds from OPML")
    return list(descriptors.values())


def read_opml_file(file_path: str, *, require_rss_type: bool = False) -> List[FeedDescriptor]:
    """Read and parse an OPML file.

    Raises:
        ParseError: If the file cannot be read or is not well-formed XML.
    """
    try:
        with open(file_path, "rb") as f:
            raw = f.read()
    except OSError as e:
        raise ParseError(f"Cannot read OPML file {file_path}: {e}", source=file_path) from e

    try:
        return parse_opml(raw, require_rss_type=require_rss_type)
    except ParseError as e:
        e.source = file_path
        raise
