"""Metadata extraction from fetched HTML.

Walks the page with a streaming tokenizer (html.parser) and collects meta
tags, Open Graph and Twitter Card properties, JSON-LD blocks, the title,
canonical link, language, favicon link and the first paragraph of text. No DOM
is built and scripts are never executed. Malformed markup degrades to whatever
was collected before the tokenizer gave up.
"""

import json
import logging
import re
from html.parser import HTMLParser
from typing import Optional

from bookmark_insights.core.bookmark import MAX_KEYWORDS, MAX_SNIPPET_LENGTH, RawMetadata

logger = logging.getLogger(__name__)

_WHITESPACE_RE = re.compile(r"\s+")

_FAVICON_RELS = frozenset({"icon", "shortcut icon"})


class MetadataParser(HTMLParser):
    """Collects metadata while tokenizing a page."""

    def __init__(self):
        super().__init__(convert_charrefs=True)
        self.metadata = RawMetadata()
        self._title_parts: Optional[list[str]] = None
        self._json_ld_parts: Optional[list[str]] = None
        self._paragraph_parts: Optional[list[str]] = None
        self._skip_depth = 0

    def handle_starttag(self, tag: str, attrs: list[tuple[str, Optional[str]]]) -> None:
        attributes = {name.lower(): value or "" for name, value in attrs}

        if tag == "meta":
            self._handle_meta(attributes)
        elif tag == "link":
            self._handle_link(attributes)
        elif tag == "html":
            lang = attributes.get("lang", "").strip()
            if lang:
                self.metadata.other.setdefault("language", lang)
        elif tag == "title" and "title" not in self.metadata.other:
            self._title_parts = []
        elif tag == "script":
            if attributes.get("type", "").strip().lower() == "application/ld+json":
                self._json_ld_parts = []
            else:
                self._skip_depth += 1
        elif tag in ("style", "noscript", "template"):
            self._skip_depth += 1
        elif tag == "p" and self.metadata.snippet is None:
            # A new <p> implicitly closes an open one
            self.finish_paragraph()
            if self.metadata.snippet is None:
                self._paragraph_parts = []

    def handle_endtag(self, tag: str) -> None:
        if tag == "title" and self._title_parts is not None:
            title = _collapse(self._title_parts)
            if title:
                self.metadata.other["title"] = title
            self._title_parts = None
        elif tag == "script":
            if self._json_ld_parts is not None:
                self._add_json_ld("".join(self._json_ld_parts))
                self._json_ld_parts = None
            elif self._skip_depth:
                self._skip_depth -= 1
        elif tag in ("style", "noscript", "template"):
            if self._skip_depth:
                self._skip_depth -= 1
        elif tag == "p":
            self.finish_paragraph()

    def handle_data(self, data: str) -> None:
        if self._json_ld_parts is not None:
            self._json_ld_parts.append(data)
            return
        if self._skip_depth:
            return
        if self._title_parts is not None:
            self._title_parts.append(data)
        if self._paragraph_parts is not None:
            self._paragraph_parts.append(data)

    def finish_paragraph(self) -> None:
        if self._paragraph_parts is None:
            return
        text = _collapse(self._paragraph_parts)
        # Empty paragraphs don't count as "first"
        if text:
            self.metadata.snippet = text[:MAX_SNIPPET_LENGTH]
        self._paragraph_parts = None

    def _handle_meta(self, attributes: dict[str, str]) -> None:
        name = (attributes.get("name") or attributes.get("property") or "").strip().lower()
        content = attributes.get("content", "").strip()
        if not name or not content:
            return

        if name.startswith("og:"):
            bucket = self.metadata.open_graph
        elif name.startswith("twitter:"):
            bucket = self.metadata.twitter_card
        else:
            bucket = self.metadata.meta
        bucket.setdefault(name, content)

        if name == "author":
            self.metadata.other.setdefault("author", content)

    def _handle_link(self, attributes: dict[str, str]) -> None:
        rel = _collapse([attributes.get("rel", "")]).lower()
        href = attributes.get("href", "").strip()
        if not href:
            return
        if rel == "canonical":
            self.metadata.other.setdefault("canonical", href)
        elif rel in _FAVICON_RELS and self.metadata.favicon_href is None:
            self.metadata.favicon_href = href

    def _add_json_ld(self, text: str) -> None:
        text = text.strip()
        if not text:
            return
        try:
            self.metadata.json_ld.append(json.loads(text))
        except ValueError as e:
            logger.debug("Dropping unparsable JSON-LD block: %s", e)


def _collapse(parts: list[str]) -> str:
    return _WHITESPACE_RE.sub(" ", "".join(parts)).strip()


def extract(html: str) -> RawMetadata:
    """Extract raw metadata from an HTML document.

    Never raises: on a tokenizer failure, the metadata gathered up to that
    point is returned.

    Args:
        html: Page source. May be empty or malformed.

    Returns:
        RawMetadata with sparse buckets plus ``snippet`` and ``favicon_href``.
    """
    parser = MetadataParser()
    try:
        parser.feed(html)
        parser.close()
    except Exception as e:
        logger.debug("HTML tokenizer stopped early: %s", e)
    parser.finish_paragraph()
    return parser.metadata


def pick_description(metadata: RawMetadata) -> Optional[str]:
    """Best description: og:description, then meta, then Twitter Card, then snippet."""
    return (
        metadata.open_graph.get("og:description")
        or metadata.meta.get("description")
        or metadata.twitter_card.get("twitter:description")
        or metadata.snippet
        or None
    )


def pick_keywords(metadata: RawMetadata) -> list[str]:
    """Meta keywords split on commas, trimmed, at most MAX_KEYWORDS."""
    raw = metadata.meta.get("keywords", "")
    keywords = [k.strip() for k in raw.split(",")]
    return [k for k in keywords if k][:MAX_KEYWORDS]


def pick_author(metadata: RawMetadata) -> Optional[str]:
    """Author display name from meta tags, falling back to JSON-LD."""
    author = metadata.other.get("author") or metadata.meta.get("author")
    if author:
        return author

    for block in _iter_json_ld_objects(metadata.json_ld):
        name = _author_name(block.get("author"))
        if name:
            return name
    return None


def _author_name(value) -> Optional[str]:
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, dict):
        name = value.get("name")
        return name.strip() if isinstance(name, str) and name.strip() else None
    if isinstance(value, list):
        for item in value:
            name = _author_name(item)
            if name:
                return name
    return None


def _iter_json_ld_objects(blocks: list):
    """Yield every dict in the JSON-LD blocks, flattening lists and @graph."""
    stack = list(reversed(blocks))
    while stack:
        item = stack.pop()
        if isinstance(item, list):
            stack.extend(reversed(item))
        elif isinstance(item, dict):
            yield item
            graph = item.get("@graph")
            if isinstance(graph, list):
                stack.extend(reversed(graph))


def json_ld_types(json_ld: list) -> list[str]:
    """All schema.org ``@type`` values found in JSON-LD blocks, in order."""
    types: list[str] = []
    for block in _iter_json_ld_objects(json_ld):
        value = block.get("@type")
        values = value if isinstance(value, list) else [value]
        types.extend(v for v in values if isinstance(v, str))
    return types
