"""Bookmark export parser for bookmark-insights.

Accepts two JSON shapes:

- A browser bookmark tree: nested nodes with ``id``, ``title``, ``url``,
  ``dateAdded`` (epoch milliseconds), ``parentId`` and ``children``. Folder
  titles along the way become the ``folder_path`` ("Bookmarks Bar/Dev").
- A flat list of records as written by ``BookmarkRecord.to_dict()``, either
  bare or under a ``records`` key.
"""

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterator, Optional, Union

from bookmark_insights.core.bookmark import BookmarkRecord
from bookmark_insights.core.exceptions import ParseError

UNTITLED = "Untitled"


def _date_from_millis(value: Any) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(int(value) / 1000, tz=timezone.utc)


def _is_tree(data: Any) -> bool:
    nodes = data if isinstance(data, list) else [data]
    return any(isinstance(node, dict) and "children" in node for node in nodes)


def _walk_tree(nodes: list[dict], folder_path: str = "") -> Iterator[BookmarkRecord]:
    for node in nodes:
        if node.get("url"):
            yield BookmarkRecord(
                id=str(node["id"]),
                url=node["url"],
                title=node.get("title") or UNTITLED,
                date_added=_date_from_millis(node.get("dateAdded")),
                folder_path=folder_path,
                parent_id=str(node["parentId"]) if node.get("parentId") is not None else None,
            )
        elif node.get("children") is not None:
            title = node.get("title") or ""
            child_path = f"{folder_path}/{title}" if folder_path else title
            yield from _walk_tree(node["children"], child_path)


def parse_bookmark_export(source: Union[str, Path, list, dict]) -> list[BookmarkRecord]:
    """Parse a bookmark export into BookmarkRecords.

    Args:
        source: A file path, or already-parsed JSON data.

    Returns:
        Records in export order.

    Raises:
        ParseError: If the JSON is malformed or an entry lacks id/url.
        FileNotFoundError: If the source file doesn't exist.
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Export file not found: {path}")
        try:
            with open(path, encoding="utf-8") as f:
                data = json.load(f)
        except json.JSONDecodeError as e:
            raise ParseError(f"Invalid JSON in export file: {e}")
    else:
        data = source

    try:
        if _is_tree(data):
            nodes = data if isinstance(data, list) else [data]
            return list(_walk_tree(nodes))

        if isinstance(data, dict):
            data = data.get("records")
        if not isinstance(data, list):
            raise ParseError("Bookmark export must be a tree or a list of records")
        return [BookmarkRecord.from_dict(item) for item in data]
    except (KeyError, TypeError, ValueError) as e:
        raise ParseError(f"Failed to parse bookmark export: {e}")
