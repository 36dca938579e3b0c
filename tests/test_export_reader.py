"""Tests for the bookmark export parser."""

import json
from datetime import datetime, timezone

import pytest

from bookmark_insights.core.exceptions import ParseError
from bookmark_insights.sources.export_reader import parse_bookmark_export


@pytest.fixture
def browser_tree():
    """A browser bookmark tree with nested folders."""
    return [
        {
            "id": "0",
            "title": "",
            "children": [
                {
                    "id": "1",
                    "title": "Bookmarks Bar",
                    "children": [
                        {
                            "id": "2",
                            "title": "Dev",
                            "parentId": "1",
                            "children": [
                                {
                                    "id": "10",
                                    "title": "Widgets",
                                    "url": "https://github.com/acme/widgets",
                                    "dateAdded": 1700000000000,
                                    "parentId": "2",
                                }
                            ],
                        },
                        {
                            "id": "11",
                            "title": "",
                            "url": "https://example.com/",
                            "parentId": "1",
                        },
                    ],
                }
            ],
        }
    ]


class TestBrowserTree:
    """Nested browser exports."""

    def test_folders_become_paths(self, browser_tree):
        """Folder titles along the way form folder_path."""
        records = parse_bookmark_export(browser_tree)

        assert [r.id for r in records] == ["10", "11"]
        assert records[0].folder_path == "Bookmarks Bar/Dev"
        assert records[1].folder_path == "Bookmarks Bar"

    def test_node_fields(self, browser_tree):
        """Dates are epoch milliseconds; parents are kept."""
        record = parse_bookmark_export(browser_tree)[0]

        assert record.title == "Widgets"
        assert record.domain == "github.com"
        assert record.parent_id == "2"
        assert record.date_added == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)

    def test_missing_title_defaults(self, browser_tree):
        """Untitled bookmarks get a placeholder title."""
        assert parse_bookmark_export(browser_tree)[1].title == "Untitled"

    def test_single_root_node(self, browser_tree):
        """A bare root object works like a one-element list."""
        assert len(parse_bookmark_export(browser_tree[0])) == 2

    def test_numeric_ids_become_strings(self):
        """IDs are always strings."""
        tree = {"id": 0, "children": [{"id": 5, "url": "https://a.test/", "parentId": 0}]}
        record = parse_bookmark_export(tree)[0]

        assert (record.id, record.parent_id) == ("5", "0")


class TestFlatRecords:
    """Lists of stored records."""

    def test_bare_list(self):
        """A list of record dicts."""
        records = parse_bookmark_export(
            [{"id": "1", "url": "https://a.test/", "title": "A", "category": "blog"}]
        )

        assert records[0].title == "A"
        assert records[0].category == "blog"

    def test_records_key(self):
        """Records may be wrapped in a ``records`` key."""
        records = parse_bookmark_export({"records": [{"id": 7, "url": "https://a.test/"}]})
        assert records[0].id == "7"

    def test_from_file(self, tmp_path):
        """A path is read as JSON."""
        path = tmp_path / "export.json"
        path.write_text(json.dumps([{"id": "1", "url": "https://a.test/"}]))

        assert [r.id for r in parse_bookmark_export(path)] == ["1"]
        assert [r.id for r in parse_bookmark_export(str(path))] == ["1"]


class TestErrors:
    """Bad input."""

    def test_missing_file(self, tmp_path):
        """A missing file raises FileNotFoundError."""
        with pytest.raises(FileNotFoundError):
            parse_bookmark_export(tmp_path / "nope.json")

    def test_invalid_json(self, tmp_path):
        """Malformed JSON raises ParseError."""
        path = tmp_path / "export.json"
        path.write_text("{not json")

        with pytest.raises(ParseError, match="Invalid JSON"):
            parse_bookmark_export(path)

    def test_unknown_shape(self):
        """A dict without records or children is rejected."""
        with pytest.raises(ParseError):
            parse_bookmark_export({"bookmarks": []})

    @pytest.mark.parametrize(
        "item",
        [{"url": "https://a.test/"}, {"id": "1"}, {"id": "1", "url": "x", "last_checked": "soon"}],
    )
    def test_invalid_record(self, item):
        """Records missing id/url or with bad values raise ParseError."""
        with pytest.raises(ParseError):
            parse_bookmark_export([item])
