"""Tests for parent lookup within a user scope."""

import unittest

from btm_parser.hierarchy import find_parent, parent_reference
from btm_parser.models import ParsedItem


def make_item(identifier: str, container: str | None = None, name: str = "item") -> ParsedItem:
    return ParsedItem(
        identifier=identifier,
        uuid="00000000-0000-0000-0000-000000000000",
        name=name,
        type=0x4,
        type_details="login item",
        disposition=0,
        disposition_details="disabled disallowed visible not notified",
        container=container,
    )


class TestFindParent(unittest.TestCase):
    """Test parent resolution."""

    def test_finds_parent(self):
        """Test the record whose identifier equals the container is returned."""
        parent = make_item("2.com.example.app")
        child = make_item("4.com.example.login", container="2.com.example.app")
        self.assertIs(find_parent(child, [parent, child]), parent)

    def test_first_match_wins(self):
        """Test duplicate identifiers resolve to the first record in stored order."""
        first = make_item("2.com.example.app", name="first")
        second = make_item("2.com.example.app", name="second")
        child = make_item("4.com.example.login", container="2.com.example.app")
        self.assertEqual(find_parent(child, [child, first, second]).name, "first")

    def test_no_container(self):
        """Test records without a container have no parent."""
        item = make_item("2.com.example.app")
        self.assertIsNone(find_parent(item, [item]))

    def test_unresolved_container(self):
        """Test a container naming no record in the scope."""
        child = make_item("4.com.example.login", container="2.com.example.missing")
        self.assertIsNone(find_parent(child, [child]))
        self.assertEqual(parent_reference(child, [child]), "2.com.example.missing")

    def test_self_reference_ignored(self):
        """Test a record is never its own parent."""
        item = make_item("2.com.example.app", container="2.com.example.app")
        self.assertIsNone(find_parent(item, [item]))

    def test_parent_reference(self):
        """Test the resolved parent identifier is reported."""
        parent = make_item("2.com.example.app")
        child = make_item("4.com.example.login", container="2.com.example.app")
        self.assertEqual(parent_reference(child, [parent, child]), "2.com.example.app")
        self.assertIsNone(parent_reference(parent, [parent, child]))


if __name__ == "__main__":
    unittest.main()
