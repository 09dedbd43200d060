"""Tests for type and disposition bit tables."""

import unittest

from btm_parser.flags import (
    TYPE_AGENT,
    TYPE_APP,
    TYPE_DAEMON,
    TYPE_LOGIN_ITEM,
    disposition_details,
    has_type,
    type_details,
)


class TestTypeDetails(unittest.TestCase):
    """Test type bit rendering."""

    def test_single_bits(self):
        """Test each type bit maps to its word."""
        self.assertEqual(type_details(0x2), "app")
        self.assertEqual(type_details(0x4), "login item")
        self.assertEqual(type_details(0x8), "agent")
        self.assertEqual(type_details(0x10), "daemon")
        self.assertEqual(type_details(0x20), "developer")
        self.assertEqual(type_details(0x10000), "legacy")
        self.assertEqual(type_details(0x80000), "curated")

    def test_fixed_order(self):
        """Test words follow the fixed order regardless of bit value."""
        self.assertEqual(type_details(0x80000 | 0x10000 | 0x8), "curated legacy agent")
        self.assertEqual(type_details(0x20 | 0x4 | 0x2), "developer login item app")

    def test_no_known_bits(self):
        """Test values without known bits render as an empty string."""
        self.assertEqual(type_details(0), "")
        self.assertEqual(type_details(0x1), "")
        self.assertEqual(type_details(0x40000000), "")

    def test_has_type(self):
        """Test masks match when any of their bits is set."""
        self.assertTrue(has_type(0x80010, TYPE_DAEMON))
        self.assertTrue(has_type(0x8, TYPE_AGENT | TYPE_DAEMON))
        self.assertFalse(has_type(0x4, TYPE_APP))
        self.assertTrue(has_type(0x4, TYPE_LOGIN_ITEM | TYPE_APP))


class TestDispositionDetails(unittest.TestCase):
    """Test disposition bit rendering."""

    def test_every_pair_contributes_one_word(self):
        """Test the result always has one word per bit pair."""
        self.assertEqual(disposition_details(0), "disabled disallowed visible not notified")
        self.assertEqual(disposition_details(0xF), "enabled allowed hidden notified")

    def test_known_values(self):
        """Test values seen on real systems."""
        self.assertEqual(disposition_details(10), "disabled allowed visible notified")
        self.assertEqual(disposition_details(2), "disabled allowed visible not notified")
        self.assertEqual(disposition_details(11), "enabled allowed visible notified")

    def test_unknown_bits_ignored(self):
        """Test bits above the known pairs do not change the words."""
        self.assertEqual(disposition_details(0x100 | 0x1), disposition_details(0x1))


if __name__ == "__main__":
    unittest.main()
