"""End-to-end tests for parsing BTM files."""

import json
import struct
import tempfile
import unittest
from pathlib import Path
from unittest.mock import patch

from archive_builder import (
    APP_ID,
    DAEMON_ID,
    LAUNCHER_ID,
    NAMELESS_ID,
    ORPHAN_ID,
    PRIMARY_USER,
    SECONDARY_USER,
    ArchiveBuilder,
    make_sample_bundles,
    nested_sample_archive,
    sample_archive,
)

from btm_parser import FileNotFound, MalformedArchive, ParsedItem, ParsedResult, parse, parse_bytes
from btm_parser.config import Config
from btm_parser.errors import PATH_RESOLUTION_WARNING, RECORD_SKIPPED
from btm_parser.output.render import render_json, render_table


class ParserTestCase(unittest.TestCase):
    """Creates a sample BTM file next to matching app bundles."""

    def setUp(self):
        self.temp_dir = tempfile.TemporaryDirectory()
        self.root = Path(self.temp_dir.name)
        self.app_path = make_sample_bundles(self.root)
        self.btm_path = self.root / "BackgroundItems-v13.btm"
        self.btm_path.write_bytes(sample_archive(self.root))

    def tearDown(self):
        self.temp_dir.cleanup()


class TestParse(ParserTestCase):
    """Test the parse pipeline."""

    def test_scopes_and_items(self):
        """Test items are grouped by user scope in archive order."""
        result = parse(self.btm_path)

        self.assertEqual(result.path, str(self.btm_path))
        self.assertEqual(list(result.items_by_user_identifier), [PRIMARY_USER, SECONDARY_USER])
        self.assertEqual(
            [i.identifier for i in result.items_by_user_identifier[PRIMARY_USER]],
            [APP_ID, LAUNCHER_ID, DAEMON_ID],
        )
        self.assertEqual(result.summary(), {PRIMARY_USER: 3, SECONDARY_USER: 1})

    def test_login_item_executable(self):
        """Test the login item resolves inside its parent app bundle."""
        launcher = parse(self.btm_path).find(LAUNCHER_ID)

        self.assertEqual(launcher.type_details, "login item")
        self.assertEqual(launcher.disposition_details, "disabled allowed visible notified")
        self.assertEqual(launcher.uuid, "86703457-9137-4467-AF13-B21883C26467")
        self.assertTrue(launcher.executable_path.endswith("/Contents/MacOS/1Password Launcher"))
        self.assertEqual(
            launcher.executable_path,
            f"{self.app_path}/Contents/Library/LoginItems/1Password Launcher.app/Contents/MacOS/1Password Launcher",
        )

    def test_app_executable(self):
        """Test the app resolves from its own bundle."""
        app = parse(self.btm_path).find(APP_ID)
        self.assertEqual(app.executable_path, f"{self.app_path}/Contents/MacOS/1Password")
        self.assertEqual(app.type_details, "app")
        self.assertEqual(app.generation, 1)

    def test_daemon_keeps_decoded_path(self):
        """Test daemons keep the executable path stored in the archive."""
        daemon = parse(self.btm_path).find(DAEMON_ID)
        self.assertEqual(daemon.executable_path, "/Library/PrivilegedHelperTools/com.example.helper")
        self.assertEqual(daemon.type_details, "curated daemon")
        self.assertEqual(daemon.url, "file:///Library/LaunchDaemons/com.example.helper.plist")

    def test_record_missing_name_is_dropped(self):
        """Test records without a name are excluded and reported."""
        result = parse(self.btm_path)

        self.assertIsNone(result.find(NAMELESS_ID))
        skipped = [d for d in result.diagnostics if d.kind == RECORD_SKIPPED]
        self.assertEqual(len(skipped), 1)
        self.assertEqual(skipped[0].identifier, NAMELESS_ID)
        self.assertEqual(skipped[0].scope, PRIMARY_USER)

    def test_parent_lookup_stays_in_scope(self):
        """Test a login item does not find a parent in another user scope."""
        result = parse(self.btm_path)

        orphan = result.find(ORPHAN_ID, scope=SECONDARY_USER)
        self.assertIsNone(orphan.executable_path)
        self.assertEqual(orphan.container, APP_ID)

        warnings = [d for d in result.diagnostics if d.kind == PATH_RESOLUTION_WARNING]
        self.assertEqual([(d.scope, d.identifier) for d in warnings], [(SECONDARY_USER, ORPHAN_ID)])

    def test_mdm_payloads_kept_but_not_rendered(self):
        """Test MDM payloads are available on the result only."""
        result = parse(self.btm_path)
        self.assertIn("com.example.profile", result.mdm_payloads_by_identifier)
        self.assertNotIn("mdmPayloadsByIdentifier", json.loads(render_json(result)))

    def test_no_resolve(self):
        """Test path resolution can be switched off."""
        result = parse(self.btm_path, Config(resolve_executables=False))

        self.assertIsNone(result.find(LAUNCHER_ID).executable_path)
        self.assertFalse(any(d.kind == PATH_RESOLUTION_WARNING for d in result.diagnostics))

    def test_parallel_matches_serial(self):
        """Test per-scope parallel resolution gives the same result."""
        serial = parse(self.btm_path)
        parallel = parse(self.btm_path, Config(parallel=True))

        self.assertEqual(render_json(serial), render_json(parallel))
        self.assertEqual(serial.diagnostics, parallel.diagnostics)

    def test_deterministic(self):
        """Test parsing the same file twice gives identical output."""
        self.assertEqual(render_json(parse(self.btm_path)), render_json(parse(self.btm_path)))

    def test_store_data_fallback(self):
        """Test files that nest the store under storeData."""
        nested = self.root / "BackgroundItems-v4.btm"
        nested.write_bytes(nested_sample_archive(self.root))

        self.assertEqual(render_json(parse(nested)), render_json(parse(self.btm_path)).replace(
            str(self.btm_path), str(nested)
        ))


class TestParseErrors(unittest.TestCase):
    """Test fatal parse errors."""

    def test_file_not_found(self):
        """Test a missing file reports its exact path."""
        path = "/nonexistent/BackgroundItems-v13.btm"
        with self.assertRaises(FileNotFound) as ctx:
            parse(path)
        self.assertEqual(ctx.exception.path, path)
        self.assertEqual(ctx.exception, FileNotFound(path))

    def test_not_an_archive(self):
        """Test random bytes are malformed."""
        with self.assertRaises(MalformedArchive):
            parse_bytes(b"\x00" * 64)

    def test_disallowed_class_in_record(self):
        """Test a disallowed class anywhere in a record aborts the parse."""
        builder = ArchiveBuilder()
        item = builder.item(
            identifier="2.com.example.app",
            uuid="1c2b3a49-5d6e-4f70-8a9b-0c1d2e3f4a5b",
            name=builder.instance("NSTask", {}),
        )
        data = builder.build({"store": builder.store({"scope": [item]})})

        with self.assertRaises(MalformedArchive) as ctx:
            parse_bytes(data)
        self.assertEqual(ctx.exception.reason, "unexpected class: NSTask")

    def test_deeply_nested_archive(self):
        """Test nesting deeper than the interpreter stack is reported as malformed."""
        builder = ArchiveBuilder()
        nested = builder.array([])
        for _ in range(3000):
            nested = builder.array([nested])
        store = builder.instance("Storage", {
            "itemsByUserIdentifier": builder.dictionary({builder.add("scope"): nested}),
        })
        data = builder.build({"store": store})

        with self.assertRaises(MalformedArchive) as ctx:
            parse_bytes(data)
        self.assertIn("could not be decoded", ctx.exception.reason)

    def test_low_level_errors_wrapped(self):
        """Test struct and index errors from decoding become MalformedArchive."""
        for error in (struct.error("unpack requires a buffer"), IndexError("index out of range")):
            with self.subTest(error=type(error).__name__):
                with patch("btm_parser.parser.load_store", side_effect=error):
                    with self.assertRaises(MalformedArchive):
                        parse_bytes(b"")

    def test_root_not_found(self):
        """Test an archive without a store."""
        builder = ArchiveBuilder()
        data = builder.build({"something": builder.add("else")})
        with self.assertRaises(MalformedArchive) as ctx:
            parse_bytes(data)
        self.assertEqual(ctx.exception.reason, "root Store object not found")


class TestRender(ParserTestCase):
    """Test rendering parse results."""

    def test_json_round_trip(self):
        """Test rendered JSON validates back into an equal result."""
        result = parse(self.btm_path)
        restored = ParsedResult.model_validate(json.loads(render_json(result)))

        self.assertEqual(restored.path, result.path)
        self.assertEqual(restored.items_by_user_identifier, result.items_by_user_identifier)

    def test_json_shape(self):
        """Test output keys use camelCase and omit absent fields."""
        data = json.loads(render_json(parse(self.btm_path)))

        self.assertEqual(set(data), {"path", "itemsByUserIdentifier"})
        launcher = data["itemsByUserIdentifier"][PRIMARY_USER][1]
        self.assertEqual(launcher["typeDetails"], "login item")
        self.assertEqual(launcher["associatedBundleIdentifiers"], ["com.1password.1password"])
        self.assertIn("executablePath", launcher)

        daemon = data["itemsByUserIdentifier"][PRIMARY_USER][2]
        self.assertNotIn("generation", daemon)
        self.assertNotIn("developerName", daemon)

    def test_table(self):
        """Test the table view lists scopes, items and diagnostics."""
        output = render_table(parse(self.btm_path, Config(resolve_executables=False)), width=220)

        self.assertIn(PRIMARY_USER, output)
        self.assertIn("1Password Launcher", output)
        self.assertIn("diagnostic", output)

    def test_schema_example_matches_decoded_login_item(self):
        """Test the documented example uses the relative URL form stored for login items."""
        example = ParsedItem.model_json_schema()["example"]
        item = ParsedItem.model_validate(example)

        self.assertTrue(item.url.startswith("/Contents/Library/LoginItems/"))
        self.assertTrue(item.executable_path.startswith("/Applications/1Password.app" + item.url.replace("%20", " ")))


if __name__ == "__main__":
    unittest.main()
