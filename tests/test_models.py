import sys
import unittest
from pathlib import Path

REPO_ROOT = Path(__file__).resolve().parents[1]
SRC_ROOT = REPO_ROOT / "src"
if str(SRC_ROOT) not in sys.path:
    sys.path.insert(0, str(SRC_ROOT))

from gmm.models import (FALLBACK_NAME, MAX_NAME_LENGTH, DeviceIdentity,
                        DeviceRecord, sanitize_name)


class SanitizeNameTests(unittest.TestCase):
    def test_whitespace_becomes_dash(self):
        self.assertEqual(sanitize_name("Pixel 7  Pro"), "Pixel-7-Pro")

    def test_plain_name_unchanged(self):
        self.assertEqual(sanitize_name("MyPhone"), "MyPhone")

    def test_unsafe_characters_replaced(self):
        self.assertEqual(sanitize_name("Bob's/Phone"), "Bob_s_Phone")
        self.assertEqual(sanitize_name("Ünïcode"), "_n_code")

    def test_traversal_and_flags_neutralised(self):
        self.assertEqual(sanitize_name("../etc"), "_etc")
        self.assertEqual(sanitize_name("-rf"), "rf")
        self.assertEqual(sanitize_name(".hidden"), "hidden")

    def test_degenerate_inputs_fall_back(self):
        for raw in (None, "", "   ", ".", "..", "---", "///", "_"):
            with self.subTest(raw=raw):
                self.assertEqual(sanitize_name(raw), FALLBACK_NAME)

    def test_long_names_truncated_with_digest(self):
        a = sanitize_name("a" * 100)
        b = sanitize_name("a" * 101)
        self.assertEqual(len(a), MAX_NAME_LENGTH)
        self.assertTrue(a.startswith("a" * 55 + "-"))
        self.assertNotEqual(a, b)
        self.assertEqual(a, sanitize_name("a" * 100))

    def test_result_always_safe(self):
        for raw in ("My Phone!", "\t\n", "a b c", "..-x", "日本語", "x" * 300):
            with self.subTest(raw=raw):
                name = sanitize_name(raw)
                self.assertTrue(name)
                self.assertLessEqual(len(name), MAX_NAME_LENGTH)
                self.assertNotIn(name[0], ".-")
                self.assertRegex(name, r"^[A-Za-z0-9._-]+$")


class DeviceRecordTests(unittest.TestCase):
    def test_identity_compared_by_sanitized_name(self):
        a = DeviceIdentity.create("My Phone", "10.0.0.5", 1739)
        b = DeviceIdentity.create("My Phone", "10.0.0.9", 1740)
        c = DeviceIdentity.create("Other", "10.0.0.5", 1739)
        self.assertTrue(a.same_device(b))
        self.assertFalse(a.same_device(c))
        self.assertFalse(a.same_device(None))

    def test_dict_round_trip_keeps_links(self):
        identity = DeviceIdentity.create("My Phone", "10.0.0.5", 1739)
        record = DeviceRecord.from_identity(identity, "/run/x", [Path("/b/My-Phone/Internal")])
        again = DeviceRecord.from_dict(record.to_dict())
        self.assertEqual(again, record)
        self.assertEqual(again.identity(), identity)

    def test_from_dict_rejects_garbage(self):
        with self.assertRaises(ValueError):
            DeviceRecord.from_dict(["not", "a", "dict"])
        with self.assertRaises(ValueError):
            DeviceRecord.from_dict({"host": "10.0.0.5"})

    def test_from_dict_tolerates_bad_port_and_links(self):
        record = DeviceRecord.from_dict({"display_name": "X", "port": "nope", "links": "oops"})
        self.assertIsNone(record.port)
        self.assertEqual(record.links, ())
        self.assertEqual(record.sanitized_name, "X")


if __name__ == "__main__":
    unittest.main()
