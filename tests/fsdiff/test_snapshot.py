# Copyright Red Hat
#
# tests/fsdiff/test_snapshot.py - Snapshot model tests
#
# This file is part of the snapdelta project.
#
# SPDX-License-Identifier: Apache-2.0
import unittest
from datetime import datetime, timedelta, timezone

from snapdelta import SnapdeltaDuplicatePathError, SnapdeltaParseError
from snapdelta.fsdiff.difftypes import FingerprintKind
from snapdelta.fsdiff.snapshot import (
    FileRecord,
    Fingerprint,
    Snapshot,
    format_timestamp,
    parse_timestamp,
    timestamp_from_ns,
)

from ._util import make_record

_DIGEST = "ab" * 32


class TestTimestamps(unittest.TestCase):
    def test_format_timestamp_utc(self):
        ts = datetime(2024, 5, 6, 7, 8, 9, 10, tzinfo=timezone.utc)
        self.assertEqual(format_timestamp(ts), "2024-05-06T07:08:09.000010Z")

    def test_format_timestamp_converts_to_utc(self):
        tz = timezone(timedelta(hours=2))
        ts = datetime(2024, 5, 6, 9, 8, 9, 0, tzinfo=tz)
        self.assertEqual(format_timestamp(ts), "2024-05-06T07:08:09.000000Z")

    def test_parse_timestamp(self):
        ts = parse_timestamp("2024-05-06T07:08:09.123456Z")
        self.assertEqual(ts, datetime(2024, 5, 6, 7, 8, 9, 123456, tzinfo=timezone.utc))
        self.assertEqual(format_timestamp(ts), "2024-05-06T07:08:09.123456Z")

    def test_parse_timestamp_bad(self):
        for text in ("", "2024-05-06", "2024-05-06T07:08:09Z", "yesterday"):
            with self.subTest(text=text):
                with self.assertRaises(SnapdeltaParseError):
                    parse_timestamp(text)

    def test_timestamp_from_ns(self):
        ts = timestamp_from_ns(1_600_000_000_123_456_789)
        self.assertEqual(ts.tzinfo, timezone.utc)
        self.assertEqual(ts.microsecond, 123456)
        self.assertEqual(format_timestamp(ts), "2020-09-13T12:26:40.123456Z")


class TestFingerprint(unittest.TestCase):
    def test_content(self):
        fp = Fingerprint.content(_DIGEST.upper())
        self.assertEqual(fp.kind, FingerprintKind.CONTENT)
        self.assertTrue(fp.is_content)
        self.assertEqual(str(fp), _DIGEST)

    def test_metadata(self):
        mtime = datetime(2024, 1, 1, tzinfo=timezone.utc)
        fp = Fingerprint.metadata(20971520, mtime)
        self.assertEqual(fp.kind, FingerprintKind.METADATA)
        self.assertFalse(fp.is_content)
        self.assertEqual(str(fp), "META:20971520:2024-01-01T00:00:00.000000Z")

    def test_metadata_distinct_for_different_mtime(self):
        mtime = datetime(2024, 1, 1, tzinfo=timezone.utc)
        fp1 = Fingerprint.metadata(100, mtime)
        fp2 = Fingerprint.metadata(100, mtime + timedelta(microseconds=1))
        self.assertNotEqual(fp1, fp2)

    def test_parse_content(self):
        self.assertEqual(Fingerprint.parse(_DIGEST), Fingerprint.content(_DIGEST))

    def test_parse_metadata(self):
        text = "META:5:2024-01-01T00:00:00.000000Z"
        fp = Fingerprint.parse(text)
        self.assertEqual(fp.kind, FingerprintKind.METADATA)
        self.assertEqual(str(fp), text)

    def test_parse_digest_lengths(self):
        for length in (32, 40, 64, 128):
            with self.subTest(length=length):
                fp = Fingerprint.parse("A" * length)
                self.assertEqual(fp.kind, FingerprintKind.CONTENT)
                self.assertEqual(str(fp), "a" * length)

    def test_parse_bad(self):
        for text in (
            "",
            "not-hex",
            "abc",
            "0xab",
            "+ab",
            "a_b",
            "0x" + "ab" * 31,
            "ab" * 31 + "_b",
            "ab" * 33,
            " " + "ab" * 32,
            "ab" * 32 + "g",
            "META:",
            "META:abc:2024-01-01T00:00:00.000000Z",
            "META:5:never",
            "META:5",
        ):
            with self.subTest(text=text):
                with self.assertRaises(SnapdeltaParseError):
                    Fingerprint.parse(text)


class TestFileRecord(unittest.TestCase):
    def test_to_dict(self):
        record = make_record("a/b.txt", content="hello")
        d = record.to_dict()
        self.assertEqual(d["path"], "a/b.txt")
        self.assertEqual(d["size"], 5)
        self.assertEqual(d["mtime"], "2024-01-02T03:04:05.123456Z")
        self.assertEqual(d["fingerprint_kind"], "content")
        self.assertEqual(d["fingerprint"], str(record.fingerprint))

    def test_str(self):
        record = make_record("x", content="")
        self.assertTrue(str(record).startswith("x size=0 mtime="))

    def test_frozen(self):
        record = make_record("x")
        with self.assertRaises(AttributeError):
            record.size = 10  # pylint: disable=assigning-non-slot


class TestSnapshot(unittest.TestCase):
    def test_empty(self):
        snap = Snapshot()
        self.assertEqual(len(snap), 0)
        self.assertFalse(snap)
        self.assertEqual(snap.records(), [])

    def test_sorted_whatever_input_order(self):
        records = [make_record(p, content=p) for p in ("c", "a/z", "b", "a")]
        snap = Snapshot(records)
        self.assertEqual(list(snap), ["a", "a/z", "b", "c"])
        self.assertEqual([r.rel_path for r in snap.records()], ["a", "a/z", "b", "c"])

    def test_mapping(self):
        record = make_record("dir/file", content="data")
        snap = Snapshot([record])
        self.assertIn("dir/file", snap)
        self.assertIs(snap["dir/file"], record)
        self.assertIsNone(snap.get("missing"))
        with self.assertRaises(KeyError):
            snap["missing"]  # pylint: disable=pointless-statement

    def test_duplicate_path_raises(self):
        with self.assertRaises(SnapdeltaDuplicatePathError):
            Snapshot([make_record("a", content="1"), make_record("a", content="2")])

    def test_equality(self):
        r1 = make_record("a", content="1")
        r2 = make_record("b", content="2")
        self.assertEqual(Snapshot([r1, r2]), Snapshot([r2, r1]))

    def test_record_type(self):
        snap = Snapshot([make_record("a")])
        self.assertIsInstance(snap["a"], FileRecord)
