"""
Test file for validating the binary format of DBF headers.
This ensures the header codec follows the dBase file format byte for byte.
"""

import datetime
import io
import struct
import unittest
from dbf_errors import (
    MalformedHeaderError, UnsupportedOperationError, UnsupportedVersionError, ValidationError
)
from dbf_fields import FieldDescriptor
from dbf_header import (
    HeaderInfo, calculate_header_length, calculate_record_length,
    parse_header, read_header, serialize_header, update_record_count
)
from dbf_fixtures import build_header


FIELDS = [
    FieldDescriptor(name="ID", field_type="N", size=5, decimal_places=0),
    FieldDescriptor(name="NAME", field_type="C", size=30),
    FieldDescriptor(name="SALARY", field_type="N", size=10, decimal_places=2),
    FieldDescriptor(name="ACTIVE", field_type="L", size=1),
]


class TestSerializeHeader(unittest.TestCase):
    """Test cases for composing headers of new files."""

    def test_prologue(self):
        """Test the 32-byte prologue."""
        today = datetime.date(2026, 1, 20)
        data = serialize_header(FIELDS, 0x03, today=today)

        self.assertEqual(data[0], 0x03)
        self.assertEqual(tuple(data[1:4]), (126, 1, 20))
        self.assertEqual(struct.unpack("<L", data[4:8])[0], 0)
        self.assertEqual(struct.unpack("<H", data[8:10])[0], 32 + 4 * 32 + 1)
        self.assertEqual(struct.unpack("<H", data[10:12])[0], 1 + 5 + 30 + 10 + 1)
        self.assertEqual(data[12:32], b'\x00' * 20)

    def test_field_descriptors(self):
        """Test the 32-byte field descriptor entries."""
        data = serialize_header(FIELDS, 0x03)
        entry = data[32 + 2 * 32:32 + 3 * 32]

        self.assertEqual(entry[0:11], b'SALARY' + b'\x00' * 5)
        self.assertEqual(entry[11], ord('N'))
        self.assertEqual(entry[12:16], b'\x00' * 4)
        self.assertEqual(entry[16], 10)
        self.assertEqual(entry[17], 2)
        self.assertEqual(entry[18:32], b'\x00' * 14)

    def test_terminators(self):
        """The table ends with 0x0D, followed by the 0x1A end-of-file marker."""
        data = serialize_header(FIELDS, 0x03)
        header_length = struct.unpack("<H", data[8:10])[0]
        self.assertEqual(len(data), header_length + 1)
        self.assertEqual(data[header_length - 1], 0x0D)
        self.assertEqual(data[header_length], 0x1A)

    def test_unsupported_version(self):
        with self.assertRaises(UnsupportedVersionError) as ctx:
            serialize_header(FIELDS, 0x31)
        self.assertEqual(str(ctx.exception), "Invalid file version 49")

        with self.assertRaises(UnsupportedVersionError):
            serialize_header(FIELDS, 0x04)

    def test_memo_fields_rejected(self):
        fields = FIELDS + [FieldDescriptor(name="NOTES", field_type="M", size=10)]
        with self.assertRaises(UnsupportedOperationError) as ctx:
            serialize_header(fields, 0x83)
        self.assertEqual(str(ctx.exception), "Writing to files with memo fields is not supported.")

    def test_invalid_field_rejected(self):
        fields = [FieldDescriptor(name="FLAG", field_type="L", size=2)]
        with self.assertRaises(ValidationError) as ctx:
            serialize_header(fields, 0x03)
        self.assertEqual(ctx.exception.field_name, "FLAG")


class TestParseHeader(unittest.TestCase):
    """Test cases for parsing headers of existing files."""

    def test_round_trip(self):
        """Parsing a composed header gives back the fields and layout."""
        today = datetime.date(2024, 2, 29)
        header = parse_header(serialize_header(FIELDS, 0x8B, today=today))

        self.assertEqual(header.version, 0x8B)
        self.assertEqual(header.record_count, 0)
        self.assertEqual(header.date_of_last_update, today)
        self.assertEqual(header.header_length, calculate_header_length(FIELDS))
        self.assertEqual(header.record_length, calculate_record_length(FIELDS))
        self.assertEqual([(f.name, f.field_type, f.size, f.decimal_places or 0) for f in header.fields],
                         [(f.name, f.field_type, f.size, f.decimal_places or 0) for f in FIELDS])

    def test_layout_invariants(self):
        self.assertEqual(calculate_header_length(FIELDS), 32 + 32 * len(FIELDS) + 1)
        self.assertEqual(calculate_record_length(FIELDS), 1 + sum(f.size for f in FIELDS))
        self.assertEqual(calculate_header_length([]), 33)
        self.assertEqual(calculate_record_length([]), 1)

    def test_prologue_fields(self):
        data = bytearray(build_header(0x03, [('ID', 'N', 5, 0)], 15))
        data[28] = 0x01
        data[29] = 0x57
        header = parse_header(bytes(data))

        self.assertEqual(header.record_count, 15)
        self.assertEqual(header.date_of_last_update, datetime.date(1999, 3, 25))
        self.assertEqual(header.table_flags, 0x01)
        self.assertEqual(header.language_driver, 0x57)

    def test_vfp_backlink(self):
        """Visual FoxPro headers carry 263 bytes after the terminator."""
        data = build_header(0x30, [('NAME', 'C', 10, 0), ('NOTES', 'M', 4, 0)], 0, backlink=263)
        header = parse_header(data)
        self.assertEqual(header.header_length, 32 + 64 + 1 + 263)
        self.assertEqual([f.name for f in header.fields], ['NAME', 'NOTES'])

    def test_invalid_date_is_none(self):
        data = build_header(0x03, [('ID', 'N', 5, 0)], 0, date=(0, 0, 0))
        self.assertIsNone(parse_header(data).date_of_last_update)

    def test_unknown_version(self):
        data = bytearray(build_header(0x03, [('ID', 'N', 5, 0)], 0))
        data[0] = 0x04
        with self.assertRaises(UnsupportedVersionError) as ctx:
            parse_header(bytes(data), path='OLD.DBF')
        self.assertEqual(str(ctx.exception), "File 'OLD.DBF' has unknown/unsupported dBase version: 4.")
        self.assertEqual(ctx.exception.version, 4)

    def test_missing_terminator(self):
        data = build_header(0x03, [('ID', 'N', 5, 0)], 0)
        with self.assertRaises(MalformedHeaderError):
            parse_header(data[:-1])

    def test_truncated_prologue(self):
        with self.assertRaises(MalformedHeaderError):
            parse_header(b'\x03\x00\x00')

    def test_record_length_mismatch(self):
        data = bytearray(build_header(0x03, [('ID', 'N', 5, 0)], 0))
        data[10:12] = struct.pack("<H", 99)
        with self.assertRaises(MalformedHeaderError):
            parse_header(bytes(data))

    def test_strict_mode_rejects_invalid_field(self):
        data = build_header(0x03, [('NAME', 'C', 5, 0), ('PRICE', 'Y', 8, 4)], 0)
        with self.assertRaises(ValidationError) as ctx:
            parse_header(data)
        self.assertEqual(str(ctx.exception), "PRICE: Type 'Y' is not supported")

    def test_loose_mode_flags_invalid_field(self):
        """Loose reads keep the offending field, flagged, so offsets stay right."""
        data = build_header(0x03, [('NAME', 'C', 5, 0), ('PRICE', 'Y', 8, 4), ('QTY', 'N', 3, 0)], 0)
        with self.assertLogs('dbf_header', level='WARNING'):
            header = parse_header(data, read_mode='loose')

        self.assertEqual([f.name for f in header.fields], ['NAME', 'PRICE', 'QTY'])
        self.assertTrue(header.fields[0].is_valid)
        self.assertFalse(header.fields[1].is_valid)
        self.assertEqual(header.fields[1].validation_error, "Type 'Y' is not supported")
        self.assertTrue(header.fields[2].is_valid)

    def test_strict_mode_rejects_duplicate_names(self):
        data = build_header(0x03, [('ID', 'N', 5, 0), ('ID', 'N', 5, 0)], 0)
        with self.assertRaises(ValidationError):
            parse_header(data)

    def test_read_header_from_file(self):
        data = serialize_header(FIELDS, 0x03) + b'rest of file'
        header = read_header(io.BytesIO(data))
        self.assertEqual(len(header.fields), len(FIELDS))


class TestUpdateRecordCount(unittest.TestCase):
    """Test cases for rewriting the record count in place."""

    def test_only_count_and_date_change(self):
        original = serialize_header(FIELDS, 0x03, today=datetime.date(2020, 1, 1))
        f = io.BytesIO(original)
        update_record_count(f, 1234, datetime.date(2026, 10, 19))
        updated = f.getvalue()

        self.assertEqual(len(updated), len(original))
        self.assertEqual(tuple(updated[1:4]), (126, 10, 19))
        self.assertEqual(struct.unpack("<L", updated[4:8])[0], 1234)
        self.assertEqual(updated[0], original[0])
        self.assertEqual(updated[8:], original[8:])

    def test_header_info_defaults(self):
        header = HeaderInfo()
        self.assertEqual(header.fields, [])
        self.assertIsNone(header.date_of_last_update)


if __name__ == "__main__":
    unittest.main()
