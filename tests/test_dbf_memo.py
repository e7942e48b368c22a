"""
Test file for DBF memo field functionality.
This tests reading text data from .DBT and .FPT memo files.
"""

import os
import shutil
import struct
import tempfile
import unittest
from dbf_errors import DBFError, MemoFileMissingError, ValidationError
from dbf_memo import DBFMemoReader, find_memo_file, memo_extensions
from dbf_fixtures import make_dbase3_memo, make_dbase4_memo, make_vfp_memo


class TestDBFMemo(unittest.TestCase):
    """Test cases for DBF memo functionality."""

    def setUp(self):
        """Set up test environment."""
        self.temp_dir = tempfile.mkdtemp()
        self.readers = []

    def tearDown(self):
        """Clean up test files."""
        for reader in self.readers:
            reader.close()
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def path(self, name):
        return os.path.join(self.temp_dir, name)

    def reader(self, memo_path, version, dbf_path=None):
        reader = DBFMemoReader(memo_path, version, dbf_path)
        self.readers.append(reader)
        return reader

    def test_dbase3_memo(self):
        """dBase III memos run until the 0x1A terminator."""
        make_dbase3_memo(self.path("NOTES.DBF"), self.path("NOTES.DBT"))
        reader = self.reader(self.path("NOTES.DBT"), 0x83)

        self.assertEqual(reader.resolve(1, 'latin-1'), 'First memo')
        self.assertEqual(reader.resolve(2, 'latin-1'), 'Second memo')
        self.assertEqual(reader.block_size, 512)

    def test_dbase3_memo_spanning_blocks(self):
        text = b'x' * 700
        make_dbase3_memo(self.path("LONG.DBF"), None)
        with open(self.path("LONG.DBT"), "wb") as f:
            f.write(b'\x00' * 512 + text + b'\x1A\x1A')

        reader = self.reader(self.path("LONG.DBT"), 0x83)
        self.assertEqual(reader.read_block(1), text)

    def test_dbase3_memo_without_terminator(self):
        with open(self.path("OPEN.DBT"), "wb") as f:
            f.write(b'\x00' * 512 + b'unterminated')
        reader = self.reader(self.path("OPEN.DBT"), 0x83)
        self.assertEqual(reader.read_block(1), b'unterminated')

    def test_dbase4_memo(self):
        """dBase IV memos carry a signature and a length that includes it."""
        make_dbase4_memo(self.path("NOTES4.DBF"), self.path("NOTES4.DBT"))
        reader = self.reader(self.path("NOTES4.DBT"), 0x8B)
        self.assertEqual(reader.resolve(1, 'latin-1'), 'dBase IV memo')

    def test_dbase4_block_size_from_header(self):
        memo = bytearray(1024)
        memo[20:22] = struct.pack("<H", 1024)
        memo += b'\xFF\xFF\x08\x00' + struct.pack("<L", 8 + 5) + b'hello'
        with open(self.path("BIG.DBT"), "wb") as f:
            f.write(bytes(memo))

        reader = self.reader(self.path("BIG.DBT"), 0x8B)
        self.assertEqual(reader.resolve(1, 'latin-1'), 'hello')
        self.assertEqual(reader.block_size, 1024)

    def test_vfp_memo(self):
        """Visual FoxPro memos carry a big-endian type and length."""
        make_vfp_memo(self.path("VFP.DBF"), self.path("VFP.FPT"))
        reader = self.reader(self.path("VFP.FPT"), 0x30)

        self.assertEqual(reader.resolve(8, 'latin-1'), 'VFP memo text')
        self.assertEqual(reader.block_size, 64)

    def test_vfp_memo_encoding(self):
        text = 'ภาษาไทย'
        make_vfp_memo(self.path("THAI.DBF"), self.path("THAI.FPT"), text.encode('tis_620'))
        reader = self.reader(self.path("THAI.FPT"), 0x30)
        self.assertEqual(reader.resolve(8, 'tis_620'), text)

    def test_vfp_block_past_end(self):
        make_vfp_memo(self.path("VFP.DBF"), self.path("VFP.FPT"))
        reader = self.reader(self.path("VFP.FPT"), 0x30)
        with self.assertRaises(DBFError):
            reader.read_block(1000)

    def test_dbase3_block_past_end(self):
        make_dbase3_memo(self.path("NOTES.DBF"), self.path("NOTES.DBT"))
        reader = self.reader(self.path("NOTES.DBT"), 0x83)
        with self.assertRaises(DBFError):
            reader.read_block(50)

    def test_dbase4_block_past_end(self):
        make_dbase4_memo(self.path("NOTES4.DBF"), self.path("NOTES4.DBT"))
        reader = self.reader(self.path("NOTES4.DBT"), 0x8B)
        with self.assertRaises(DBFError):
            reader.read_block(50)

    def test_undecodable_memo(self):
        make_vfp_memo(self.path("BAD.DBF"), self.path("BAD.FPT"), b'caf\xe9')
        reader = self.reader(self.path("BAD.FPT"), 0x30)
        with self.assertRaises(ValidationError) as ctx:
            reader.resolve(8, 'utf-8', 'NOTES')
        self.assertEqual(ctx.exception.field_name, 'NOTES')
        self.assertEqual(reader.resolve(8, 'latin-1'), 'café')

    def test_missing_memo_file(self):
        reader = self.reader(None, 0x83, "NOTES.DBF")
        with self.assertRaises(MemoFileMissingError) as ctx:
            reader.resolve(1, 'latin-1')
        self.assertEqual(str(ctx.exception), "Memo file not found for file 'NOTES.DBF'.")

        reader = self.reader(self.path("GONE.DBT"), 0x83, "NOTES.DBF")
        with self.assertRaises(MemoFileMissingError):
            reader.resolve(1, 'latin-1')

    def test_opens_lazily_and_closes(self):
        make_dbase3_memo(self.path("NOTES.DBF"), self.path("NOTES.DBT"))
        reader = self.reader(self.path("NOTES.DBT"), 0x83)
        self.assertIsNone(reader.file)

        reader.resolve(1, 'latin-1')
        self.assertIsNotNone(reader.file)

        reader.close()
        self.assertIsNone(reader.file)
        reader.close()


class TestFindMemoFile(unittest.TestCase):
    """Test cases for locating the memo side-file."""

    def setUp(self):
        self.temp_dir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.temp_dir, ignore_errors=True)

    def test_extensions(self):
        self.assertEqual(memo_extensions(0x30), ('.fpt', '.FPT'))
        self.assertEqual(memo_extensions(0x31), ('.fpt', '.FPT'))
        self.assertEqual(memo_extensions(0x83), ('.dbt', '.DBT'))

    def test_find(self):
        dbf_path = os.path.join(self.temp_dir, "NOTES.DBF")
        self.assertIsNone(find_memo_file(dbf_path, 0x83))

        dbt_path = os.path.join(self.temp_dir, "NOTES.DBT")
        with open(dbt_path, "wb") as f:
            f.write(b'\x00' * 512)
        self.assertEqual(find_memo_file(dbf_path, 0x83), dbt_path)
        self.assertIsNone(find_memo_file(dbf_path, 0x30))


if __name__ == "__main__":
    unittest.main()
