"""
Reading memo values from the memo side-file (.DBT / .FPT).

Memo formats by DBF version:
- dBase III (0x03, 0x83): 512-byte blocks, text terminated by 0x1A
- dBase IV (0x8B): block size in the memo header (bytes 20-21, little endian);
  each value starts with FF FF 08 00 and a uint32 length that includes the
  8-byte prefix
- Visual FoxPro (0x30, 0x31): block size in the memo header (bytes 6-7, big
  endian); each value starts with a uint32 type and a uint32 length, both big
  endian
"""

import logging
import os
import struct
from typing import BinaryIO, Optional

from dbf_errors import DBFError, MemoFileMissingError, ValidationError
from dbf_fields import DBF_VERSION_DBASE4_MEMO, is_vfp_version


logger = logging.getLogger(__name__)

DBF_MEMO_BLOCK_SIZE = 512
VFP_MEMO_BLOCK_SIZE = 64
DBASE4_MEMO_SIGNATURE = b'\xFF\xFF\x08\x00'
MEMO_TEXT_TERMINATOR = b'\x1A'


def memo_extensions(version: int):
    """Memo file extensions to try for a DBF version."""
    if is_vfp_version(version):
        return ('.fpt', '.FPT')
    return ('.dbt', '.DBT')


def find_memo_file(dbf_path: str, version: int) -> Optional[str]:
    """
    Find the memo file belonging to a DBF file.

    Args:
        dbf_path: Path to the DBF file
        version: DBF version byte

    Returns:
        Path of the memo file, or None if there is none
    """
    base = os.path.splitext(dbf_path)[0]
    for ext in memo_extensions(version):
        candidate = base + ext
        if os.path.exists(candidate):
            return candidate
    return None


class DBFMemoReader:
    """Resolves memo block references against a memo file."""

    def __init__(self, memo_path: Optional[str], version: int, dbf_path: Optional[str] = None):
        self.memo_path = memo_path
        self.version = version
        self.dbf_path = dbf_path
        self.file: Optional[BinaryIO] = None
        self.block_size = DBF_MEMO_BLOCK_SIZE

    def _open(self) -> BinaryIO:
        if self.file is not None:
            return self.file
        if self.memo_path is None:
            raise MemoFileMissingError(f"Memo file not found for file '{self.dbf_path}'.")
        try:
            self.file = open(self.memo_path, "rb")
        except FileNotFoundError:
            raise MemoFileMissingError(
                f"Memo file not found for file '{self.dbf_path}'.", self.memo_path) from None

        header = self.file.read(DBF_MEMO_BLOCK_SIZE)
        if is_vfp_version(self.version):
            block_size = struct.unpack(">H", header[6:8])[0] if len(header) >= 8 else 0
            self.block_size = block_size or VFP_MEMO_BLOCK_SIZE
        elif self.version == DBF_VERSION_DBASE4_MEMO:
            block_size = struct.unpack("<H", header[20:22])[0] if len(header) >= 22 else 0
            self.block_size = block_size or DBF_MEMO_BLOCK_SIZE
        logger.debug("Opened memo file %s (block size %d)", self.memo_path, self.block_size)
        return self.file

    def _read_at(self, offset: int, size: int) -> bytes:
        self.file.seek(offset)
        return self.file.read(size)

    def _read_until_terminator(self, offset: int, block_index: int) -> bytes:
        data = bytearray()
        while True:
            chunk = self._read_at(offset, self.block_size)
            if not chunk and not data:
                raise DBFError(f"Memo block {block_index} is past the end of '{self.memo_path}'")
            eot = chunk.find(MEMO_TEXT_TERMINATOR)
            if eot >= 0:
                data += chunk[:eot]
                return bytes(data)
            data += chunk
            if len(chunk) < self.block_size:
                return bytes(data)
            offset += len(chunk)

    def _read_sized(self, offset: int, block_index: int, length_format: str) -> bytes:
        prefix = self._read_at(offset, 8)
        if len(prefix) < 8:
            raise DBFError(f"Memo block {block_index} is past the end of '{self.memo_path}'")
        length = struct.unpack(length_format, prefix[4:8])[0]
        return self._read_at(offset + 8, length)

    def read_block(self, block_index: int) -> bytes:
        """Read the raw bytes of the memo value starting at a block."""
        self._open()
        offset = block_index * self.block_size

        if is_vfp_version(self.version):
            return self._read_sized(offset, block_index, ">L")

        if self.version == DBF_VERSION_DBASE4_MEMO:
            prefix = self._read_at(offset, 8)
            if prefix[:4] == DBASE4_MEMO_SIGNATURE:
                length = struct.unpack("<L", prefix[4:8])[0]
                return self._read_at(offset + 8, max(length - 8, 0))

        return self._read_until_terminator(offset, block_index)

    def resolve(self, block_index: int, encoding: str, field_name: Optional[str] = None) -> str:
        """
        Read a memo value.

        Args:
            block_index: Block number where the memo starts
            encoding: Text encoding of the memo
            field_name: Memo field being resolved, named in decoding errors

        Returns:
            The memo text
        """
        try:
            return self.read_block(block_index).decode(encoding)
        except UnicodeDecodeError:
            raise ValidationError(
                f"memo block {block_index} is not valid '{encoding}'", field_name) from None

    def close(self) -> None:
        """Close the memo file if it was opened."""
        if self.file is not None:
            self.file.close()
            self.file = None


__all__ = [
    'DBFMemoReader', 'find_memo_file', 'memo_extensions',
    'DBF_MEMO_BLOCK_SIZE', 'VFP_MEMO_BLOCK_SIZE', 'DBASE4_MEMO_SIGNATURE',
]
