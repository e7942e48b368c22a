"""
DBF file header: the 32-byte prologue and the field descriptor table.

Layout of the prologue:

    0       version byte
    1-3     date of last update (YY, MM, DD; YY is years since 1900)
    4-7     record count (uint32, little endian)
    8-9     header length (uint16, little endian)
    10-11   record length (uint16, little endian)
    28      table flags
    29      language driver id

The prologue is followed by one 32-byte descriptor per field and a 0x0D
terminator byte. Rows start at the header length.
"""

import datetime
import logging
import struct
from dataclasses import dataclass, field as dataclass_field, replace
from typing import BinaryIO, List, Optional

from dbf_errors import (
    MalformedHeaderError, UnsupportedOperationError, UnsupportedVersionError, ValidationError
)
from dbf_fields import (
    DBF_CREATABLE_VERSIONS, DBF_READABLE_VERSIONS, FieldDescriptor,
    has_memo_field, validate_field_descriptor, validate_field_descriptors
)


logger = logging.getLogger(__name__)

DBF_HEADER_PROLOGUE_SIZE = 32
DBF_FIELD_DESCRIPTOR_SIZE = 32
DBF_FIELD_TERMINATOR = 0x0D
DBF_EOF_MARKER = 0x1A

READ_MODE_STRICT = 'strict'
READ_MODE_LOOSE = 'loose'


@dataclass
class HeaderInfo:
    """Represents the header of a DBF file."""
    version: int = 0  # dBase version, e.g., 0x03 for dBase III
    record_count: int = 0  # Number of records, deleted ones included
    date_of_last_update: Optional[datetime.date] = None
    header_length: int = 0  # Header size in bytes
    record_length: int = 0  # Record size in bytes, delete flag included
    fields: List[FieldDescriptor] = dataclass_field(default_factory=list)
    table_flags: int = 0  # dBase IV table flags
    language_driver: int = 0  # dBase IV language driver id


def calculate_header_length(fields: List[FieldDescriptor]) -> int:
    """Prologue, one descriptor per field and the terminator byte."""
    return DBF_HEADER_PROLOGUE_SIZE + len(fields) * DBF_FIELD_DESCRIPTOR_SIZE + 1


def calculate_record_length(fields: List[FieldDescriptor]) -> int:
    """Delete flag plus the width of every field."""
    return 1 + sum(field.size for field in fields)


def _parse_update_date(buf: bytes) -> Optional[datetime.date]:
    try:
        return datetime.date(1900 + buf[1], buf[2], buf[3])
    except ValueError:
        return None


def _parse_field_entry(entry: bytes, encoding: str) -> FieldDescriptor:
    name = entry[0:11].split(b'\x00')[0].decode(encoding, errors='replace')
    return FieldDescriptor(
        name=name,
        field_type=chr(entry[11]),
        size=entry[16],
        decimal_places=entry[17],
    )


def _check_fields(fields: List[FieldDescriptor], version: int, read_mode: str) -> List[FieldDescriptor]:
    """Apply descriptor validation; in loose mode keep failing fields, flagged."""
    checked = []
    seen = set()
    for field in fields:
        try:
            validate_field_descriptor(field, version)
            if field.name in seen:
                raise ValidationError(f"Duplicate field name '{field.name}'", field.name)
        except ValidationError as err:
            if read_mode != READ_MODE_LOOSE:
                raise
            logger.warning("Ignoring invalid field descriptor: %s", err)
            field = replace(field, validation_error=err.message)
        seen.add(field.name)
        checked.append(field)
    return checked


def parse_header(buffer: bytes, read_mode: str = READ_MODE_STRICT,
                 encoding: str = 'latin-1', path: Optional[str] = None) -> HeaderInfo:
    """
    Parse a DBF header.

    Args:
        buffer: The header bytes (at least the header length declared in the prologue)
        read_mode: 'strict' raises on invalid field descriptors, 'loose' keeps them
            flagged through FieldDescriptor.validation_error
        encoding: Encoding of the field names
        path: File path, used in error messages only

    Returns:
        The parsed header
    """
    if len(buffer) < DBF_HEADER_PROLOGUE_SIZE:
        raise MalformedHeaderError(f"Header is too short ({len(buffer)} bytes)")

    header = HeaderInfo()
    header.version = buffer[0]
    if header.version not in DBF_READABLE_VERSIONS:
        where = f"File '{path}'" if path else "File"
        raise UnsupportedVersionError(
            f"{where} has unknown/unsupported dBase version: {header.version}.", header.version)

    header.date_of_last_update = _parse_update_date(buffer)
    header.record_count = struct.unpack("<L", buffer[4:8])[0]
    header.header_length = struct.unpack("<H", buffer[8:10])[0]
    header.record_length = struct.unpack("<H", buffer[10:12])[0]
    header.table_flags = buffer[28]
    header.language_driver = buffer[29]

    # Read field descriptors until 0x0D (field descriptor terminator)
    fields = []
    terminated = False
    pos = DBF_HEADER_PROLOGUE_SIZE
    while pos < header.header_length and pos < len(buffer):
        if buffer[pos] == DBF_FIELD_TERMINATOR:
            terminated = True
            break
        entry = buffer[pos:pos + DBF_FIELD_DESCRIPTOR_SIZE]
        if len(entry) < DBF_FIELD_DESCRIPTOR_SIZE:
            break
        fields.append(_parse_field_entry(entry, encoding))
        pos += DBF_FIELD_DESCRIPTOR_SIZE

    if not terminated:
        raise MalformedHeaderError("Field descriptor table has no 0x0D terminator")

    header.fields = _check_fields(fields, header.version, read_mode)

    expected = calculate_record_length(header.fields)
    if header.record_length != expected:
        raise MalformedHeaderError(
            f"Invalid record length {header.record_length} (fields add up to {expected})")

    return header


def read_header(file: BinaryIO, read_mode: str = READ_MODE_STRICT,
                encoding: str = 'latin-1', path: Optional[str] = None) -> HeaderInfo:
    """Read and parse the header from an open DBF file."""
    file.seek(0)
    prologue = file.read(DBF_HEADER_PROLOGUE_SIZE)
    if len(prologue) < DBF_HEADER_PROLOGUE_SIZE:
        raise MalformedHeaderError(f"Header is too short ({len(prologue)} bytes)")
    header_length = struct.unpack("<H", prologue[8:10])[0]
    rest = file.read(max(header_length - DBF_HEADER_PROLOGUE_SIZE, 0))
    return parse_header(prologue + rest, read_mode, encoding, path)


def serialize_header(fields: List[FieldDescriptor], version: int,
                     encoding: str = 'latin-1',
                     today: Optional[datetime.date] = None) -> bytes:
    """
    Compose the header of a new, empty DBF file.

    The result ends with the field terminator and an end-of-file marker; the
    end-of-file marker is not counted in the header length.

    Args:
        fields: The field descriptors
        version: File version byte
        encoding: Encoding of the field names
        today: Date of last update (defaults to the current date)

    Returns:
        The header bytes
    """
    if version not in DBF_CREATABLE_VERSIONS:
        raise UnsupportedVersionError(f"Invalid file version {version}", version)
    if has_memo_field(fields):
        raise UnsupportedOperationError('Writing to files with memo fields is not supported.')
    validate_field_descriptors(fields, version)

    if today is None:
        today = datetime.date.today()

    header_length = calculate_header_length(fields)
    record_length = calculate_record_length(fields)

    buf = bytearray(DBF_HEADER_PROLOGUE_SIZE)
    buf[0] = version
    buf[1:4] = _date_bytes(today)
    buf[4:8] = struct.pack("<L", 0)
    buf[8:10] = struct.pack("<H", header_length)
    buf[10:12] = struct.pack("<H", record_length)

    for field in fields:
        entry = bytearray(DBF_FIELD_DESCRIPTOR_SIZE)
        try:
            name_bytes = field.name.encode(encoding)
        except UnicodeEncodeError:
            raise ValidationError(f"Field name cannot be encoded as '{encoding}'", field.name) from None
        if len(name_bytes) > 10:
            raise ValidationError('Field name is too long (maximum is 10 bytes)', field.name)
        entry[:len(name_bytes)] = name_bytes
        entry[11] = ord(field.field_type)
        entry[16] = field.size
        entry[17] = field.decimal_places or 0
        buf += entry

    buf.append(DBF_FIELD_TERMINATOR)
    buf.append(DBF_EOF_MARKER)
    return bytes(buf)


def _date_bytes(d: datetime.date) -> bytes:
    return bytes([d.year - 1900, d.month, d.day])


def update_record_count(file: BinaryIO, record_count: int, date: datetime.date) -> None:
    """
    Rewrite the record count and the date of last update in place.

    Args:
        file: The DBF file, opened for writing
        record_count: New record count
        date: New date of last update
    """
    file.seek(1)
    file.write(_date_bytes(date))
    file.seek(4)
    file.write(struct.pack("<L", record_count))
    file.flush()


__all__ = [
    'HeaderInfo',
    'DBF_HEADER_PROLOGUE_SIZE', 'DBF_FIELD_DESCRIPTOR_SIZE',
    'DBF_FIELD_TERMINATOR', 'DBF_EOF_MARKER',
    'READ_MODE_STRICT', 'READ_MODE_LOOSE',
    'calculate_header_length', 'calculate_record_length',
    'parse_header', 'read_header', 'serialize_header', 'update_record_count',
]
