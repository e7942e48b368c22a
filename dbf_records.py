"""
Row encoding and decoding.

A row is one delete-flag byte (0x2A deleted, 0x20 active) followed by every
field slot in descriptor order. Decoded rows come back as ActiveRow or
DeletedRow so callers can tell tombstones apart without probing the record.
"""

from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Union

from dbf_errors import MemoFileMissingError, ValidationError
from dbf_fields import FieldDescriptor
from dbf_memo import DBFMemoReader
from dbf_types import MemoReference, TypeCodec, get_type_codec


DBF_DEFAULT_ENCODING = 'latin-1'
DBF_ROW_ACTIVE = 0x20
DBF_ROW_DELETED = 0x2A

Encoding = Union[str, Mapping[str, str]]


@dataclass
class Row:
    """A decoded record together with its delete flag."""
    record: Dict[str, Any]
    deleted: ClassVar[bool] = False

    def __getitem__(self, name: str) -> Any:
        return self.record[name]

    def __contains__(self, name: str) -> bool:
        return name in self.record

    def get(self, name: str, default: Any = None) -> Any:
        return self.record.get(name, default)


@dataclass
class ActiveRow(Row):
    """A row whose delete flag is not set."""


@dataclass
class DeletedRow(Row):
    """A row marked as deleted (tombstone)."""
    deleted: ClassVar[bool] = True


def resolve_field_encoding(encoding: Encoding, field_name: str) -> str:
    """
    Pick the text encoding for one field.

    Args:
        encoding: A codec name, or a mapping of field name to codec name where
            the 'default' key supplies the fallback
        field_name: The field to pick an encoding for

    Returns:
        Codec name
    """
    if isinstance(encoding, str):
        return encoding
    return encoding.get(field_name, encoding.get('default', DBF_DEFAULT_ENCODING))


@dataclass(frozen=True)
class FieldSlot:
    """Where a field lives in the row and how it is converted."""
    field: FieldDescriptor
    offset: int
    codec: Optional[TypeCodec]
    encoding: str


class RecordLayout:
    """Precomputed field offsets and codecs for one table."""

    def __init__(self, fields: List[FieldDescriptor], version: int,
                 encoding: Encoding = DBF_DEFAULT_ENCODING):
        self.fields = list(fields)
        self.version = version
        self.slots: List[FieldSlot] = []

        offset = 1  # First byte is delete flag
        for field in self.fields:
            codec = get_type_codec(field.field_type, version) if field.is_valid else None
            self.slots.append(FieldSlot(field, offset, codec, resolve_field_encoding(encoding, field.name)))
            offset += field.size
        self.record_length = offset

    def decode_row(self, buffer: bytes, memo_reader: Optional[DBFMemoReader] = None) -> Row:
        """
        Decode one row.

        Fields kept invalid by a loose read come back as raw bytes. Any field
        that fails to decode fails the whole row.

        Args:
            buffer: The row bytes (record_length bytes)
            memo_reader: Reader used to resolve memo references

        Returns:
            ActiveRow or DeletedRow
        """
        if len(buffer) < self.record_length:
            raise ValidationError(
                f"Row is too short ({len(buffer)} bytes, expected {self.record_length})")

        record = {}
        for slot in self.slots:
            field = slot.field
            raw = bytes(buffer[slot.offset:slot.offset + field.size])
            if slot.codec is None:
                record[field.name] = raw
                continue

            value = slot.codec.decode(raw, field, slot.encoding)
            if isinstance(value, MemoReference):
                if memo_reader is None:
                    raise MemoFileMissingError(f"No memo file to resolve field '{field.name}'")
                value = memo_reader.resolve(value.block_index, slot.encoding, field.name)
            record[field.name] = value

        if buffer[0] == DBF_ROW_DELETED:
            return DeletedRow(record)
        return ActiveRow(record)

    def encode_row(self, record: Union[Mapping[str, Any], Row]) -> bytes:
        """
        Encode one record into a row.

        Missing keys are written as null. A DeletedRow is written with the
        delete flag set.

        Args:
            record: Mapping of field name to value, or a Row

        Returns:
            The row bytes (record_length bytes)
        """
        deleted = False
        if isinstance(record, Row):
            deleted = record.deleted
            record = record.record

        buffer = bytearray(self.record_length)
        buffer[0] = DBF_ROW_DELETED if deleted else DBF_ROW_ACTIVE

        for slot in self.slots:
            field = slot.field
            if slot.codec is None:
                raise ValidationError(field.validation_error, field.name)
            data = slot.codec.encode(record.get(field.name), field, slot.encoding)
            if len(data) != field.size:
                raise ValidationError(f"value does not fit field size {field.size}", field.name)
            buffer[slot.offset:slot.offset + field.size] = data

        return bytes(buffer)


def decode_row(buffer: bytes, fields: List[FieldDescriptor], version: int,
               encoding: Encoding = DBF_DEFAULT_ENCODING,
               memo_reader: Optional[DBFMemoReader] = None) -> Row:
    """Decode one row without keeping a layout around."""
    return RecordLayout(fields, version, encoding).decode_row(buffer, memo_reader)


def encode_row(record: Union[Mapping[str, Any], Row], fields: List[FieldDescriptor],
               version: int, encoding: Encoding = DBF_DEFAULT_ENCODING) -> bytes:
    """Encode one record without keeping a layout around."""
    return RecordLayout(fields, version, encoding).encode_row(record)


__all__ = [
    'Row', 'ActiveRow', 'DeletedRow', 'RecordLayout', 'FieldSlot',
    'DBF_DEFAULT_ENCODING', 'DBF_ROW_ACTIVE', 'DBF_ROW_DELETED',
    'resolve_field_encoding', 'decode_row', 'encode_row',
]
