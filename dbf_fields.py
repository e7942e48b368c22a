"""
Field descriptors for dBase/FoxPro tables.

A field descriptor names one column of a table and declares its type tag,
its width in bytes and (for numeric fields) its decimal count. Which widths
and decimal counts are legal depends on the file version the table is written
in, so validation always takes the version byte as well.
"""

from dataclasses import dataclass
from typing import List, Optional

from dbf_errors import ValidationError


# File versions
DBF_VERSION_DBASE3 = 0x03
DBF_VERSION_VFP = 0x30
DBF_VERSION_VFP_AUTOINC = 0x31
DBF_VERSION_DBASE3_MEMO = 0x83
DBF_VERSION_DBASE4_MEMO = 0x8B

DBF_READABLE_VERSIONS = (
    DBF_VERSION_DBASE3, DBF_VERSION_VFP, DBF_VERSION_VFP_AUTOINC,
    DBF_VERSION_DBASE3_MEMO, DBF_VERSION_DBASE4_MEMO,
)
DBF_CREATABLE_VERSIONS = (
    DBF_VERSION_DBASE3, DBF_VERSION_VFP,
    DBF_VERSION_DBASE3_MEMO, DBF_VERSION_DBASE4_MEMO,
)
DBF_VFP_VERSIONS = (DBF_VERSION_VFP, DBF_VERSION_VFP_AUTOINC)

# Field types
DBF_FIELD_TYPES = ('C', 'N', 'F', 'L', 'D', 'I', 'M', 'T', 'B')

DBF_MAX_FIELD_NAME = 10
DBF_MAX_CHAR_SIZE = 255
DBF_MAX_NUMERIC_SIZE = 20


@dataclass(frozen=True)
class FieldDescriptor:
    """Represents a column/field in a DBF file."""
    name: str  # Field name (1-10 chars)
    field_type: str  # 'C', 'N', 'L', etc.
    size: int  # Field width in bytes
    decimal_places: Optional[int] = None  # Number of decimal places (for numeric)
    validation_error: Optional[str] = None  # Set for invalid fields kept in loose mode

    @property
    def is_valid(self) -> bool:
        return self.validation_error is None


def is_vfp_version(version: int) -> bool:
    """True for the Visual FoxPro dialects."""
    return version in DBF_VFP_VERSIONS


def memo_field_size(version: int) -> int:
    """Width of a memo block reference: binary in VFP, ASCII digits elsewhere."""
    return 4 if is_vfp_version(version) else 10


def max_decimal_places(version: int) -> int:
    """Largest decimal count allowed for the version."""
    return 18 if version == DBF_VERSION_DBASE4_MEMO else 15


def _is_int(value) -> bool:
    return isinstance(value, int) and not isinstance(value, bool)


def validate_field_descriptor(field: FieldDescriptor, version: int) -> None:
    """
    Check one field descriptor against the rules of a file version.

    Args:
        field: The field to check
        version: The file version byte the field belongs to

    Raises:
        ValidationError: naming the field, for the first rule that fails
    """
    name = field.name
    field_type = field.field_type
    size = field.size
    decs = field.decimal_places

    # name
    if not isinstance(name, str):
        raise ValidationError('Name must be a string')
    if len(name) < 1:
        raise ValidationError(f"Field name '{name}' is too short (minimum is 1 char)")
    if len(name) > DBF_MAX_FIELD_NAME:
        raise ValidationError(
            f"Field name '{name}' is too long (maximum is {DBF_MAX_FIELD_NAME} chars)", name)

    # type
    if not isinstance(field_type, str) or len(field_type) != 1:
        raise ValidationError('Type must be a single character', name)
    if field_type not in DBF_FIELD_TYPES:
        raise ValidationError(f"Type '{field_type}' is not supported", name)

    # size
    if not _is_int(size):
        raise ValidationError('Size must be a number', name)
    if size < 1:
        raise ValidationError('Field size is too small (minimum is 1)', name)
    if field_type == 'C' and size > DBF_MAX_CHAR_SIZE:
        raise ValidationError(f'Field size is too large (maximum is {DBF_MAX_CHAR_SIZE})', name)
    if field_type in ('N', 'F') and size > DBF_MAX_NUMERIC_SIZE:
        raise ValidationError(f'Field size is too large (maximum is {DBF_MAX_NUMERIC_SIZE})', name)
    if field_type == 'L' and size != 1:
        raise ValidationError('Invalid field size (must be 1)', name)
    if field_type == 'M':
        memo_size = memo_field_size(version)
        if size != memo_size:
            raise ValidationError(f'Invalid field size (must be {memo_size})', name)
    if field_type in ('T', 'B') and size != 8:
        raise ValidationError('Invalid field size (must be 8)', name)
    if size > DBF_MAX_CHAR_SIZE:
        raise ValidationError(f'Field size is too large (maximum is {DBF_MAX_CHAR_SIZE})', name)

    # decimal places
    if decs is not None and not _is_int(decs):
        raise ValidationError('decimal_places must be None or a number', name)
    max_decs = max_decimal_places(version)
    if decs and decs > max_decs:
        raise ValidationError(f'Decimal count is too large (maximum is {max_decs})', name)
    if decs and decs < 0:
        raise ValidationError('Decimal count must not be negative', name)


def validate_field_descriptors(fields: List[FieldDescriptor], version: int) -> None:
    """Validate every field and reject duplicate names."""
    seen = set()
    for field in fields:
        if field.validation_error is not None:
            raise ValidationError(field.validation_error, field.name)
        validate_field_descriptor(field, version)
        if field.name in seen:
            raise ValidationError(f"Duplicate field name '{field.name}'", field.name)
        seen.add(field.name)


def has_memo_field(fields: List[FieldDescriptor]) -> bool:
    """Check if the field list contains memo fields."""
    return any(field.field_type == 'M' for field in fields)


__all__ = [
    'FieldDescriptor',
    'DBF_VERSION_DBASE3', 'DBF_VERSION_VFP', 'DBF_VERSION_VFP_AUTOINC',
    'DBF_VERSION_DBASE3_MEMO', 'DBF_VERSION_DBASE4_MEMO',
    'DBF_READABLE_VERSIONS', 'DBF_CREATABLE_VERSIONS', 'DBF_VFP_VERSIONS',
    'DBF_FIELD_TYPES', 'DBF_MAX_FIELD_NAME', 'DBF_MAX_CHAR_SIZE', 'DBF_MAX_NUMERIC_SIZE',
    'is_vfp_version', 'memo_field_size', 'max_decimal_places',
    'validate_field_descriptor', 'validate_field_descriptors', 'has_memo_field',
]
