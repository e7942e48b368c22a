"""
Reading and appending dBase/FoxPro (.DBF) tables.

This module owns the file handle of a table. Header parsing lives in
dbf_header, per-field conversion in dbf_types, row layout in dbf_records and
memo lookups in dbf_memo.

Example:
    dbf = dbf_file_open("PEOPLE.DBF")
    for row in dbf:
        print(row["NAME"])
    dbf_file_close(dbf)
"""

import codecs
import datetime
import logging
from dataclasses import dataclass, replace
from typing import Any, Iterable, Iterator, List, Mapping, Optional, Union

from dbf_errors import (
    DBFError, MalformedHeaderError, UnsupportedOperationError
)
from dbf_fields import (
    DBF_VERSION_DBASE3, FieldDescriptor, has_memo_field, validate_field_descriptors
)
from dbf_header import (
    DBF_EOF_MARKER, READ_MODE_LOOSE, READ_MODE_STRICT, HeaderInfo,
    read_header, serialize_header, update_record_count
)
from dbf_memo import DBFMemoReader, find_memo_file
from dbf_records import (
    DBF_DEFAULT_ENCODING, Encoding, RecordLayout, Row, resolve_field_encoding
)


logger = logging.getLogger(__name__)

DBF_READ_BATCH_SIZE = 65536  # bytes of rows fetched per read


@dataclass
class DBFOptions:
    """Options for opening or creating a DBF file."""
    read_mode: str = READ_MODE_STRICT  # 'strict' or 'loose' field validation on open
    encoding: Encoding = DBF_DEFAULT_ENCODING  # codec name, or field name -> codec name
    include_deleted_records: bool = False  # yield DeletedRow values instead of skipping them
    file_version: Optional[int] = None  # version byte for new files (default 0x03)
    read_only: bool = False  # refuse appends

    def __post_init__(self):
        if self.read_mode not in (READ_MODE_STRICT, READ_MODE_LOOSE):
            raise ValueError(f"read_mode must be 'strict' or 'loose', not '{self.read_mode}'")

        if isinstance(self.encoding, str):
            names = [self.encoding]
        elif isinstance(self.encoding, Mapping):
            names = list(self.encoding.values())
        else:
            raise ValueError("encoding must be a codec name or a mapping of field names to codec names")
        for name in names:
            try:
                codecs.lookup(name)
            except LookupError:
                raise ValueError(f"Unknown encoding '{name}'") from None

    @property
    def default_encoding(self) -> str:
        return resolve_field_encoding(self.encoding, 'default')


class DBFFile:
    """An open DBF file."""
    def __init__(self):
        self.path: Optional[str] = None
        self.file = None
        self.header = HeaderInfo()
        self.options = DBFOptions()
        self.layout: Optional[RecordLayout] = None
        self.memo_reader: Optional[DBFMemoReader] = None
        self.records_read = 0  # read cursor, in rows
        self.writable = False  # file handle opened with write access
        self.is_open = False

    @property
    def version(self) -> int:
        return self.header.version

    @property
    def record_count(self) -> int:
        """Total number of records, deleted ones included."""
        return self.header.record_count

    @property
    def date_of_last_update(self) -> Optional[datetime.date]:
        return self.header.date_of_last_update

    @property
    def fields(self) -> List[FieldDescriptor]:
        return self.header.fields

    def __iter__(self) -> Iterator[Row]:
        return dbf_file_iter_records(self)

    def __enter__(self) -> "DBFFile":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        dbf_file_close(self)

    def __repr__(self) -> str:
        return (f"DBFFile(path={self.path!r}, version=0x{self.version:02X}, "
                f"records={self.record_count}, fields={len(self.fields)})")


def _check_open(dbf: DBFFile) -> None:
    if not dbf or not dbf.is_open or not dbf.file:
        raise DBFError("DBF file is not open")


def _make_writable(dbf: DBFFile) -> None:
    """Swap the read handle for a read-write one on first write."""
    if dbf.writable:
        return
    file = open(dbf.path, "rb+")
    dbf.file.close()
    dbf.file = file
    dbf.writable = True
    logger.debug("Reopened %s for writing", dbf.path)


# Main DBF functions
def dbf_file_open(path: str, options: Optional[DBFOptions] = None) -> DBFFile:
    """
    Open an existing DBF file.

    Args:
        path: The path to the DBF file
        options: Read mode, encoding and deleted-record handling

    Returns:
        A DBFFile object representing the opened file
    """
    if options is None:
        options = DBFOptions()

    dbf = DBFFile()
    dbf.path = path
    dbf.options = options
    dbf.file = open(path, "rb")

    try:
        dbf.header = read_header(dbf.file, options.read_mode, options.default_encoding, path)
        dbf.layout = RecordLayout(dbf.header.fields, dbf.header.version, options.encoding)

        memo_path = None
        if has_memo_field(dbf.header.fields):
            memo_path = find_memo_file(path, dbf.header.version)
            if memo_path is None:
                logger.warning("No memo file found for %s", path)
        dbf.memo_reader = DBFMemoReader(memo_path, dbf.header.version, path)
    except Exception:
        dbf.file.close()
        raise

    dbf.is_open = True
    logger.debug("Opened %s: version 0x%02X, %d records, %d fields",
                 path, dbf.header.version, dbf.header.record_count, len(dbf.header.fields))
    return dbf


def dbf_file_create(path: str, fields: List[FieldDescriptor],
                    options: Optional[DBFOptions] = None) -> DBFFile:
    """
    Create a new DBF file with no records.

    The header is composed and validated before the file is created, so a
    rejected field list leaves nothing on disk. An existing file is never
    overwritten.

    Args:
        path: The path of the new file
        fields: The field descriptors
        options: file_version selects the dialect (default dBase III)

    Returns:
        A DBFFile object representing the created file, ready for appends
    """
    if options is None:
        options = DBFOptions()
    version = options.file_version if options.file_version is not None else DBF_VERSION_DBASE3

    header_bytes = serialize_header(list(fields), version, options.default_encoding)

    with open(path, "xb") as f:
        f.write(header_bytes)

    logger.debug("Created %s: version 0x%02X, %d fields", path, version, len(fields))
    return dbf_file_open(path, replace(options, read_only=False))


def dbf_file_close(dbf: DBFFile) -> None:
    """Close a DBF file and its memo file."""
    if dbf and dbf.memo_reader:
        dbf.memo_reader.close()
    if dbf and dbf.is_open and dbf.file:
        dbf.file.close()
        dbf.is_open = False


def dbf_file_seek_to_record(dbf: DBFFile, index: int) -> None:
    """
    Move the read cursor to a record.

    Args:
        dbf: The DBF file object
        index: Zero-based record index (record_count means end of file)
    """
    _check_open(dbf)
    if index < 0 or index > dbf.header.record_count:
        raise IndexError(f"Record index {index} out of range (0-{dbf.header.record_count})")
    dbf.records_read = index


def dbf_file_iter_records(dbf: DBFFile, max_count: Optional[int] = None) -> Iterator[Row]:
    """
    Iterate over records from the read cursor onwards.

    Deleted records are skipped unless the file was opened with
    include_deleted_records, in which case they come back as DeletedRow.

    Args:
        dbf: The DBF file object
        max_count: Maximum number of file rows to consume (skipped deleted
            rows count too); None reads to the end

    Yields:
        ActiveRow or DeletedRow values, in file order
    """
    _check_open(dbf)
    header = dbf.header
    record_length = header.record_length
    include_deleted = dbf.options.include_deleted_records

    remaining = header.record_count - dbf.records_read
    if max_count is not None:
        remaining = min(remaining, max_count)
    batch_rows = max(1, DBF_READ_BATCH_SIZE // record_length)

    while remaining > 0:
        count = min(batch_rows, remaining)
        dbf.file.seek(header.header_length + dbf.records_read * record_length)
        data = dbf.file.read(count * record_length)

        available = len(data) // record_length
        for i in range(min(count, available)):
            row = dbf.layout.decode_row(data[i * record_length:(i + 1) * record_length], dbf.memo_reader)
            dbf.records_read += 1
            remaining -= 1
            if row.deleted and not include_deleted:
                continue
            yield row

        if available < count:
            raise MalformedHeaderError(
                f"File ends before record {dbf.records_read} of {header.record_count}")


def dbf_file_read_records(dbf: DBFFile, max_count: Optional[int] = None) -> List[Row]:
    """
    Read records from the read cursor onwards.

    Args:
        dbf: The DBF file object
        max_count: Maximum number of file rows to consume; None reads to the end

    Returns:
        List of ActiveRow (and, if requested, DeletedRow) values
    """
    return list(dbf_file_iter_records(dbf, max_count))


def dbf_file_append_records(dbf: DBFFile,
                            records: Iterable[Union[Mapping[str, Any], Row]]) -> DBFFile:
    """
    Append records to the end of a DBF file.

    Every record is validated and encoded before anything is written, so a
    bad record leaves the file untouched. The header's record count and date
    of last update are rewritten once per call.

    Args:
        dbf: The DBF file object
        records: Mappings of field name to value (missing fields are null),
            or Row values

    Returns:
        The same DBFFile
    """
    _check_open(dbf)
    header = dbf.header
    if dbf.options.read_only:
        raise UnsupportedOperationError("File was opened read-only.")
    if has_memo_field(header.fields):
        raise UnsupportedOperationError('Writing to files with memo fields is not supported.')
    validate_field_descriptors(header.fields, header.version)

    rows = [dbf.layout.encode_row(record) for record in records]
    if not rows:
        return dbf

    _make_writable(dbf)
    position = header.header_length + header.record_count * header.record_length
    dbf.file.seek(position)
    dbf.file.write(b''.join(rows))

    # Write EOF marker
    dbf.file.write(bytes([DBF_EOF_MARKER]))

    today = datetime.date.today()
    new_count = header.record_count + len(rows)
    update_record_count(dbf.file, new_count, today)
    header.record_count = new_count
    header.date_of_last_update = today

    logger.debug("Appended %d records to %s (%d total)", len(rows), dbf.path, new_count)
    return dbf


# Export functions
__all__ = [
    'DBFFile', 'DBFOptions', 'Row',
    'DBF_READ_BATCH_SIZE',
    'dbf_file_open', 'dbf_file_create', 'dbf_file_close',
    'dbf_file_seek_to_record', 'dbf_file_iter_records', 'dbf_file_read_records',
    'dbf_file_append_records',
]
