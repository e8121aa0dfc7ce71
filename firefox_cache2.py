"""
Copyright 2022-2025, CCL Forensics

Permission is hereby granted, free of charge, to any person obtaining a copy of
this software and associated documentation files (the "Software"), to deal in
the Software without restriction, including without limitation the rights to
use, copy, modify, merge, publish, distribute, sublicense, and/or sell copies
of the Software, and to permit persons to whom the Software is furnished to do
so, subject to the following conditions:

The above copyright notice and this permission notice shall be included in all
copies or substantial portions of the Software.

THE SOFTWARE IS PROVIDED "AS IS", WITHOUT WARRANTY OF ANY KIND, EXPRESS OR
IMPLIED, INCLUDING BUT NOT LIMITED TO THE WARRANTIES OF MERCHANTABILITY,
FITNESS FOR A PARTICULAR PURPOSE AND NONINFRINGEMENT. IN NO EVENT SHALL THE
AUTHORS OR COPYRIGHT HOLDERS BE LIABLE FOR ANY CLAIM, DAMAGES OR OTHER
LIABILITY, WHETHER IN AN ACTION OF CONTRACT, TORT OR OTHERWISE, ARISING FROM,
OUT OF OR IN CONNECTION WITH THE SOFTWARE OR THE USE OR OTHER DEALINGS IN THE
SOFTWARE.
"""


import csv
import dataclasses
import datetime
import functools
import gzip
import hashlib
import io
import logging
import mimetypes
import os
import pathlib
import re
import struct
import sys
import typing
import zlib

import brotli

__version__ = "0.1"
__description__ = "Library for reading Firefox cache2 entry files"

logger = logging.getLogger(__name__)
logger.addHandler(logging.NullHandler())

_UNIX_EPOCH = datetime.datetime(1970, 1, 1)

HASH_CHUNK_SIZE = 256 * 1024
TRAILER_SIZE = 4
# a 4 byte hash of the chunk hash table sits between the body and the chunk hashes
HASH_TABLE_HASH_SIZE = 4
CHUNK_HASH_SIZE = 2

DEFAULT_TEXT_ENCODING = "latin-1"
RESPONSE_HEAD_ATTRIBUTE = "response-head"


def decode_unix_time(seconds: int) -> datetime.datetime:
    return _UNIX_EPOCH + datetime.timedelta(seconds=seconds)


class Cache2Error(Exception):
    """Base class for errors raised while reading cache2 entry files."""


class Cache2FormatError(Cache2Error, ValueError):
    """The file's declared sizes do not fit the cache2 layout."""


class Cache2IOError(Cache2Error, OSError):
    """Fewer bytes were available than the layout requires."""


class Cache2EncodingError(Cache2Error, ValueError):
    """Key or attribute bytes could not be decoded as text."""


class BinaryReader:
    def __init__(self, stream: typing.BinaryIO):
        self._stream = stream

    @classmethod
    def from_bytes(cls, buffer: bytes):
        return cls(io.BytesIO(buffer))

    def close(self):
        self._stream.close()

    def __enter__(self) -> "BinaryReader":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def seek(self, offset: int, whence: int) -> int:
        return self._stream.seek(offset, whence)

    def read_raw(self, count: int) -> bytes:
        start_offset = self._stream.tell()
        result = self._stream.read(count)
        if len(result) != count:
            raise Cache2IOError(
                f"Could not read all of the data starting at {start_offset}. Expected: {count}; got {len(result)}")
        return result

    def read_uint32(self) -> int:
        raw = self.read_raw(4)
        return struct.unpack(">I", raw)[0]


def hash_chunk_count(content_size: int) -> int:
    chunks, remainder = divmod(content_size, HASH_CHUNK_SIZE)
    if remainder:
        chunks += 1
    return chunks


def metadata_offset(content_size: int) -> int:
    return content_size + HASH_TABLE_HASH_SIZE + hash_chunk_count(content_size) * CHUNK_HASH_SIZE


def _decode_text(raw: bytes, encoding: str) -> str:
    try:
        return raw.decode(encoding)
    except UnicodeDecodeError as ex:
        raise Cache2EncodingError(f"Could not decode {raw[:32]!r} as {encoding}") from ex


def _match_tag(text: str) -> int:
    """
    Returns the length of the tag token at the start of text, or -1 when there is none.
    A tag only counts when a comma follows it. Tokens are tried in this order:
    one of "p", "b" or "a"; "i" followed by anything up to the next comma; any printable,
    non-colon character followed by a run of non-comma characters or escaped ",,".
    """
    if not text:
        return -1

    first = text[0]
    if first in "pba" and text[1:2] == ",":
        return 1

    if first == "i":
        end = text.find(",")
        if end != -1:
            return end

    if not " " <= first <= "~" or first == ":":
        return -1

    pos = 1
    boundaries = [pos]
    while pos < len(text):
        if text.startswith(",,", pos):
            pos += 2
        elif text[pos] != ",":
            pos += 1
        else:
            return pos
        boundaries.append(pos)

    # ran off the end: back off to the last boundary that was followed by a comma
    for boundary in reversed(boundaries):
        if text[boundary:boundary + 1] == ",":
            return boundary

    return -1


def split_key(raw_key: str) -> tuple[str, list[str]]:
    key = raw_key
    tags = []
    while (length := _match_tag(key)) != -1:
        tags.append(key[:length])
        key = key[length + 1:]

    if key.startswith(":"):
        key = key[1:]

    return key, tags


def parse_attributes(raw_attrs: bytes, encoding: str = DEFAULT_TEXT_ENCODING) -> dict[str, str]:
    tokens = raw_attrs.split(b"\x00")
    # the table is null terminated, so the split leaves empty tokens at the end
    while tokens and not tokens[-1]:
        tokens.pop()
    if len(tokens) % 2:
        tokens.append(b"")

    attributes = {}
    for i in range(0, len(tokens), 2):
        attributes[_decode_text(tokens[i], encoding)] = _decode_text(tokens[i + 1], encoding)

    return attributes


@functools.lru_cache(maxsize=64)
def _header_pattern(name: str) -> re.Pattern:
    return re.compile(rf"^{re.escape(name)}:[ \t]*([^\r\n]+)", re.IGNORECASE | re.MULTILINE)


def extract_header_value(attributes: typing.Mapping[str, str], name: str) -> typing.Optional[str]:
    heads = attributes.get(RESPONSE_HEAD_ATTRIBUTE)
    if heads is None:
        return None
    if match := _header_pattern(name).search(heads):
        return match.group(1)
    return None


@dataclasses.dataclass(frozen=True)
class Cache2MetadataHeader:
    version: int
    fetch_count: int
    last_fetched_at: int
    last_modified_at: int
    frecency: int
    expire_at: int
    key_length: int
    flags: typing.Optional[int]

    _BASE_FIELD_COUNT: typing.ClassVar[int] = 7

    @property
    def size(self) -> int:
        field_count = self._BASE_FIELD_COUNT if self.flags is None else self._BASE_FIELD_COUNT + 1
        return field_count * 4

    @classmethod
    def from_bytes(cls, buffer: bytes):
        minimum = cls._BASE_FIELD_COUNT * 4
        if len(buffer) < minimum:
            raise Cache2FormatError(f"Metadata block is {len(buffer)} bytes; at least {minimum} are required")
        with BinaryReader.from_bytes(buffer) as reader:
            return cls.from_reader(reader)

    @classmethod
    def from_reader(cls, reader: BinaryReader):
        version = reader.read_uint32()
        fetch_count = reader.read_uint32()
        last_fetched_at = reader.read_uint32()
        last_modified_at = reader.read_uint32()
        frecency = reader.read_uint32()
        expire_at = reader.read_uint32()
        key_length = reader.read_uint32()

        flags = None
        if version > 1:
            try:
                flags = reader.read_uint32()
            except Cache2IOError as ex:
                raise Cache2FormatError(f"Metadata block for version {version} has no flags field") from ex

        return cls(
            version, fetch_count, last_fetched_at, last_modified_at, frecency, expire_at, key_length, flags)


class Cache2Entry:
    def __init__(self, path: typing.Union[os.PathLike, str], *, encoding: str = DEFAULT_TEXT_ENCODING):
        self._path = pathlib.Path(path)
        self._encoding = encoding
        self._content: typing.Optional[bytes] = None
        self._content_loaded = False
        self._load_metadata()

    def _load_metadata(self):
        with BinaryReader(self._path.open("rb")) as reader:
            file_size = reader.seek(0, os.SEEK_END)
            if file_size < TRAILER_SIZE:
                raise Cache2FormatError(f"{self._path} is {file_size} bytes; too short to hold the trailer")

            reader.seek(-TRAILER_SIZE, os.SEEK_END)
            self._content_size = reader.read_uint32()

            meta_start = metadata_offset(self._content_size)
            if meta_start + TRAILER_SIZE > file_size:
                raise Cache2FormatError(
                    f"{self._path} declares {self._content_size} content bytes but the file is only "
                    f"{file_size} bytes long")

            reader.seek(meta_start, os.SEEK_SET)
            raw_metadata = reader.read_raw(file_size - TRAILER_SIZE - meta_start)

        header = Cache2MetadataHeader.from_bytes(raw_metadata)
        key_start = header.size
        key_end = key_start + header.key_length
        # the key must be followed by its separator byte
        if key_end >= len(raw_metadata):
            raise Cache2FormatError(
                f"Key length {header.key_length} overruns the {len(raw_metadata) - key_start} bytes "
                f"left in the metadata block")

        raw_key = raw_metadata[key_start:key_end]
        raw_attrs = raw_metadata[key_end + 1:]

        self._header = header
        self._key, self._key_tags = split_key(_decode_text(raw_key, self._encoding))
        self._attributes = parse_attributes(raw_attrs, self._encoding)
        self._content_type = extract_header_value(self._attributes, "Content-Type")
        self._content_encoding = extract_header_value(self._attributes, "Content-Encoding")

        logger.debug("Decoded %s (version %d, %d content bytes)", self._path, header.version, self._content_size)

    def _load_content(self) -> bytes:
        with BinaryReader(self._path.open("rb")) as reader:
            reader.seek(0, os.SEEK_SET)
            return reader.read_raw(self._content_size)

    @property
    def content(self) -> bytes:
        if not self._content_loaded:
            self._content = self._load_content()
            self._content_loaded = True
        return self._content

    @property
    def is_loaded(self) -> bool:
        return self._content_loaded

    @property
    def path(self) -> pathlib.Path:
        return self._path

    @property
    def content_size(self) -> int:
        return self._content_size

    @property
    def version(self) -> int:
        return self._header.version

    @property
    def fetch_count(self) -> int:
        return self._header.fetch_count

    @property
    def last_fetched_at(self) -> datetime.datetime:
        return decode_unix_time(self._header.last_fetched_at)

    @property
    def last_modified_at(self) -> datetime.datetime:
        return decode_unix_time(self._header.last_modified_at)

    @property
    def expire_at(self) -> datetime.datetime:
        return decode_unix_time(self._header.expire_at)

    @property
    def frecency(self) -> int:
        return self._header.frecency

    @property
    def flags(self) -> typing.Optional[int]:
        return self._header.flags

    @property
    def key(self) -> str:
        return self._key

    @property
    def key_tags(self) -> tuple[str, ...]:
        return tuple(self._key_tags)

    @property
    def attributes(self) -> dict[str, str]:
        return dict(self._attributes)

    @property
    def content_type(self) -> typing.Optional[str]:
        return self._content_type

    @property
    def content_encoding(self) -> typing.Optional[str]:
        return self._content_encoding

    def to_dict(self) -> dict[str, typing.Any]:
        return {
            "path": str(self._path),
            "content_type": self.content_type,
            "content_encoding": self.content_encoding,
            "content_size": self.content_size,
            "version": self.version,
            "fetch_count": self.fetch_count,
            "last_fetched_at": self.last_fetched_at.isoformat(),
            "last_modified_at": self.last_modified_at.isoformat(),
            "expire_at": self.expire_at.isoformat(),
            "frecency": self.frecency,
            "flags": self.flags,
            "key": self.key,
            "key_tags": list(self._key_tags),
            "attributes": self.attributes,
        }

    def __iter__(self) -> typing.Iterator[tuple[str, typing.Any]]:
        yield from self.to_dict().items()

    def __repr__(self):
        return (f"<Cache2Entry path: {self._path}; key: {self._key}; key_tags: {self._key_tags}; "
                f"content_size: {self._content_size}; content_type: {self._content_type}>")


def decode(path: typing.Union[os.PathLike, str], *, encoding: str = DEFAULT_TEXT_ENCODING) -> Cache2Entry:
    return Cache2Entry(path, encoding=encoding)


def base_dirs() -> list[pathlib.Path]:
    xdg_cache_home = os.environ.get("XDG_CACHE_HOME")
    if xdg_cache_home:
        linux_dir = pathlib.Path(xdg_cache_home) / "mozilla" / "firefox"
    else:
        linux_dir = pathlib.Path("~/.cache/mozilla/firefox")

    return [linux_dir.expanduser(), pathlib.Path("~/Library/Caches/Firefox/Profiles").expanduser()]


def base_dir() -> typing.Optional[pathlib.Path]:
    for candidate in base_dirs():
        if candidate.is_dir():
            return candidate
    return None


def profile_dirs(profile_glob: str = "*") -> list[pathlib.Path]:
    root = base_dir()
    if root is None:
        return []
    # profile folders are named "<salt>.<profile name>"
    return sorted(root.glob(f"*.{profile_glob}"))


def entries_dir(profile_name: str) -> typing.Optional[pathlib.Path]:
    profiles = profile_dirs(profile_name)
    if not profiles:
        return None
    return profiles[0] / "cache2" / "entries"


def entry_paths(cache_entries_dir: typing.Union[os.PathLike, str]) -> list[pathlib.Path]:
    return sorted(x for x in pathlib.Path(cache_entries_dir).iterdir() if x.is_file())


def iter_entries(
        cache_entries_dir: typing.Union[os.PathLike, str], *,
        encoding: str = DEFAULT_TEXT_ENCODING) -> typing.Iterator[Cache2Entry]:
    """
    Decodes every file in a cache2 entries directory. Files that cannot be decoded are
    logged and skipped so that one bad entry does not stop the rest.
    """
    for path in entry_paths(cache_entries_dir):
        try:
            entry = Cache2Entry(path, encoding=encoding)
        except (Cache2Error, OSError) as ex:
            logger.warning("Skipping %s: %s", path.name, ex)
            continue
        yield entry


def decode_content(data: bytes, content_encoding: typing.Optional[str]) -> bytes:
    """Undoes the HTTP content-encoding of a cached body; returns data unchanged if it can't."""
    content_encoding = (content_encoding or "").strip().lower()
    if content_encoding == "gzip":
        try:
            return gzip.decompress(data)
        except (EOFError, gzip.BadGzipFile, zlib.error):
            logger.debug("Body is not valid gzip data; keeping it as stored")
    elif content_encoding == "br":
        try:
            return brotli.decompress(data)
        except brotli.error:
            logger.debug("Body is not valid brotli data; keeping it as stored")
    elif content_encoding == "deflate":
        try:
            return zlib.decompress(data)
        except zlib.error:
            pass
        try:
            return zlib.decompress(data, -zlib.MAX_WBITS)
        except zlib.error:
            logger.debug("Body is not valid deflate data; keeping it as stored")

    return data


def guess_extension(content_type: typing.Optional[str]) -> str:
    if not content_type:
        return ""
    mime = content_type.split(";", 1)[0].strip().lower()
    return mimetypes.guess_extension(mime) or ""


_DEFAULT_ROW_HEADERS = [
    "file_hash", "key", "key_tags", "content_type", "content_encoding", "content_size", "fetch_count",
    "last_fetched_at", "last_modified_at", "expire_at", "frecency"]


def convert_cache(
        input_entries_dir: typing.Union[str, os.PathLike], output_dir: typing.Union[str, os.PathLike]) -> int:
    in_dir = pathlib.Path(input_entries_dir)
    out_dir = pathlib.Path(output_dir)
    cache_out_dir = out_dir / "cache_files"

    if not in_dir.is_dir():
        raise ValueError("Input directory is not a directory or does not exist")

    if out_dir.exists():
        raise ValueError("Output directory already exists")

    out_dir.mkdir()
    cache_out_dir.mkdir()

    dynamic_row_headers = set()
    rows: list[dict] = []

    for entry in iter_entries(in_dir):
        try:
            data = entry.content
        except Cache2IOError as ex:
            logger.warning("Skipping %s: %s", entry.path.name, ex)
            continue

        data = decode_content(data, entry.content_encoding)
        cache_file_hash = hashlib.sha256(data).hexdigest()
        with (cache_out_dir / (cache_file_hash + guess_extension(entry.content_type))).open("wb") as out:
            out.write(data)

        row = {
            "file_hash": cache_file_hash,
            "key": entry.key,
            "key_tags": ",".join(entry.key_tags),
            "content_type": entry.content_type or "",
            "content_encoding": entry.content_encoding or "",
            "content_size": entry.content_size,
            "fetch_count": entry.fetch_count,
            "last_fetched_at": entry.last_fetched_at,
            "last_modified_at": entry.last_modified_at,
            "expire_at": entry.expire_at,
            "frecency": entry.frecency,
        }
        for attribute, value in entry.attributes.items():
            if attribute in row:
                continue
            dynamic_row_headers.add(attribute)
            row[attribute] = value
        rows.append(row)

    with (out_dir / "cache_report.csv").open("wt", encoding="utf-8", newline="") as csv_out_f:
        csv_out_f.write("\ufeff")
        csv_out = csv.DictWriter(
            csv_out_f, fieldnames=_DEFAULT_ROW_HEADERS + sorted(dynamic_row_headers), dialect=csv.excel,
            quoting=csv.QUOTE_ALL, quotechar="\"", escapechar="\\")
        csv_out.writeheader()
        for row in rows:
            csv_out.writerow(row)

    logger.info("Wrote %d cache entries to %s", len(rows), out_dir)
    return len(rows)


def main(argv: typing.Optional[list[str]] = None) -> int:
    argv = sys.argv[1:] if argv is None else argv
    if len(argv) < 2:
        print(f"USAGE: {pathlib.Path(sys.argv[0]).name} <cache2 entries dir | profile name> <out dir>")
        return 1

    logging.basicConfig(level=logging.INFO, format="%(levelname)s %(message)s")

    in_dir = pathlib.Path(argv[0])
    if not in_dir.is_dir():
        resolved = entries_dir(argv[0])
        if resolved is None:
            print(f"Could not find a cache2 entries directory or profile named '{argv[0]}'")
            return 1
        in_dir = resolved

    convert_cache(in_dir, argv[1])
    return 0


if __name__ == '__main__':
    sys.exit(main())
