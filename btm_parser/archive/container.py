"""Reader for the binary property list container (``bplist00``).

The container is a flat pool of objects addressed by index. Objects are
decoded on demand: collections are returned as tuples of indices into the
pool rather than as inline values, so nothing beyond the requested index
is ever touched.

Layout::

    header      8 bytes   b"bplist00"
    objects     ...       marker byte + payload per object
    offsets     N * offset_size bytes, big-endian
    trailer     32 bytes  (6 unused, offset_size, ref_size,
                           object_count, root_index, offset_table_offset)
"""

import logging
import struct
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any

from btm_parser.errors import MalformedArchive

logger = logging.getLogger(__name__)

HEADER = b"bplist00"
TRAILER = struct.Struct(">6xBBQQQ")
VALID_INT_SIZES = (1, 2, 4, 8)

# Dates are seconds relative to 2001-01-01T00:00:00Z
APPLE_EPOCH = datetime(2001, 1, 1, tzinfo=timezone.utc)


@dataclass(frozen=True)
class UID:
    """Back-reference to an entry of a keyed archive's object table."""

    value: int


@dataclass(frozen=True)
class ArrayRef:
    """Array whose elements are object indices."""

    refs: tuple[int, ...]


@dataclass(frozen=True)
class SetRef:
    """Set whose members are object indices."""

    refs: tuple[int, ...]


@dataclass(frozen=True)
class DictRef:
    """Dictionary of (key index, value index) pairs, in stored order."""

    keys: tuple[int, ...]
    values: tuple[int, ...]

    def pairs(self) -> list[tuple[int, int]]:
        return list(zip(self.keys, self.values))


@dataclass(frozen=True)
class Trailer:
    """Fixed-size trailer at the end of the container."""

    offset_size: int
    ref_size: int
    object_count: int
    root_index: int
    offset_table_offset: int


class BinaryContainer:
    """Index-addressed view over a binary property list buffer."""

    # High nibble of the marker byte -> decoder method
    DECODERS = {
        0x0: "_decode_simple",
        0x1: "_decode_int",
        0x2: "_decode_real",
        0x3: "_decode_date",
        0x4: "_decode_data",
        0x5: "_decode_ascii",
        0x6: "_decode_utf16",
        0x7: "_decode_utf8",
        0x8: "_decode_uid",
        0xA: "_decode_array",
        0xC: "_decode_set",
        0xD: "_decode_dict",
    }

    def __init__(self, data: bytes):
        """
        Validate the header and trailer and load the offset table.

        Args:
            data: Complete container bytes

        Raises:
            MalformedArchive: If the magic marker, trailer or offset table
                are invalid
        """
        self.data = bytes(data)
        if len(self.data) < len(HEADER) + TRAILER.size:
            raise MalformedArchive(f"buffer too short ({len(self.data)} bytes)")
        if self.data[:len(HEADER)] != HEADER:
            raise MalformedArchive(f"bad magic {self.data[:len(HEADER)]!r}, expected {HEADER!r}")

        self.trailer = self._read_trailer()
        self._offsets = self._read_offset_table()

    @property
    def object_count(self) -> int:
        return self.trailer.object_count

    @property
    def root_index(self) -> int:
        return self.trailer.root_index

    @property
    def root(self) -> Any:
        """Decode the object named by the trailer's root index."""
        return self.object(self.trailer.root_index)

    def object(self, index: int) -> Any:
        """
        Decode the object stored at ``index``.

        Returns:
            ``None`` for null/fill, ``bool``, ``int``, ``float``, aware
            ``datetime``, ``bytes``, ``str``, :class:`UID`, or one of
            :class:`ArrayRef`, :class:`SetRef`, :class:`DictRef`

        Raises:
            MalformedArchive: If the index is out of range, the type tag is
                unknown or the object is truncated
        """
        self._check_index(index)
        offset = self._offsets[index]
        marker = self.data[offset]
        kind, info = marker >> 4, marker & 0x0F

        method = self.DECODERS.get(kind)
        if method is None:
            raise MalformedArchive(f"unrecognized type tag 0x{marker:02x} at offset {offset}")
        return getattr(self, method)(info, offset + 1, marker)

    # Trailer and offset table

    def _read_trailer(self) -> Trailer:
        trailer = Trailer(*TRAILER.unpack_from(self.data, len(self.data) - TRAILER.size))
        logger.debug(
            "trailer: offset_size=%d ref_size=%d objects=%d root=%d table=%d",
            trailer.offset_size,
            trailer.ref_size,
            trailer.object_count,
            trailer.root_index,
            trailer.offset_table_offset,
        )

        if trailer.offset_size not in VALID_INT_SIZES:
            raise MalformedArchive(f"invalid offset size {trailer.offset_size}")
        if trailer.ref_size not in VALID_INT_SIZES:
            raise MalformedArchive(f"invalid object reference size {trailer.ref_size}")
        if trailer.object_count == 0:
            raise MalformedArchive("archive declares no objects")
        if trailer.root_index >= trailer.object_count:
            raise MalformedArchive(
                f"root index {trailer.root_index} outside object count {trailer.object_count}"
            )
        if trailer.ref_size < 8 and trailer.object_count > 1 << (8 * trailer.ref_size):
            raise MalformedArchive(
                f"object count {trailer.object_count} not addressable with {trailer.ref_size}-byte references"
            )

        table_end = trailer.offset_table_offset + trailer.object_count * trailer.offset_size
        if trailer.offset_table_offset < len(HEADER) or table_end > len(self.data) - TRAILER.size:
            raise MalformedArchive("offset table lies outside the buffer")
        return trailer

    def _read_offset_table(self) -> list[int]:
        size = self.trailer.offset_size
        start = self.trailer.offset_table_offset
        offsets = []
        for index in range(self.trailer.object_count):
            pos = start + index * size
            offset = int.from_bytes(self.data[pos:pos + size], "big")
            if not len(HEADER) <= offset < start:
                raise MalformedArchive(f"object {index} offset {offset} outside the object area")
            offsets.append(offset)
        return offsets

    # Helpers

    def _check_index(self, index: int) -> None:
        if not 0 <= index < self.trailer.object_count:
            raise MalformedArchive(
                f"object reference {index} outside [0, {self.trailer.object_count})"
            )

    def _read(self, pos: int, length: int) -> bytes:
        end = pos + length
        if length < 0 or end > self.trailer.offset_table_offset:
            raise MalformedArchive(f"object at offset {pos} runs past the object area")
        return self.data[pos:end]

    def _read_length(self, info: int, pos: int) -> tuple[int, int]:
        """Return (count, payload position) for variable-length objects."""
        if info != 0x0F:
            return info, pos

        marker = self._read(pos, 1)[0]
        if marker >> 4 != 0x1 or marker & 0x0F > 3:
            raise MalformedArchive(f"invalid extended length marker 0x{marker:02x} at offset {pos}")
        size = 1 << (marker & 0x0F)
        count = int.from_bytes(self._read(pos + 1, size), "big")
        return count, pos + 1 + size

    def _read_refs(self, pos: int, count: int) -> tuple[int, ...]:
        size = self.trailer.ref_size
        raw = self._read(pos, count * size)
        refs = tuple(
            int.from_bytes(raw[i * size:(i + 1) * size], "big") for i in range(count)
        )
        for ref in refs:
            self._check_index(ref)
        return refs

    # Decoders, one per marker family

    def _decode_simple(self, info: int, pos: int, marker: int) -> Any:
        if marker == 0x08:
            return False
        if marker == 0x09:
            return True
        if marker in (0x00, 0x0F):
            return None
        raise MalformedArchive(f"unrecognized type tag 0x{marker:02x}")

    def _decode_int(self, info: int, pos: int, marker: int) -> int:
        if info > 4:
            raise MalformedArchive(f"invalid integer width {1 << info}")
        size = 1 << info
        # 1, 2 and 4 byte integers are unsigned, 8 and 16 byte integers signed
        return int.from_bytes(self._read(pos, size), "big", signed=size >= 8)

    def _decode_real(self, info: int, pos: int, marker: int) -> float:
        if info == 2:
            return struct.unpack(">f", self._read(pos, 4))[0]
        if info == 3:
            return struct.unpack(">d", self._read(pos, 8))[0]
        raise MalformedArchive(f"invalid real width {1 << info}")

    def _decode_date(self, info: int, pos: int, marker: int) -> datetime:
        if marker != 0x33:
            raise MalformedArchive(f"unrecognized type tag 0x{marker:02x}")
        seconds = struct.unpack(">d", self._read(pos, 8))[0]
        try:
            return APPLE_EPOCH + timedelta(seconds=seconds)
        except (OverflowError, ValueError) as e:
            raise MalformedArchive(f"date value {seconds!r} out of range") from e

    def _decode_data(self, info: int, pos: int, marker: int) -> bytes:
        count, pos = self._read_length(info, pos)
        return self._read(pos, count)

    def _decode_ascii(self, info: int, pos: int, marker: int) -> str:
        count, pos = self._read_length(info, pos)
        return self._decode_text(self._read(pos, count), "ascii")

    def _decode_utf16(self, info: int, pos: int, marker: int) -> str:
        count, pos = self._read_length(info, pos)
        return self._decode_text(self._read(pos, count * 2), "utf-16-be")

    def _decode_utf8(self, info: int, pos: int, marker: int) -> str:
        count, pos = self._read_length(info, pos)
        return self._decode_text(self._read(pos, count), "utf-8")

    def _decode_uid(self, info: int, pos: int, marker: int) -> UID:
        return UID(int.from_bytes(self._read(pos, info + 1), "big"))

    def _decode_array(self, info: int, pos: int, marker: int) -> ArrayRef:
        count, pos = self._read_length(info, pos)
        return ArrayRef(self._read_refs(pos, count))

    def _decode_set(self, info: int, pos: int, marker: int) -> SetRef:
        count, pos = self._read_length(info, pos)
        return SetRef(self._read_refs(pos, count))

    def _decode_dict(self, info: int, pos: int, marker: int) -> DictRef:
        count, pos = self._read_length(info, pos)
        keys = self._read_refs(pos, count)
        values = self._read_refs(pos + count * self.trailer.ref_size, count)
        return DictRef(keys, values)

    @staticmethod
    def _decode_text(raw: bytes, encoding: str) -> str:
        try:
            return raw.decode(encoding)
        except UnicodeDecodeError as e:
            raise MalformedArchive(f"undecodable {encoding} string") from e
