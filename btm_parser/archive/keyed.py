"""Object graph resolver for NSKeyedArchiver-style archives.

A keyed archive is a container whose root dictionary holds:

- ``$objects``: the object table; ``UID`` values index into it
- ``$top``: symbolic root entries (``store``, ``storeData``, ``root``)
- ``$archiver`` / ``$version``: envelope metadata

Every archived instance is a dictionary with a ``$class`` entry pointing at
a class-info dictionary (``$classname``, ``$classes``). Only classes in
:data:`ALLOWED_CLASSES` may be decoded; anything else is rejected.
"""

import logging
import uuid
from datetime import timedelta
from typing import Any
from urllib.parse import urljoin

from btm_parser.archive.container import (
    APPLE_EPOCH,
    ArrayRef,
    BinaryContainer,
    DictRef,
    SetRef,
    UID,
)
from btm_parser.errors import MalformedArchive

logger = logging.getLogger(__name__)

ARCHIVER = "NSKeyedArchiver"
NULL = "$null"

STORE_CLASS = "Storage"
ITEM_CLASS = "ItemRecord"

# Class name -> decoder method
CLASS_DECODERS: dict[str, str] = {
    STORE_CLASS: "_decode_keyed_object",
    ITEM_CLASS: "_decode_keyed_object",
    "NSDictionary": "_decode_dictionary",
    "NSMutableDictionary": "_decode_dictionary",
    "NSArray": "_decode_array",
    "NSMutableArray": "_decode_array",
    "NSSet": "_decode_set",
    "NSMutableSet": "_decode_set",
    "NSString": "_decode_string",
    "NSMutableString": "_decode_string",
    "NSData": "_decode_data",
    "NSMutableData": "_decode_data",
    "NSNumber": "_decode_number",
    "NSUUID": "_decode_uuid",
    "NSURL": "_decode_url",
    "NSDate": "_decode_date",
}

ALLOWED_CLASSES = frozenset(CLASS_DECODERS)

# Marks value objects whose decoding is in progress
_PENDING = object()


class KeyedObject:
    """
    Archived instance of a domain class (``Storage`` or ``ItemRecord``).

    Fields are decoded on first access and memoized, so only the parts of
    the graph that are actually read get materialized.
    """

    def __init__(self, archive: "KeyedArchive", class_name: str, classes: list[str], fields: dict[str, int]):
        self.archive = archive
        self.class_name = class_name
        self.classes = classes
        self._fields = fields
        self._decoded: dict[str, Any] = {}

    def keys(self) -> list[str]:
        return list(self._fields)

    def __contains__(self, key: object) -> bool:
        return key in self._fields

    def get(self, key: str, default: Any = None) -> Any:
        """Decode and return a field, or ``default`` when it is absent."""
        if key not in self._fields:
            return default
        if key not in self._decoded:
            raw = self.archive.container.object(self._fields[key])
            self._decoded[key] = self.archive.resolve(raw)
        return self._decoded[key]

    def __repr__(self) -> str:
        return f"<KeyedObject {self.class_name} keys={self.keys()}>"


class KeyedArchive:
    """Resolves UID references of a keyed archive into Python values."""

    def __init__(self, data: bytes):
        """
        Parse the container and validate the keyed-archive envelope.

        Raises:
            MalformedArchive: If the container is invalid or the envelope
                lacks ``$objects`` / ``$top``
        """
        self.container = BinaryContainer(data)

        envelope_ref = self.container.root
        if not isinstance(envelope_ref, DictRef):
            raise MalformedArchive("top-level object is not a dictionary")
        envelope = self._string_keyed(envelope_ref)

        if "$archiver" in envelope:
            archiver = self.container.object(envelope["$archiver"])
            if archiver != ARCHIVER:
                raise MalformedArchive(f"unsupported archiver {archiver!r}")
        if "$objects" not in envelope or "$top" not in envelope:
            raise MalformedArchive("keyed archive is missing $objects or $top")

        objects = self.container.object(envelope["$objects"])
        if not isinstance(objects, ArrayRef):
            raise MalformedArchive("$objects is not an array")
        self._objects = objects.refs

        top = self.container.object(envelope["$top"])
        if not isinstance(top, DictRef):
            raise MalformedArchive("$top is not a dictionary")
        self._top = self._string_keyed(top)

        # Decoded values keyed by object-table position
        self._cache: dict[int, Any] = {}
        self._class_info: dict[int, tuple[str, list[str]]] = {}

    @property
    def top_keys(self) -> list[str]:
        return list(self._top)

    def has_top(self, key: str) -> bool:
        return key in self._top

    def decode_top(self, key: str, default: Any = None) -> Any:
        """Decode the root entry named ``key`` (e.g. ``"store"``)."""
        if key not in self._top:
            return default
        return self.resolve(self.container.object(self._top[key]))

    def resolve(self, value: Any) -> Any:
        """Follow a UID reference; inline primitives are returned unchanged."""
        if isinstance(value, UID):
            return self.decode(value.value)
        if isinstance(value, (ArrayRef, SetRef, DictRef)):
            raise MalformedArchive("inline collection outside the object table")
        return value

    def decode(self, uid: int) -> Any:
        """
        Decode the object-table entry ``uid``.

        Entries already decoded (or still being decoded further up the
        stack) are served from the cache, so reference cycles terminate.
        """
        if uid in self._cache:
            cached = self._cache[uid]
            if cached is _PENDING:
                raise MalformedArchive(f"cyclic reference through value object {uid}")
            return cached

        if not 0 <= uid < len(self._objects):
            raise MalformedArchive(f"UID {uid} outside object table of {len(self._objects)} entries")

        raw = self.container.object(self._objects[uid])
        if raw == NULL:
            self._cache[uid] = None
            return None
        if isinstance(raw, DictRef):
            return self._decode_instance(uid, raw)
        if isinstance(raw, (ArrayRef, SetRef, UID)):
            raise MalformedArchive(f"untagged {type(raw).__name__} at UID {uid}")

        self._cache[uid] = raw
        return raw

    # Envelope helpers

    def _string_keyed(self, ref: DictRef) -> dict[str, int]:
        result = {}
        for key_index, value_index in ref.pairs():
            key = self.container.object(key_index)
            if not isinstance(key, str):
                raise MalformedArchive(f"dictionary key {key!r} is not a string")
            result[key] = value_index
        return result

    def _class_of(self, fields: dict[str, int], uid: int) -> tuple[str, list[str]]:
        if "$class" not in fields:
            raise MalformedArchive(f"object {uid} has no class tag")
        ref = self.container.object(fields["$class"])
        if not isinstance(ref, UID):
            raise MalformedArchive(f"class tag of object {uid} is not a reference")

        if ref.value not in self._class_info:
            if not 0 <= ref.value < len(self._objects):
                raise MalformedArchive(f"class reference {ref.value} outside object table")
            info = self.container.object(self._objects[ref.value])
            if not isinstance(info, DictRef):
                raise MalformedArchive(f"class info {ref.value} is not a dictionary")
            info_fields = self._string_keyed(info)

            name = self.container.object(info_fields["$classname"]) if "$classname" in info_fields else None
            if not isinstance(name, str):
                raise MalformedArchive(f"class info {ref.value} has no class name")
            classes = [name]
            if "$classes" in info_fields:
                chain = self.container.object(info_fields["$classes"])
                if isinstance(chain, ArrayRef):
                    classes = [c for c in (self.container.object(i) for i in chain.refs) if isinstance(c, str)]
            self._class_info[ref.value] = (name, classes)

        return self._class_info[ref.value]

    def _decode_instance(self, uid: int, ref: DictRef) -> Any:
        fields = self._string_keyed(ref)
        class_name, classes = self._class_of(fields, uid)
        if class_name not in ALLOWED_CLASSES:
            raise MalformedArchive(f"unexpected class: {class_name}")

        del fields["$class"]
        logger.debug("decoding object %d as %s", uid, class_name)
        return getattr(self, CLASS_DECODERS[class_name])(uid, class_name, classes, fields)

    def _field(self, fields: dict[str, int], key: str) -> Any:
        if key not in fields:
            return None
        return self.resolve(self.container.object(fields[key]))

    def _members(self, fields: dict[str, int], key: str) -> list[Any]:
        """Raw (unresolved) members of an ``NS.keys`` / ``NS.objects`` array."""
        if key not in fields:
            return []
        members = self.container.object(fields[key])
        if not isinstance(members, ArrayRef):
            raise MalformedArchive(f"{key} is not an array")
        return [self.container.object(i) for i in members.refs]

    # Collections are cached before their members are decoded

    def _decode_keyed_object(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> KeyedObject:
        obj = KeyedObject(self, class_name, classes, fields)
        self._cache[uid] = obj
        return obj

    def _decode_dictionary(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> dict:
        result: dict = {}
        self._cache[uid] = result

        keys = self._members(fields, "NS.keys")
        values = self._members(fields, "NS.objects")
        if len(keys) != len(values):
            raise MalformedArchive(f"{class_name} {uid} has {len(keys)} keys but {len(values)} values")

        for raw_key, raw_value in zip(keys, values):
            key = self.resolve(raw_key)
            if isinstance(key, (dict, list, set, KeyedObject)):
                raise MalformedArchive(f"{class_name} {uid} has an unhashable key")
            result[key] = self.resolve(raw_value)
        return result

    def _decode_array(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> list:
        result: list = []
        self._cache[uid] = result
        result.extend(self.resolve(raw) for raw in self._members(fields, "NS.objects"))
        return result

    def _decode_set(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> set:
        result: set = set()
        self._cache[uid] = result
        for raw in self._members(fields, "NS.objects"):
            member = self.resolve(raw)
            try:
                result.add(member)
            except TypeError as e:
                raise MalformedArchive(f"{class_name} {uid} has an unhashable member") from e
        return result

    # Value objects cannot be partially built; a cycle through one is an error

    def _decode_value(self, uid: int, build) -> Any:
        self._cache[uid] = _PENDING
        try:
            value = build()
        except Exception:
            del self._cache[uid]
            raise
        self._cache[uid] = value
        return value

    def _decode_string(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> str:
        def build() -> str:
            value = self._field(fields, "NS.string")
            if value is None and "NS.bytes" in fields:
                raw = self._field(fields, "NS.bytes")
                if isinstance(raw, bytes):
                    try:
                        value = raw.decode("utf-8")
                    except UnicodeDecodeError as e:
                        raise MalformedArchive(f"{class_name} {uid} is not valid UTF-8") from e
            if not isinstance(value, str):
                raise MalformedArchive(f"{class_name} {uid} has no string value")
            return value

        return self._decode_value(uid, build)

    def _decode_data(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> bytes:
        def build() -> bytes:
            value = self._field(fields, "NS.data")
            if not isinstance(value, bytes):
                raise MalformedArchive(f"{class_name} {uid} has no data value")
            return value

        return self._decode_value(uid, build)

    def _decode_number(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> int | float:
        # Numbers are normally stored inline; keyed form is rare
        def build() -> int | float:
            for key in ("NS.intval", "NS.dblval", "NS.number"):
                value = self._field(fields, key)
                if isinstance(value, (int, float)) and not isinstance(value, bool):
                    return value
            raise MalformedArchive(f"{class_name} {uid} has no numeric value")

        return self._decode_value(uid, build)

    def _decode_uuid(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> str:
        def build() -> str:
            raw = self._field(fields, "NS.uuidbytes")
            if not isinstance(raw, bytes) or len(raw) != 16:
                raise MalformedArchive(f"{class_name} {uid} does not hold 16 UUID bytes")
            return str(uuid.UUID(bytes=raw)).upper()

        return self._decode_value(uid, build)

    def _decode_url(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]) -> str:
        def build() -> str:
            relative = self._field(fields, "NS.relative")
            if not isinstance(relative, str):
                raise MalformedArchive(f"{class_name} {uid} has no relative string")
            base = self._field(fields, "NS.base")
            if base is None:
                return relative
            if not isinstance(base, str):
                raise MalformedArchive(f"{class_name} {uid} has an invalid base URL")
            return join_url(base, relative)

        return self._decode_value(uid, build)

    def _decode_date(self, uid: int, class_name: str, classes: list[str], fields: dict[str, int]):
        def build():
            seconds = self._field(fields, "NS.time")
            if not isinstance(seconds, (int, float)) or isinstance(seconds, bool):
                raise MalformedArchive(f"{class_name} {uid} has no time value")
            try:
                return APPLE_EPOCH + timedelta(seconds=seconds)
            except OverflowError as e:
                raise MalformedArchive(f"{class_name} {uid} time out of range") from e

        return self._decode_value(uid, build)


def join_url(base: str, relative: str) -> str:
    """Resolve a relative URL string against its base URL string."""
    return urljoin(base, relative)


def is_store(value: Any) -> bool:
    return isinstance(value, KeyedObject) and value.class_name == STORE_CLASS


def load_store(data: bytes) -> KeyedObject:
    """
    Locate the root ``Storage`` object of a BTM archive.

    The store is read from the ``store`` root entry. Older files wrap a
    complete nested archive in a ``storeData`` byte string instead; its
    own ``root`` entry is then the store.

    Raises:
        MalformedArchive: If neither entry yields a ``Storage`` object
    """
    archive = KeyedArchive(data)

    store = archive.decode_top("store")
    if is_store(store):
        logger.debug("decoded Storage object using 'store' key")
        return store

    store_data = archive.decode_top("storeData")
    if isinstance(store_data, bytes):
        try:
            nested = KeyedArchive(store_data)
            store = nested.decode_top("root")
        except MalformedArchive as e:
            raise MalformedArchive(f"root Store object not found ({e.reason})") from e
        if is_store(store):
            logger.debug("decoded Storage object using 'storeData' key")
            return store

    raise MalformedArchive("root Store object not found")
