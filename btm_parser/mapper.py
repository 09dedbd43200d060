"""Schema mapping from decoded archive objects to domain models."""

import logging
from typing import Any, Callable

from btm_parser.archive.keyed import ITEM_CLASS, STORE_CLASS, KeyedObject
from btm_parser.errors import Diagnostic, MalformedArchive, record_skipped
from btm_parser.flags import disposition_details, type_details
from btm_parser.models import ItemRecord, ParsedItem, Store

logger = logging.getLogger(__name__)

# Archive keys
ITEMS_BY_USER_KEY = "itemsByUserIdentifier"
MDM_PAYLOADS_KEY = "mdmPayloadsByIdentifier"

INT64_MIN = -(1 << 63)
INT64_MAX = (1 << 63) - 1


class RecordMappingError(ValueError):
    """A field of an item record has an unexpected type."""


def _string(value: Any, key: str) -> str | None:
    if value is None or isinstance(value, str):
        return value
    raise RecordMappingError(f"'{key}' should be a string, got {type(value).__name__}")


def _uuid(value: Any, key: str) -> str | None:
    value = _string(value, key)
    return value.upper() if value else value


def _int64(value: Any, key: str) -> int | None:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int):
        raise RecordMappingError(f"'{key}' should be an integer, got {type(value).__name__}")
    if not INT64_MIN <= value <= INT64_MAX:
        raise RecordMappingError(f"'{key}' value {value} does not fit in 64 bits")
    return value


def _string_list(value: Any, key: str) -> list[str] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise RecordMappingError(f"'{key}' should be an array of strings")
    return list(value)


def _string_set(value: Any, key: str) -> set[str] | None:
    if value is None:
        return None
    if not isinstance(value, (set, list)) or not all(isinstance(v, str) for v in value):
        raise RecordMappingError(f"'{key}' should be a set of strings")
    return set(value)


# Model field -> (archive key, coercion)
ITEM_FIELDS: dict[str, tuple[str, Callable[[Any, str], Any]]] = {
    "identifier": ("identifier", _string),
    "uuid": ("uuid", _uuid),
    "name": ("name", _string),
    "developer_name": ("developerName", _string),
    "team_identifier": ("teamIdentifier", _string),
    "bundle_identifier": ("bundleIdentifier", _string),
    "executable_path": ("executablePath", _string),
    "url": ("url", _string),
    "type": ("type", _int64),
    "disposition": ("disposition", _int64),
    "container": ("container", _string),
    "associated_bundle_identifiers": ("associatedBundleIdentifiers", _string_list),
    "embedded_items": ("embeddedItems", _string_set),
    "generation": ("generation", _int64),
}


def map_item_record(obj: KeyedObject) -> ItemRecord:
    """
    Map an archived ``ItemRecord`` object onto the :class:`ItemRecord` model.

    Absent keys keep the model defaults. Present keys must have the
    expected type.

    Raises:
        RecordMappingError: If a field has an unexpected type
        MalformedArchive: If a field references a disallowed class
    """
    if obj.class_name != ITEM_CLASS:
        raise RecordMappingError(f"expected {ITEM_CLASS}, got {obj.class_name}")

    values = {}
    for field_name, (key, coerce) in ITEM_FIELDS.items():
        value = coerce(obj.get(key), key)
        if value is not None:
            values[field_name] = value
    return ItemRecord(**values)


def map_store(obj: KeyedObject, diagnostics: list[Diagnostic]) -> Store:
    """
    Map the archived ``Storage`` object onto the :class:`Store` model.

    Entries that are not item records, or whose fields cannot be mapped,
    are dropped and reported through ``diagnostics``.

    Args:
        obj: Root ``Storage`` object from :func:`btm_parser.archive.keyed.load_store`
        diagnostics: List collecting non-fatal problems

    Returns:
        Store with records grouped by user scope, in archive order
    """
    if obj.class_name != STORE_CLASS:
        raise MalformedArchive(f"expected {STORE_CLASS}, got {obj.class_name}")

    raw_items = obj.get(ITEMS_BY_USER_KEY)
    if not isinstance(raw_items, dict):
        logger.warning("'%s' key missing or has unexpected type", ITEMS_BY_USER_KEY)
        raw_items = {}

    items_by_user: dict[str, list[ItemRecord]] = {}
    for scope, entries in raw_items.items():
        if not isinstance(scope, str) or not isinstance(entries, list):
            diagnostics.append(record_skipped(str(scope), "user scope is not an array of records"))
            continue

        records = []
        for position, entry in enumerate(entries):
            if not isinstance(entry, KeyedObject):
                diagnostics.append(record_skipped(scope, f"entry {position} is not an {ITEM_CLASS}"))
                continue
            try:
                records.append(map_item_record(entry))
            except RecordMappingError as e:
                identifier = entry.get("identifier")
                diagnostics.append(record_skipped(
                    scope,
                    f"entry {position}: {e}",
                    identifier=identifier if isinstance(identifier, str) else None,
                ))
        items_by_user[scope] = records

    mdm_payloads = obj.get(MDM_PAYLOADS_KEY)
    if mdm_payloads is None:
        mdm_payloads = {}
    elif not isinstance(mdm_payloads, dict):
        logger.warning("'%s' has unexpected type %s", MDM_PAYLOADS_KEY, type(mdm_payloads).__name__)
        mdm_payloads = {}

    return Store(
        items_by_user_identifier=items_by_user,
        mdm_payloads_by_identifier={str(k): v for k, v in mdm_payloads.items()},
    )


def to_parsed_item(record: ItemRecord) -> ParsedItem | None:
    """
    Convert a decoded record into an output item.

    Returns:
        ParsedItem, or None if ``identifier``, ``uuid`` or ``name`` is
        missing or empty
    """
    if record.missing_required():
        return None

    return ParsedItem(
        identifier=record.identifier,
        uuid=record.uuid,
        name=record.name,
        developer_name=record.developer_name,
        team_identifier=record.team_identifier,
        type=record.type,
        type_details=type_details(record.type),
        disposition=record.disposition,
        disposition_details=disposition_details(record.disposition),
        url=record.url,
        executable_path=record.executable_path,
        bundle_identifier=record.bundle_identifier,
        container=record.container,
        associated_bundle_identifiers=record.associated_bundle_identifiers,
        generation=record.generation,
    )
