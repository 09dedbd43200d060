"""Decode-and-extract pipeline for BTM files."""

import logging
import struct
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

from btm_parser.archive.keyed import load_store
from btm_parser.bundle import resolve_executable_paths
from btm_parser.config import Config
from btm_parser.errors import (
    BTMParserError,
    Diagnostic,
    FileNotFound,
    MalformedArchive,
    record_skipped,
)
from btm_parser.mapper import map_store, to_parsed_item
from btm_parser.models import ItemRecord, ParsedItem, ParsedResult

logger = logging.getLogger(__name__)


def parse(path: Path | str, config: Config | None = None) -> ParsedResult:
    """
    Parse a BackgroundItems-v*.btm file.

    Args:
        path: Location of the BTM file
        config: Parsing options (defaults to :class:`Config()`)

    Returns:
        ParsedResult with validated items grouped by user scope

    Raises:
        FileNotFound: If ``path`` does not exist (carries the exact path)
        MalformedArchive: If the archive structure is invalid
        BTMParserError: If the file exists but cannot be read

    Example:
        >>> result = parse("/private/var/db/com.apple.backgroundtaskmanagement/BackgroundItems-v13.btm")
        >>> result.summary()
        {'DCA7C5DA-F8EE-4910-A2F5-C32EDCAC43FC': 12}
    """
    file_path = str(path)
    if not Path(file_path).exists():
        raise FileNotFound(file_path)

    try:
        data = Path(file_path).read_bytes()
    except FileNotFoundError as e:
        raise FileNotFound(file_path) from e
    except OSError as e:
        raise BTMParserError(f"Could not read {file_path}: {e}") from e

    return parse_bytes(data, file_path, config)


def parse_bytes(data: bytes, path: str = "<memory>", config: Config | None = None) -> ParsedResult:
    """
    Parse BTM archive bytes already in memory.

    Archive-structure failures abort the parse. Per-record problems are
    collected in ``ParsedResult.diagnostics``, logged, and never fail it.
    """
    config = config or Config()
    diagnostics: list[Diagnostic] = []

    try:
        store = map_store(load_store(data), diagnostics)
    except (struct.error, RecursionError, IndexError) as e:
        raise MalformedArchive(f"archive could not be decoded: {e}") from e

    items_by_user = {
        scope: _extract_scope(scope, records, diagnostics)
        for scope, records in store.items_by_user_identifier.items()
    }

    if config.resolve_executables:
        items_by_user = _resolve_scopes(items_by_user, diagnostics, config)

    for diagnostic in diagnostics:
        logger.warning("%s", diagnostic)
    logger.info(
        "decoded %d items across %d user scopes from %s",
        sum(len(items) for items in items_by_user.values()),
        len(items_by_user),
        path,
    )

    return ParsedResult(
        path=path,
        items_by_user_identifier=items_by_user,
        mdm_payloads_by_identifier=dict(store.mdm_payloads_by_identifier),
        diagnostics=diagnostics,
    )


def _extract_scope(scope: str, records: list[ItemRecord], diagnostics: list[Diagnostic]) -> list[ParsedItem]:
    """Validate one scope's records, dropping those missing required fields."""
    items = []
    for record in records:
        item = to_parsed_item(record)
        if item is None:
            diagnostics.append(record_skipped(
                scope,
                f"missing {', '.join(record.missing_required())}",
                identifier=record.identifier,
            ))
            continue
        items.append(item)
    return items


def _resolve_scopes(
    items_by_user: dict[str, list[ParsedItem]],
    diagnostics: list[Diagnostic],
    config: Config,
) -> dict[str, list[ParsedItem]]:
    """
    Run executable path resolution once per user scope.

    Scopes share no state, so with ``config.parallel`` they run on a
    thread pool. Results and diagnostics keep scope order either way.
    """
    scopes = list(items_by_user)

    def resolve(scope: str) -> tuple[list[ParsedItem], list[Diagnostic]]:
        scope_diagnostics: list[Diagnostic] = []
        resolved = resolve_executable_paths(
            scope, items_by_user[scope], scope_diagnostics, root=config.bundle_root
        )
        return resolved, scope_diagnostics

    if config.parallel and len(scopes) > 1:
        with ThreadPoolExecutor(max_workers=min(len(scopes), 8)) as executor:
            results = list(executor.map(resolve, scopes))
    else:
        results = [resolve(scope) for scope in scopes]

    resolved_by_user = {}
    for scope, (resolved, scope_diagnostics) in zip(scopes, results):
        resolved_by_user[scope] = resolved
        diagnostics.extend(scope_diagnostics)
    return resolved_by_user
