"""Bundle probing and executable path resolution for item records."""

import logging
import plistlib
from pathlib import Path, PurePosixPath
from typing import Sequence
from urllib.parse import unquote, urlparse
from xml.parsers.expat import ExpatError

from btm_parser.errors import Diagnostic, path_resolution_warning
from btm_parser.flags import TYPE_AGENT, TYPE_APP, TYPE_DAEMON, TYPE_LOGIN_ITEM, has_type
from btm_parser.hierarchy import find_parent
from btm_parser.models import ParsedItem

logger = logging.getLogger(__name__)

# (manifest location, executable directory) relative to the bundle root.
# Standard macOS bundles first, then flat bundles.
BUNDLE_LAYOUTS = (
    ("Contents/Info.plist", "Contents/MacOS"),
    ("Info.plist", ""),
)

EXECUTABLE_KEY = "CFBundleExecutable"


class BundleError(Exception):
    """A path is not a usable bundle or its manifest names no executable."""


def url_path(url: str) -> str:
    """
    Get the file-system path of a stored URL string.

    Works for ``file://`` URLs and bare (relative or absolute) paths.
    Percent escapes are decoded and a trailing slash is dropped.

    Example:
        >>> url_path("file:///Applications/1Password.app/")
        '/Applications/1Password.app'
    """
    parsed = urlparse(url)
    if parsed.scheme and parsed.scheme != "file":
        return ""
    path = unquote(parsed.path)
    if len(path) > 1:
        path = path.rstrip("/")
    return path


def _on_disk(path: str, root: str | None) -> Path:
    """Map a path from the archive onto the local file system."""
    if root:
        return Path(root).expanduser() / path.lstrip("/")
    return Path(path)


def bundle_executable(bundle_path: str, root: str | None = None) -> str:
    """
    Resolve the main executable of a bundle directory.

    Args:
        bundle_path: Bundle root as recorded in the archive
        root: Optional mount point that archive paths are relative to
            (e.g. an image of another system)

    Returns:
        ``<bundle>/Contents/MacOS/<CFBundleExecutable>`` (or
        ``<bundle>/<CFBundleExecutable>`` for flat bundles)

    Raises:
        BundleError: If the directory, manifest, manifest key or executable
            is missing or unreadable
    """
    if not bundle_path:
        raise BundleError("empty bundle path")

    bundle_dir = _on_disk(bundle_path, root)
    if not bundle_dir.is_dir():
        raise BundleError(f"not a bundle directory: {bundle_path}")

    for manifest_name, executable_dir in BUNDLE_LAYOUTS:
        manifest = bundle_dir / manifest_name
        if manifest.is_file():
            break
    else:
        raise BundleError(f"no Info.plist in bundle: {bundle_path}")

    try:
        with open(manifest, "rb") as f:
            info = plistlib.load(f)
    except (OSError, ValueError, ExpatError) as e:
        raise BundleError(f"unreadable manifest {manifest}: {e}") from e

    executable_name = info.get(EXECUTABLE_KEY) if isinstance(info, dict) else None
    if not executable_name or not isinstance(executable_name, str):
        raise BundleError(f"manifest has no {EXECUTABLE_KEY}: {bundle_path}")

    executable = PurePosixPath(bundle_path, executable_dir, executable_name)
    if not _on_disk(str(executable), root).exists():
        raise BundleError(f"executable missing: {executable}")
    return str(executable)


def _candidate_bundle(
    item: ParsedItem,
    scope_items: Sequence[ParsedItem],
) -> tuple[str | None, str]:
    """Return (bundle path or None, reason when None) for an item."""
    if has_type(item.type, TYPE_LOGIN_ITEM):
        parent = find_parent(item, scope_items)
        if parent is None or not parent.url or not item.url:
            return None, "could not find parent or parent/item URL for login item"
        # Joined verbatim: the item path is appended without a separator
        return url_path(parent.url) + url_path(item.url), ""

    if not item.url:
        return None, "missing URL for app item"
    path = url_path(item.url)
    if not path:
        return None, f"URL is not a file location: {item.url}"
    return path, ""


def resolve_executable_path(
    item: ParsedItem,
    scope_items: Sequence[ParsedItem],
    scope: str,
    diagnostics: list[Diagnostic],
    root: str | None = None,
) -> ParsedItem:
    """
    Resolve the executable of one login item or app record.

    Agents and daemons keep their decoded ``executable_path`` (their ``url``
    is the launchd manifest). Login items are looked up inside their parent
    bundle; apps use their own ``url``. Every other type is returned as is.

    Failures never raise: the item is returned unchanged and a
    ``PathResolutionWarning`` is appended to ``diagnostics``.
    """
    if has_type(item.type, TYPE_AGENT | TYPE_DAEMON):
        return item
    if not has_type(item.type, TYPE_LOGIN_ITEM | TYPE_APP):
        return item

    bundle_path, reason = _candidate_bundle(item, scope_items)
    if bundle_path is None:
        diagnostics.append(path_resolution_warning(scope, reason, identifier=item.identifier))
        return item

    try:
        executable = bundle_executable(bundle_path, root)
    except BundleError as e:
        diagnostics.append(path_resolution_warning(scope, str(e), identifier=item.identifier))
        return item

    logger.debug("resolved executable for %s: %s", item.identifier, executable)
    return item.model_copy(update={"executable_path": executable})


def resolve_executable_paths(
    scope: str,
    scope_items: Sequence[ParsedItem],
    diagnostics: list[Diagnostic],
    root: str | None = None,
) -> list[ParsedItem]:
    """
    Resolve executable paths for every record of one user scope.

    Parent lookups see the scope's records as mapped, before any update.

    Returns:
        New list with updated copies for resolved items
    """
    return [
        resolve_executable_path(item, scope_items, scope, diagnostics, root)
        for item in scope_items
    ]
