"""Parent lookup for item records within one user scope."""

from typing import Sequence

from btm_parser.models import ParsedItem


def find_parent(item: ParsedItem, scope_items: Sequence[ParsedItem]) -> ParsedItem | None:
    """
    Find the logical parent of an item.

    The parent is the first record in ``scope_items`` (stored order) whose
    identifier equals the item's ``container``. Lookup never crosses user
    scopes; callers pass only the item's own scope. If several records share
    the identifier, the first one wins.

    Args:
        item: Record whose parent is wanted
        scope_items: All records of the item's user scope

    Returns:
        The parent record, or None if the item has no container or no
        record matches
    """
    if not item.container:
        return None
    for candidate in scope_items:
        if candidate is item:
            continue
        if candidate.identifier == item.container:
            return candidate
    return None


def parent_reference(item: ParsedItem, scope_items: Sequence[ParsedItem]) -> str | None:
    """Return the resolved parent identifier, or the raw container value if unresolved."""
    parent = find_parent(item, scope_items)
    if parent is not None:
        return parent.identifier
    return item.container or None
