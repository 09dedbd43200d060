"""Bit tables for item type and disposition values."""

# Item type bits (values are not contiguous)
TYPE_APP = 0x2
TYPE_LOGIN_ITEM = 0x4
TYPE_AGENT = 0x8
TYPE_DAEMON = 0x10
TYPE_DEVELOPER = 0x20
TYPE_LEGACY = 0x10000
TYPE_CURATED = 0x80000

# Disposition bits
DISPOSITION_ENABLED = 0x1
DISPOSITION_ALLOWED = 0x2
DISPOSITION_HIDDEN = 0x4
DISPOSITION_NOTIFIED = 0x8

# Output order is fixed
TYPE_WORDS: tuple[tuple[int, str], ...] = (
    (TYPE_CURATED, "curated"),
    (TYPE_LEGACY, "legacy"),
    (TYPE_DEVELOPER, "developer"),
    (TYPE_DAEMON, "daemon"),
    (TYPE_AGENT, "agent"),
    (TYPE_LOGIN_ITEM, "login item"),
    (TYPE_APP, "app"),
)

DISPOSITION_WORDS: tuple[tuple[int, str, str], ...] = (
    (DISPOSITION_ENABLED, "enabled", "disabled"),
    (DISPOSITION_ALLOWED, "allowed", "disallowed"),
    (DISPOSITION_HIDDEN, "hidden", "visible"),
    (DISPOSITION_NOTIFIED, "notified", "not notified"),
)


def has_type(value: int, flag: int) -> bool:
    """Check if any bit of ``flag`` is set in a type value."""
    return bool(value & flag)


def type_details(value: int) -> str:
    """
    Describe an item type bitmask.

    Args:
        value: Raw 64-bit type value from the item record

    Returns:
        Space-separated words for each set bit, in fixed order
        (empty string if no known bit is set)

    Example:
        >>> type_details(0x80010)
        'curated daemon'
    """
    words = [word for bit, word in TYPE_WORDS if value & bit]
    return " ".join(words).strip()


def disposition_details(value: int) -> str:
    """
    Describe an item disposition bitmask.

    Every bit pair contributes exactly one word, so the result always
    has four entries.

    Example:
        >>> disposition_details(10)
        'disabled allowed visible notified'
    """
    words = [on if value & bit else off for bit, on, off in DISPOSITION_WORDS]
    return " ".join(words)
