"""Error taxonomy and non-fatal diagnostics for the BTM parser."""

from dataclasses import dataclass


class BTMParserError(Exception):
    """Base class for fatal parser errors."""


class FileNotFound(BTMParserError):
    """The requested BTM file does not exist."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"File not found: {path}")

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, FileNotFound):
            return NotImplemented
        return self.path == other.path

    def __hash__(self) -> int:
        return hash((FileNotFound, self.path))


class MalformedArchive(BTMParserError):
    """The archive structure is invalid or contains a disallowed class."""

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(f"Malformed archive: {reason}")


class ConfigError(Exception):
    """Configuration file could not be read or is invalid."""


# Diagnostic kinds
RECORD_SKIPPED = "RecordSkipped"
PATH_RESOLUTION_WARNING = "PathResolutionWarning"


@dataclass(frozen=True)
class Diagnostic:
    """Non-fatal problem recorded while extracting records."""

    kind: str
    scope: str
    message: str
    identifier: str | None = None

    def __str__(self) -> str:
        subject = f" [{self.identifier}]" if self.identifier else ""
        return f"{self.kind} ({self.scope}){subject}: {self.message}"


def record_skipped(scope: str, message: str, identifier: str | None = None) -> Diagnostic:
    """Create a diagnostic for a record excluded from the output."""
    return Diagnostic(kind=RECORD_SKIPPED, scope=scope, message=message, identifier=identifier)


def path_resolution_warning(scope: str, message: str, identifier: str | None = None) -> Diagnostic:
    """Create a diagnostic for a failed bundle/manifest lookup."""
    return Diagnostic(kind=PATH_RESOLUTION_WARNING, scope=scope, message=message, identifier=identifier)
