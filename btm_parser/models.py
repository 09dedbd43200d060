"""Data models for decoded BTM stores and their item records."""

from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from btm_parser.errors import Diagnostic


class ItemRecord(BaseModel):
    """One persistence entry as decoded from the archive (not yet validated)."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    identifier: str | None = None
    uuid: str | None = None
    name: str | None = None
    developer_name: str | None = None
    team_identifier: str | None = None
    bundle_identifier: str | None = None
    executable_path: str | None = None
    url: str | None = Field(
        default=None,
        description="Manifest location for agents/daemons, bundle root for apps and login items",
    )
    type: int = 0
    disposition: int = 0
    container: str | None = Field(
        default=None,
        description="Identifier of the logical parent record (back-reference only)",
    )
    associated_bundle_identifiers: list[str] | None = None
    embedded_items: set[str] | None = None
    generation: int | None = None

    def missing_required(self) -> list[str]:
        """Return the names of required fields that are absent or empty."""
        return [name for name in ("identifier", "uuid", "name") if not getattr(self, name)]


class Store(BaseModel):
    """Top-level decoded ``Storage`` object."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    items_by_user_identifier: dict[str, list[ItemRecord]] = Field(default_factory=dict)
    mdm_payloads_by_identifier: dict[str, Any] = Field(default_factory=dict)


class ParsedItem(BaseModel):
    """Validated item record as presented in the output."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        json_schema_extra={
            "example": {
                "identifier": "4.com.1password.1password-launcher",
                "uuid": "86703457-9137-4467-AF13-B21883C26467",
                "name": "1Password Launcher",
                "developerName": "AgileBits Inc.",
                "teamIdentifier": "2BUA8C4S2C",
                "type": 4,
                "typeDetails": "login item",
                "disposition": 10,
                "dispositionDetails": "disabled allowed visible notified",
                "url": "/Contents/Library/LoginItems/1Password%20Launcher.app",
                "executablePath": "/Applications/1Password.app/Contents/Library/LoginItems/1Password Launcher.app/Contents/MacOS/1Password Launcher",
                "bundleIdentifier": "com.1password.1password-launcher",
                "container": "2.com.1password.1password",
                "generation": 4,
            }
        },
    )

    identifier: str = Field(min_length=1, description="Unique item identifier")
    uuid: str = Field(min_length=1, description="Item UUID in canonical uppercase form")
    name: str = Field(min_length=1, description="Display name")
    developer_name: str | None = None
    team_identifier: str | None = None
    type: int = Field(description="Raw type bitmask")
    type_details: str = Field(description="Type bits rendered as words")
    disposition: int = Field(description="Raw disposition bitmask")
    disposition_details: str = Field(description="Disposition bits rendered as words")
    url: str | None = None
    executable_path: str | None = None
    bundle_identifier: str | None = None
    container: str | None = Field(default=None, description="Parent reference")
    associated_bundle_identifiers: list[str] | None = None
    generation: int | None = None


class ParsedResult(BaseModel):
    """Complete result of parsing one BTM file."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    path: str = Field(description="Input file path")
    items_by_user_identifier: dict[str, list[ParsedItem]] = Field(default_factory=dict)
    mdm_payloads_by_identifier: dict[str, Any] = Field(default_factory=dict, exclude=True)
    diagnostics: list[Diagnostic] = Field(default_factory=list, exclude=True)

    def all_items(self) -> list[ParsedItem]:
        """Flatten items of every user scope, in scope order."""
        return [item for items in self.items_by_user_identifier.values() for item in items]

    def find(self, identifier: str, scope: str | None = None) -> ParsedItem | None:
        """Return the first item with ``identifier``, optionally within one scope."""
        scopes = [scope] if scope else list(self.items_by_user_identifier)
        for key in scopes:
            for item in self.items_by_user_identifier.get(key, []):
                if item.identifier == identifier:
                    return item
        return None

    def summary(self) -> dict[str, int]:
        """Get item counts per user scope."""
        return {scope: len(items) for scope, items in self.items_by_user_identifier.items()}
