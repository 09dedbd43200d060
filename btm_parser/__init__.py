"""Decoder for macOS Background Task Management (BTM) persistence stores."""

__version__ = "0.1.0"

from btm_parser.errors import BTMParserError, FileNotFound, MalformedArchive
from btm_parser.models import ParsedItem, ParsedResult
from btm_parser.parser import parse, parse_bytes

__all__ = [
    "__version__",
    "BTMParserError",
    "FileNotFound",
    "MalformedArchive",
    "ParsedItem",
    "ParsedResult",
    "parse",
    "parse_bytes",
]
