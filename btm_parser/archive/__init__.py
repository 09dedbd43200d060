"""Binary container reader and keyed-archive graph resolver."""

from .container import BinaryContainer, UID
from .keyed import ALLOWED_CLASSES, KeyedArchive, KeyedObject, load_store

__all__ = ["BinaryContainer", "UID", "ALLOWED_CLASSES", "KeyedArchive", "KeyedObject", "load_store"]
