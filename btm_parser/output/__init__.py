"""Output rendering module."""

from .render import render_json, render_table

__all__ = ["render_json", "render_table"]
