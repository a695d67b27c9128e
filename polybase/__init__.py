"""Inventory of course handouts and packs kept in SQLite, with a command-line tool."""

__version__ = "0.1.0"