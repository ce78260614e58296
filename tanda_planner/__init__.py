"""Tanda planner: oracle-assisted assembly of tango milonga playlists."""

__version__ = "0.3.0"
