"""Terminal rendering for cine-admin."""

from .tables import build_record_table, build_statistics_table, format_cell

__all__ = ["build_record_table", "build_statistics_table", "format_cell"]
