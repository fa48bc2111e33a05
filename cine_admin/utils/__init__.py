"""Utility helpers for cine-admin."""
