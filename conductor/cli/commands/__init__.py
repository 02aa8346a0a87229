"""Conductor CLI commands."""
