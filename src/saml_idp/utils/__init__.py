"""Utilities: exception hierarchy and injectable clock/ID sources."""
