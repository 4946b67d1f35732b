"""Pluggable gateway modules grouped by responsibility."""
