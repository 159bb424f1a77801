"""Shared helpers: settings, logging and timing."""
