"""Packaged deployment profiles."""
