"""JSON schemas for profile validation."""
