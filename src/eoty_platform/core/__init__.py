"""Core configuration, errors, roles and security helpers."""
