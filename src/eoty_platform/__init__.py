"""EOTY platform: forum moderation pipeline and lesson video sessions."""

__version__ = "0.1.0"
