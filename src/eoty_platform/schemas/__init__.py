"""Pydantic schemas for the EOTY platform API."""
