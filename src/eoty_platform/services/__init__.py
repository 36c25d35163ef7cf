"""Service layer for the EOTY platform."""
