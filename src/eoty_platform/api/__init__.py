"""HTTP API for the EOTY platform."""
