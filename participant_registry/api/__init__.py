"""HTTP API for the participant registry."""
