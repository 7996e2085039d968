"""Application layer: ports and lifecycle services."""
