"""Production adapters for application ports."""
