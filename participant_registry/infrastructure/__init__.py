"""Infrastructure layer: document store implementations and observability."""
