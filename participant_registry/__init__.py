"""
Participant Registry - lifecycle and live views for participant records

Manages participant records held in a document store across the "new"
intake collection and the "permanent" collection, keeps the denormalized
statistics counter consistent with them, and serves live, sorted and
paginated views over both collections.
"""

__version__ = "0.1.0"
__all__ = ["__version__"]
