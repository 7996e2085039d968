"""Shared test helpers.

Usage:
    from tests.helpers import ChangeRecorder, drain_callbacks
"""

from tests.helpers.live_updates import ChangeRecorder, drain_callbacks, wait_until

__all__ = ["ChangeRecorder", "drain_callbacks", "wait_until"]
