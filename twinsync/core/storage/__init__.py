"""Twin and state repositories.

Import submodules directly, e.g. ``from twinsync.core.storage.twins import TwinRepository``.
"""

__all__ = [
    "twins",
    "states",
]
