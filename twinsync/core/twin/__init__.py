"""Digital Twin module.

Note: Import submodules directly to avoid circular imports.
e.g., from twinsync.core.twin.service import TwinsService
"""

__all__ = [
    "auth",
    "connectivity",
    "factory",
    "ingest",
    "middleware",
    "models",
    "notify",
    "service",
    "state",
]
