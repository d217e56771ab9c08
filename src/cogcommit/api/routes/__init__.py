"""
API routes for CogCommit.
"""

from cogcommit.api.routes import sync, visuals

__all__ = ["sync", "visuals"]
