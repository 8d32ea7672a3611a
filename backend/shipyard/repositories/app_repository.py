"""
Repository for App entity database operations.
"""
from shipyard.repositories.base import BaseRepository
from shipyard.models.app import App


class AppRepository(BaseRepository[App]):
    """Repository for App database operations."""

    model = App
