"""
App model for persisted application records.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text

from shipyard.core.database import Base


class App(Base):
    """Persisted application record."""

    __tablename__ = "apps"

    id = Column(String(64), primary_key=True)
    name = Column(String(255), nullable=False)
    repo_url = Column(String(1000), nullable=False)
    language = Column(String(50), nullable=True)
    port = Column(Integer, nullable=False, index=True)
    container_id = Column(String(128), nullable=True)
    image_ref = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default="idle", index=True)  # 'idle', 'deploying', 'running', 'error'
    error_msg = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
    updated_at = Column(DateTime, default=datetime.utcnow, nullable=False)
