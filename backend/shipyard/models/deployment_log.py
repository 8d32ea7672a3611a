"""
Deployment log model for the append-only deployment event log.
"""
from datetime import datetime
from sqlalchemy import Column, String, DateTime, Integer, Text

from shipyard.core.database import Base


class DeploymentLog(Base):
    """One deployment event. Rows outlive the application they describe."""

    __tablename__ = "deployment_logs"

    id = Column(Integer, primary_key=True, autoincrement=True)
    app_id = Column(String(64), nullable=False, index=True)
    action = Column(String(50), nullable=False)  # 'deploy_start', 'deploy_error', 'deploy_success', 'deleted', 'reconciled'
    message = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False, index=True)
