# Models package
from shipyard.models.app import App
from shipyard.models.deployment_log import DeploymentLog
