"""
In-memory application record and its lifecycle states.
"""
import secrets
import time
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import Dict, FrozenSet, Optional
from urllib.parse import urlparse


class AppStatus(str, Enum):
    """Lifecycle status of an application."""
    IDLE = "idle"
    DEPLOYING = "deploying"
    RUNNING = "running"
    ERROR = "error"


ALLOWED_TRANSITIONS: Dict[AppStatus, FrozenSet[AppStatus]] = {
    AppStatus.IDLE: frozenset({AppStatus.DEPLOYING}),
    AppStatus.DEPLOYING: frozenset({AppStatus.RUNNING, AppStatus.ERROR}),
    # Out-of-band failure report only; teardown goes straight to deletion
    AppStatus.RUNNING: frozenset({AppStatus.ERROR}),
    AppStatus.ERROR: frozenset(),
}


def can_transition(current: AppStatus, target: AppStatus) -> bool:
    """Check whether ``current -> target`` is a legal lifecycle step."""
    return target in ALLOWED_TRANSITIONS[current]


@dataclass
class Application:
    """One deployable unit tracked by the controller."""

    id: str
    name: str
    repo_url: str
    port: int
    status: AppStatus = AppStatus.IDLE
    language: Optional[str] = None
    container_ref: Optional[str] = None
    image_ref: Optional[str] = None
    error_message: Optional[str] = None
    created_at: datetime = field(default_factory=datetime.utcnow)
    updated_at: datetime = field(default_factory=datetime.utcnow)

    def copy(self) -> "Application":
        """Return a detached copy safe to hand to callers."""
        return replace(self)

    @property
    def holds_port(self) -> bool:
        """Errored applications no longer count towards port uniqueness."""
        return self.status != AppStatus.ERROR


def generate_app_id() -> str:
    """
    Generate a new application id.

    Format is ``app_<unix seconds>_<sub-second micros>_<random hex>``; the
    random suffix keeps ids unique for creations in the same microsecond.
    """
    now_ns = time.time_ns()
    seconds, nanos = divmod(now_ns, 1_000_000_000)
    return f"app_{seconds}_{nanos // 1000:06d}_{secrets.token_hex(3)}"


def derive_name(repo_url: str) -> str:
    """
    Derive a display name from a repository URL.

    Uses the last path segment with any ``.git`` suffix removed,
    falling back to ``"app"``.
    """
    path = urlparse(repo_url).path or repo_url
    segment = path.rstrip("/").rsplit("/", 1)[-1]
    # scp-style URLs (git@host:org/repo.git) keep the host part in the segment
    segment = segment.rsplit(":", 1)[-1]
    if segment.endswith(".git"):
        segment = segment[: -len(".git")]
    return segment or "app"
