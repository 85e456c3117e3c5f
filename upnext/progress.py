from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Optional


class SyncPhase(str, Enum):
    STARTING = "starting"
    FETCHING_SEASONS = "fetching_seasons"
    SYNCING_EPISODES = "syncing_episodes"
    SYNCING_PROGRESS = "syncing_progress"
    COMPLETED = "completed"


@dataclass(frozen=True)
class SyncProgress:
    """What the progress callback receives after each show finishes."""
    current: int
    total: int
    show_id: int
    phase: SyncPhase
    season: Optional[int] = None
    error: Optional[Exception] = None

    @property
    def percentage(self) -> float:
        if self.total <= 0:
            return 0.0
        return self.current / self.total * 100

    @property
    def description(self) -> str:
        if self.phase is SyncPhase.SYNCING_EPISODES:
            return f"Syncing season {self.season}..."
        return {
            SyncPhase.STARTING: "Starting sync...",
            SyncPhase.FETCHING_SEASONS: "Fetching seasons...",
            SyncPhase.SYNCING_PROGRESS: "Syncing watched progress...",
            SyncPhase.COMPLETED: "Completed",
        }[self.phase]


@dataclass
class ProgressTracker:
    """Tracks the batch currently running, for status polling."""
    is_running: bool = False
    total_count: int = 0
    completed_count: int = 0
    failed_count: int = 0
    episodes_synced: int = 0
    started_at: Optional[datetime] = None
    finished_at: Optional[datetime] = None
    # show id -> (phase, season)
    phases: dict[int, tuple[SyncPhase, Optional[int]]] = field(default_factory=dict)

    def start(self, total: int):
        self.is_running = True
        self.total_count = total
        self.completed_count = 0
        self.failed_count = 0
        self.episodes_synced = 0
        self.started_at = datetime.now()
        self.finished_at = None
        self.phases = {}

    def set_phase(self, show_id: int, phase: SyncPhase, season: Optional[int] = None):
        self.phases[show_id] = (phase, season)

    def update(self, show_id: int, success: bool, episodes: int = 0):
        self.completed_count += 1
        if success:
            self.episodes_synced += episodes
        else:
            self.failed_count += 1
        self.phases.pop(show_id, None)

    def finish(self):
        self.is_running = False
        self.finished_at = datetime.now()
        self.phases = {}

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "total_count": self.total_count,
            "completed_count": self.completed_count,
            "failed_count": self.failed_count,
            "episodes_synced": self.episodes_synced,
            "in_progress": {
                str(show_id): {"phase": phase.value, "season": season}
                for show_id, (phase, season) in self.phases.items()
            },
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "finished_at": self.finished_at.isoformat() if self.finished_at else None
        }
