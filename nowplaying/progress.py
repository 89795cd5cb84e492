from dataclasses import dataclass
from typing import Optional
from datetime import datetime


@dataclass
class SweepProgress:
    """Tracks the sweep currently in flight."""
    is_running: bool = False
    run_id: Optional[int] = None
    current_session: str = ""
    ended_count: int = 0
    credited_count: int = 0
    failed_count: int = 0
    total_count: int = 0
    started_at: Optional[datetime] = None

    def start(self, run_id: Optional[int], total: int):
        self.is_running = True
        self.run_id = run_id
        self.current_session = ""
        self.ended_count = 0
        self.credited_count = 0
        self.failed_count = 0
        self.total_count = total
        self.started_at = datetime.now()

    def update(self, session_id: str, success: bool, credited: bool = False):
        self.current_session = session_id
        if success:
            self.ended_count += 1
            if credited:
                self.credited_count += 1
        else:
            self.failed_count += 1

    def finish(self):
        self.is_running = False
        self.current_session = ""

    def to_dict(self) -> dict:
        return {
            "is_running": self.is_running,
            "run_id": self.run_id,
            "current_session": self.current_session,
            "ended_count": self.ended_count,
            "credited_count": self.credited_count,
            "failed_count": self.failed_count,
            "total_count": self.total_count,
            "started_at": self.started_at.isoformat() if self.started_at else None
        }


# Global progress instance
progress = SweepProgress()
