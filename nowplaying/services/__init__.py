from nowplaying.services.playback import PlaybackSessionManager, StartResult, EndResult
from nowplaying.services.crediting import CreditingEngine, should_credit
from nowplaying.services.sweep import end_stale_sessions

__all__ = [
    "PlaybackSessionManager",
    "StartResult",
    "EndResult",
    "CreditingEngine",
    "should_credit",
    "end_stale_sessions"
]
