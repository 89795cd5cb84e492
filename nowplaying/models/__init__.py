from nowplaying.models.playback_session import PlaybackSession, PlaybackState, EndReason, OPEN_STATES
from nowplaying.models.library_progress import LibraryProgress
from nowplaying.models.media import Media, MediaInteraction, AUDIO_CONTENT_TYPES
from nowplaying.models.settings import AppSettings
from nowplaying.models.sweep_run import SweepRun

__all__ = [
    "PlaybackSession",
    "PlaybackState",
    "EndReason",
    "OPEN_STATES",
    "LibraryProgress",
    "Media",
    "MediaInteraction",
    "AUDIO_CONTENT_TYPES",
    "AppSettings",
    "SweepRun"
]
