from mediajobs.adapters.base import ExternalServiceAdapter
from mediajobs.adapters.download import VideoDownloadAdapter, VideoDownloadConfig
from mediajobs.adapters.separation import MvsepConfig, MvsepSeparationAdapter

__all__ = [
    "ExternalServiceAdapter",
    "MvsepConfig",
    "MvsepSeparationAdapter",
    "VideoDownloadAdapter",
    "VideoDownloadConfig",
]
