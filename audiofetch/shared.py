"""State shared between an audio file reader and its background fetcher."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from enum import Enum

from .range_set import Range, RangeSet

# Smallest block requested from the server in one request (typical for seeks).
MINIMUM_DOWNLOAD_SIZE = 1024 * 16

# Amount of data requested when a file is first opened.
INITIAL_DOWNLOAD_SIZE = 1024 * 16

# Ping time assumed before one has been measured, in seconds.
INITIAL_PING_TIME_ESTIMATE = 0.5

# Measured ping times are capped at this many seconds.
MAXIMUM_ASSUMED_PING_TIME = 1.5

# Seconds of audio that must be present before playback starts.
READ_AHEAD_BEFORE_PLAYBACK = 1.0

# Same as READ_AHEAD_BEFORE_PLAYBACK, as a multiple of the ping time.
READ_AHEAD_BEFORE_PLAYBACK_ROUNDTRIPS = 2.0

# Seconds of audio requested ahead of the read position during playback.
READ_AHEAD_DURING_PLAYBACK = 5.0

# Same as READ_AHEAD_DURING_PLAYBACK, as a multiple of the ping time.
READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS = 10.0

# Prefetch while pending bytes < factor * ping time * nominal data rate.
PREFETCH_THRESHOLD_FACTOR = 4.0

# Prefetch while pending bytes < factor * ping time * measured download rate.
FAST_PREFETCH_THRESHOLD_FACTOR = 1.5

# Prefetch requests are only sent while fewer than this many are pending.
MAX_PREFETCH_REQUESTS = 4

# Seconds to wait for download status updates.
DOWNLOAD_TIMEOUT = 1.0


class DownloadStrategy(Enum):
    RANDOM_ACCESS = "random_access"
    STREAMING = "streaming"


class LoaderCommand(Enum):
    """Commands to the stream loader that carry no data."""

    RANDOM_ACCESS_MODE = "random_access_mode"
    STREAM_MODE = "stream_mode"
    CLOSE = "close"


@dataclass(frozen=True)
class FetchCommand:
    """Ask the stream loader to fetch a range of the file."""

    range: Range


@dataclass
class DownloadStatus:
    requested: RangeSet = field(default_factory=RangeSet)
    downloaded: RangeSet = field(default_factory=RangeSet)


class AudioFileShared:
    """Download progress of one file; guard ``download_status`` with ``cond``."""

    def __init__(self, file_id: bytes, file_size: int, stream_data_rate: int) -> None:
        if file_size < 0:
            raise ValueError(f"file size must be non-negative, got {file_size}")
        if stream_data_rate < 0:
            raise ValueError(f"data rate must be non-negative, got {stream_data_rate}")
        self.file_id = bytes(file_id)
        self.file_size = file_size
        self.stream_data_rate = stream_data_rate
        self.cond = threading.Condition()
        self.download_status = DownloadStatus()
        # Start in random access mode until told otherwise.
        self.download_strategy = DownloadStrategy.RANDOM_ACCESS
        self.number_of_open_requests = 0
        self.ping_time_ms = 0
        self.read_position = 0

    def ping_time(self) -> float:
        """Return the current ping time estimate in seconds."""
        return self.ping_time_ms / 1000