"""Readable audio files that are either cached locally or streamed on demand."""

from __future__ import annotations

import contextlib
import io
import logging
import os
import queue
import struct
import tempfile
import time
from typing import Any, BinaryIO, Callable, Iterable, Optional

from .range_set import Range, RangeSet
from .receive import audio_file_fetch, request_range
from .shared import (
    DOWNLOAD_TIMEOUT,
    INITIAL_DOWNLOAD_SIZE,
    INITIAL_PING_TIME_ESTIMATE,
    READ_AHEAD_DURING_PLAYBACK,
    READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS,
    AudioFileShared,
    DownloadStrategy,
    FetchCommand,
    LoaderCommand,
)

logger = logging.getLogger(__name__)

# Channel header that carries the file size, in 4-byte words.
_FILE_SIZE_HEADER = 0x3


class StreamLoaderController:
    """Steers the background loader of a file; inert for cached files."""

    def __init__(
        self,
        commands: Optional[queue.Queue],
        shared: Optional[AudioFileShared],
        file_size: int,
    ) -> None:
        self._commands = commands
        self._shared = shared
        self._file_size = file_size

    def __len__(self) -> int:
        return self._file_size

    def range_available(self, range_: Range) -> bool:
        if self._shared is not None:
            with self._shared.cond:
                downloaded = self._shared.download_status.downloaded
                return range_.length <= downloaded.contained_length_from_value(range_.start)
        return range_.length <= len(self) - range_.start

    def range_to_end_available(self) -> bool:
        if self._shared is None:
            return True
        read_position = self._shared.read_position
        return self.range_available(Range(read_position, max(0, len(self) - read_position)))

    def ping_time(self) -> float:
        """Return the ping time estimate in seconds, 0 for cached files."""
        if self._shared is None:
            return 0.0
        return self._shared.ping_time()

    def _send(self, command: Any) -> None:
        if self._commands is not None:
            self._commands.put(command)

    def fetch(self, range_: Range) -> None:
        """Ask the loader to fetch a range of the file."""
        self._send(FetchCommand(range_))

    def fetch_blocking(self, range_: Range) -> None:
        """Fetch a range of the file and wait until it has been downloaded."""
        size = len(self)
        if range_.start >= size:
            range_ = Range(range_.start, 0)
        elif range_.end() > size:
            range_ = Range(range_.start, size - range_.start)

        self.fetch(range_)

        shared = self._shared
        if shared is None:
            return
        with shared.cond:
            status = shared.download_status
            while range_.length > status.downloaded.contained_length_from_value(range_.start):
                shared.cond.wait(DOWNLOAD_TIMEOUT)
                pending = status.downloaded.union(status.requested)
                if range_.length > pending.contained_length_from_value(range_.start):
                    # Neither downloaded nor requested, e.g. after a network error.
                    self.fetch(range_)

    def fetch_next(self, length: int) -> None:
        if self._shared is not None:
            self.fetch(Range(self._shared.read_position, length))

    def fetch_next_blocking(self, length: int) -> None:
        if self._shared is not None:
            self.fetch_blocking(Range(self._shared.read_position, length))

    def set_random_access_mode(self) -> None:
        self._send(LoaderCommand.RANDOM_ACCESS_MODE)

    def set_stream_mode(self) -> None:
        self._send(LoaderCommand.STREAM_MODE)

    def close(self) -> None:
        """Stop loading; no more data is fetched for this file."""
        self._send(LoaderCommand.CLOSE)


class AudioFileStreaming:
    """A file being downloaded; reads block until their data has arrived."""

    def __init__(self, read_file: BinaryIO, commands: queue.Queue, shared: AudioFileShared) -> None:
        self._read_file = read_file
        self.commands = commands
        self.shared = shared
        self._position = 0

    def read(self, size: int = -1) -> bytes:
        shared = self.shared
        offset = self._position
        if offset >= shared.file_size:
            return b""

        remaining = shared.file_size - offset
        length = remaining if size is None or size < 0 else min(size, remaining)

        with shared.cond:
            strategy = shared.download_strategy
        if strategy is DownloadStrategy.STREAMING:
            # Read ahead beyond what was asked for.
            rate = shared.stream_data_rate
            read_ahead = max(
                int(READ_AHEAD_DURING_PLAYBACK * rate),
                int(READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS * shared.ping_time() * rate),
            )
            length_to_request = min(length + read_ahead, remaining)
        else:
            length_to_request = length

        to_request = RangeSet([Range(offset, length_to_request)])
        with shared.cond:
            status = shared.download_status
            to_request.subtract_range_set(status.downloaded)
            to_request.subtract_range_set(status.requested)
            for range_ in to_request:
                self.commands.put(FetchCommand(range_))

            if length == 0:
                return b""

            message_printed = False
            while offset not in status.downloaded:
                if shared.download_strategy is DownloadStrategy.STREAMING and not message_printed:
                    logger.debug(
                        "Stream waiting for download of file position %d. "
                        "Downloaded ranges: %s. Pending ranges: %s",
                        offset,
                        status.downloaded,
                        status.requested.minus(status.downloaded),
                    )
                    message_printed = True
                shared.cond.wait(DOWNLOAD_TIMEOUT)
            available = status.downloaded.contained_length_from_value(offset)

        self._read_file.seek(offset)
        data = self._read_file.read(min(length, available)) or b""

        if message_printed:
            logger.debug(
                "Read at position %d completed. %d bytes returned, %d bytes were requested.",
                offset,
                len(data),
                length,
            )

        self._position = offset + len(data)
        with shared.cond:
            shared.read_position = self._position
        return data

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        self._position = self._read_file.seek(offset, whence)
        with self.shared.cond:
            self.shared.read_position = self._position
        return self._position

    def tell(self) -> int:
        return self._position


def _stream_size(stream: BinaryIO) -> int:
    position = stream.tell()
    size = stream.seek(0, io.SEEK_END)
    stream.seek(position)
    return size


class AudioFile:
    """An audio file read from the local cache or streamed from the server."""

    def __init__(
        self,
        cached: Optional[BinaryIO] = None,
        streaming: Optional[AudioFileStreaming] = None,
    ) -> None:
        if (cached is None) == (streaming is None):
            raise ValueError("exactly one of cached and streaming must be given")
        self._cached = cached
        self._streaming = streaming

    @property
    def _source(self) -> Any:
        return self._cached if self._cached is not None else self._streaming

    def read(self, size: int = -1) -> bytes:
        return self._source.read(size)

    def seek(self, offset: int, whence: int = io.SEEK_SET) -> int:
        return self._source.seek(offset, whence)

    def is_cached(self) -> bool:
        return self._cached is not None

    def stream_loader_controller(self) -> StreamLoaderController:
        if self._streaming is not None:
            shared = self._streaming.shared
            return StreamLoaderController(self._streaming.commands, shared, shared.file_size)
        return StreamLoaderController(None, None, _stream_size(self._cached))


def _open_temp_pair(size: int) -> tuple[BinaryIO, BinaryIO]:
    """Open an unbuffered writer and reader on a new temporary file of ``size`` bytes."""
    fd, path = tempfile.mkstemp(prefix="audiofetch-")
    write_file = os.fdopen(fd, "w+b", buffering=0)
    write_file.truncate(size)
    write_file.seek(0)
    read_file = open(path, "rb", buffering=0)
    with contextlib.suppress(OSError):
        os.unlink(path)
    return write_file, read_file


def open_streaming(
    session: Any,
    file_id: bytes,
    initial_chunks: Iterable[bytes],
    initial_data_length: int,
    initial_request_sent_time: float,
    headers: Iterable[tuple[int, bytes]],
    on_complete: Optional[Callable[[BinaryIO], None]],
    streaming_data_rate: int,
) -> AudioFileStreaming:
    """Wait for the size header, then start the background fetch of the file."""
    size_header = next((data for header_id, data in headers if header_id == _FILE_SIZE_HEADER), None)
    if size_header is None:
        raise ConnectionError("channel closed before the file size header arrived")
    (words,) = struct.unpack(">I", bytes(size_header[:4]))
    size = words * 4

    shared = AudioFileShared(file_id, size, streaming_data_rate)
    write_file, read_file = _open_temp_pair(size)
    commands: queue.Queue = queue.Queue()

    session.spawn(
        audio_file_fetch,
        session,
        shared,
        initial_chunks,
        initial_request_sent_time,
        initial_data_length,
        write_file,
        commands,
        on_complete,
    )
    return AudioFileStreaming(read_file, commands, shared)


def open_audio_file(
    session: Any,
    file_id: bytes,
    bytes_per_second: int,
    play_from_beginning: bool,
) -> AudioFile:
    """Open a file from the session's cache, or start streaming it."""
    cache = session.cache()
    if cache is not None:
        cached = cache.file(file_id)
        if cached is not None:
            logger.debug("File %s already in cache", bytes(file_id).hex())
            return AudioFile(cached=cached)

    logger.debug("Downloading file %s", bytes(file_id).hex())

    initial_data_length = INITIAL_DOWNLOAD_SIZE
    if play_from_beginning:
        initial_data_length += max(
            int(READ_AHEAD_DURING_PLAYBACK * bytes_per_second),
            int(INITIAL_PING_TIME_ESTIMATE * READ_AHEAD_DURING_PLAYBACK_ROUNDTRIPS * bytes_per_second),
        )
    if initial_data_length % 4:
        initial_data_length += 4 - initial_data_length % 4

    request_sent_time = time.monotonic()
    channel = request_range(session, file_id, 0, initial_data_length)

    def on_complete(output: BinaryIO) -> None:
        if cache is not None:
            logger.debug("File %s complete, saving to cache", bytes(file_id).hex())
            cache.save_file(file_id, output)
        else:
            logger.debug("File %s complete", bytes(file_id).hex())

    streaming = open_streaming(
        session,
        file_id,
        channel.chunks(),
        initial_data_length,
        request_sent_time,
        channel.headers(),
        on_complete,
        bytes_per_second,
    )
    return AudioFile(streaming=streaming)