"""Background download of audio file ranges over session channels."""

from __future__ import annotations

import logging
import queue
import struct
import time
from collections import deque
from dataclasses import dataclass
from typing import Any, BinaryIO, Callable, Iterable, Iterator, Optional, Protocol

from .range_set import Range, RangeSet
from .shared import (
    FAST_PREFETCH_THRESHOLD_FACTOR,
    MAX_PREFETCH_REQUESTS,
    MAXIMUM_ASSUMED_PING_TIME,
    MINIMUM_DOWNLOAD_SIZE,
    PREFETCH_THRESHOLD_FACTOR,
    AudioFileShared,
    DownloadStrategy,
    FetchCommand,
    LoaderCommand,
)

logger = logging.getLogger(__name__)

# Packet command used to request a range of an audio file.
_STREAM_CHUNK_COMMAND = 0x8

_REQUEST_HEADER = struct.Struct(">HBBHIII")
_REQUEST_TAIL = struct.Struct(">II")


class _Session(Protocol):
    def allocate_channel(self) -> tuple[int, "Channel"]: ...

    def send_packet(self, command: int, payload: bytes) -> None: ...

    def spawn(self, func: Callable[..., Any], *args: Any) -> None: ...

    def download_rate_estimate(self) -> int: ...


_END = object()


class Channel:
    """Header and data chunks arriving for one request, consumed as iterators."""

    def __init__(self) -> None:
        self._headers: queue.Queue = queue.Queue()
        self._data: queue.Queue = queue.Queue()
        self._error: Optional[BaseException] = None

    def push_header(self, header_id: int, payload: bytes) -> None:
        self._headers.put((header_id, bytes(payload)))

    def push_data(self, chunk: bytes) -> None:
        self._data.put(bytes(chunk))

    def close(self, error: Optional[BaseException] = None) -> None:
        """End both streams; if ``error`` is given, consumers see it raised."""
        self._error = error
        self._headers.put(_END)
        self._data.put(_END)

    def _drain(self, source: queue.Queue) -> Iterator[Any]:
        while True:
            item = source.get()
            if item is _END:
                # Leave the marker for any other consumer.
                source.put(_END)
                if self._error is not None:
                    raise self._error
                return
            yield item

    def headers(self) -> Iterator[tuple[int, bytes]]:
        return self._drain(self._headers)

    def chunks(self) -> Iterator[bytes]:
        return self._drain(self._data)


@dataclass(frozen=True)
class _ResponseTime:
    duration: float


@dataclass(frozen=True)
class _FileData:
    offset: int
    data: bytes


def build_range_request(channel_id: int, file_id: bytes, start: int, end: int) -> bytes:
    """Build the request payload for words ``start`` to ``end`` of a file."""
    return (
        _REQUEST_HEADER.pack(channel_id, 0, 1, 0x0000, 0x00000000, 0x00009C40, 0x00020000)
        + bytes(file_id)
        + _REQUEST_TAIL.pack(start, end)
    )


def request_range(session: _Session, file_id: bytes, offset: int, length: int) -> Channel:
    """Ask the server for ``length`` bytes at ``offset``; both must be 4-aligned."""
    if offset % 4 != 0:
        raise ValueError("Range request start positions must be aligned by 4 bytes.")
    if length % 4 != 0:
        raise ValueError("Range request range lengths must be aligned by 4 bytes.")
    start = offset // 4
    end = (offset + length) // 4

    channel_id, channel = session.allocate_channel()
    session.send_packet(_STREAM_CHUNK_COMMAND, build_range_request(channel_id, file_id, start, end))
    return channel


def receive_data(
    shared: AudioFileShared,
    file_data_queue: queue.Queue,
    chunks: Iterable[bytes],
    initial_offset: int,
    initial_length: int,
    request_sent_time: float,
) -> None:
    """Forward received chunks to ``file_data_queue``; release what never arrived."""
    offset = initial_offset
    remaining = initial_length

    with shared.cond:
        old_number_of_requests = shared.number_of_open_requests
        shared.number_of_open_requests += 1
    measure_ping_time = old_number_of_requests == 0

    failed = False
    try:
        for chunk in chunks:
            if measure_ping_time:
                duration = max(0.0, time.monotonic() - request_sent_time)
                file_data_queue.put(_ResponseTime(min(duration, MAXIMUM_ASSUMED_PING_TIME)))
                measure_ping_time = False
            data = bytes(chunk)
            file_data_queue.put(_FileData(offset, data))
            offset += len(data)
            if remaining < len(data):
                logger.warning(
                    "Data receiver for range %d (+%d) received more data from server than requested.",
                    initial_offset,
                    initial_length,
                )
                remaining = 0
            else:
                remaining -= len(data)
            if remaining == 0:
                break
    except Exception:  # the channel reports its failure by raising
        failed = True

    with shared.cond:
        if remaining > 0:
            shared.download_status.requested.subtract_range(Range(offset, remaining))
            shared.cond.notify_all()
        shared.number_of_open_requests -= 1

    if failed:
        logger.warning(
            "Error from channel for data receiver for range %d (+%d).",
            initial_offset,
            initial_length,
        )
    elif remaining > 0:
        logger.warning(
            "Data receiver for range %d (+%d) received less data from server than requested.",
            initial_offset,
            initial_length,
        )


class AudioFileFetch:
    """Writes received data to ``output`` and decides what to download next."""

    def __init__(
        self,
        session: _Session,
        shared: AudioFileShared,
        output: BinaryIO,
        file_data_queue: queue.Queue,
        on_complete: Optional[Callable[[BinaryIO], None]],
    ) -> None:
        self.session = session
        self.shared = shared
        self._output: Optional[BinaryIO] = output
        self._file_data_queue = file_data_queue
        self._on_complete = on_complete
        self._response_times: deque[float] = deque(maxlen=3)

    def download_range(self, offset: int, length: int) -> None:
        file_size = self.shared.file_size
        length = max(length, MINIMUM_DOWNLOAD_SIZE)

        if offset >= file_size or length == 0:
            return
        if offset + length > file_size:
            length = file_size - offset

        # Align to 4 bytes as the protocol requires.
        misalignment = offset % 4
        if misalignment:
            length += misalignment
            offset -= misalignment
        if length % 4:
            length += 4 - length % 4

        to_request = RangeSet([Range(offset, length)])
        with self.shared.cond:
            status = self.shared.download_status
            to_request.subtract_range_set(status.downloaded)
            to_request.subtract_range_set(status.requested)

            for range_ in to_request:
                channel = request_range(self.session, self.shared.file_id, range_.start, range_.length)
                status.requested.add_range(range_)
                self.session.spawn(
                    receive_data,
                    self.shared,
                    self._file_data_queue,
                    channel.chunks(),
                    range_.start,
                    range_.length,
                    time.monotonic(),
                )

    def pre_fetch_more_data(self, size: int, max_requests_to_send: int) -> None:
        bytes_to_go = size
        requests_to_go = max_requests_to_send
        file_size = self.shared.file_size

        while bytes_to_go > 0 and requests_to_go > 0:
            missing = RangeSet([Range(0, file_size)])
            with self.shared.cond:
                missing.subtract_range_set(self.shared.download_status.downloaded)
                missing.subtract_range_set(self.shared.download_status.requested)
                read_position = self.shared.read_position

            # Prefer data after the read position, then from the beginning.
            tail_end = RangeSet([Range(read_position, max(0, file_size - read_position))])
            tail_end = tail_end.intersection(missing)

            if tail_end:
                target = tail_end[0]
            elif missing:
                target = missing[0]
            else:
                return
            length = min(target.length, bytes_to_go)
            self.download_range(target.start, length)
            requests_to_go -= 1
            bytes_to_go -= length

    def handle_file_data(self, data: Any) -> bool:
        """Process one received item; return False once the file is complete."""
        if isinstance(data, _ResponseTime):
            self._response_times.append(data.duration)
            times = sorted(self._response_times)
            if len(times) == 2:
                ping_time = (times[0] + times[1]) / 2
            else:
                ping_time = times[len(times) // 2]
            micros = int(round(ping_time * 1_000_000))
            with self.shared.cond:
                self.shared.ping_time_ms = micros // 1000
            return True

        if self._output is None:
            raise RuntimeError("file data received after the download finished")
        self._output.seek(data.offset)
        self._output.write(data.data)

        with self.shared.cond:
            downloaded = self.shared.download_status.downloaded
            downloaded.add_range(Range(data.offset, len(data.data)))
            self.shared.cond.notify_all()
            full = downloaded.contained_length_from_value(0) >= self.shared.file_size

        if full:
            self.finish()
            return False
        return True

    def handle_stream_loader_command(self, command: Any) -> bool:
        """Process one loader command; return False when asked to close."""
        if isinstance(command, FetchCommand):
            self.download_range(command.range.start, command.range.length)
        elif command is LoaderCommand.RANDOM_ACCESS_MODE:
            with self.shared.cond:
                self.shared.download_strategy = DownloadStrategy.RANDOM_ACCESS
        elif command is LoaderCommand.STREAM_MODE:
            with self.shared.cond:
                self.shared.download_strategy = DownloadStrategy.STREAMING
        elif command is LoaderCommand.CLOSE:
            return False
        else:
            raise ValueError(f"unknown stream loader command: {command!r}")
        return True

    def finish(self) -> None:
        output, self._output = self._output, None
        if output is None:
            return
        output.seek(0)
        if self._on_complete is not None:
            self._on_complete(output)

    def prefetch_if_streaming(self) -> None:
        """Request more data ahead when streaming and too little is pending."""
        with self.shared.cond:
            strategy = self.shared.download_strategy
            open_requests = self.shared.number_of_open_requests
            status = self.shared.download_status
            bytes_pending = len(status.requested.minus(status.downloaded))

        if strategy is not DownloadStrategy.STREAMING or open_requests >= MAX_PREFETCH_REQUESTS:
            return
        max_requests_to_send = MAX_PREFETCH_REQUESTS - open_requests

        ping_time = self.shared.ping_time()
        download_rate = self.session.download_rate_estimate()
        desired_pending_bytes = max(
            int(PREFETCH_THRESHOLD_FACTOR * ping_time * self.shared.stream_data_rate),
            int(FAST_PREFETCH_THRESHOLD_FACTOR * ping_time * download_rate),
        )
        if bytes_pending < desired_pending_bytes:
            self.pre_fetch_more_data(desired_pending_bytes - bytes_pending, max_requests_to_send)


def audio_file_fetch(
    session: _Session,
    shared: AudioFileShared,
    initial_chunks: Iterable[bytes],
    initial_request_sent_time: float,
    initial_data_length: int,
    output: BinaryIO,
    commands: queue.Queue,
    on_complete: Optional[Callable[[BinaryIO], None]],
) -> None:
    """Run the fetch loop until the file is complete, closed, or ``None`` arrives.

    Received data is delivered through ``commands`` as well, so one queue
    carries both loader commands and file data.
    """
    with shared.cond:
        shared.download_status.requested.add_range(Range(0, initial_data_length))

    session.spawn(
        receive_data,
        shared,
        commands,
        initial_chunks,
        0,
        initial_data_length,
        initial_request_sent_time,
    )

    fetch = AudioFileFetch(session, shared, output, commands, on_complete)

    while True:
        item = commands.get()
        if item is None:
            break
        if isinstance(item, (_ResponseTime, _FileData)):
            keep_going = fetch.handle_file_data(item)
        else:
            keep_going = fetch.handle_stream_loader_command(item)
        if not keep_going:
            break
        fetch.prefetch_if_streaming()