# audiofetch

A library for the progressive download of audio files that are served in byte
ranges. It can also decrypt them on the fly with AES-128-CTR.

It records which parts of a file have been requested and which have arrived.
While streaming, it fetches data ahead of the read position. A reader blocks
until the bytes it needs are present.

## Installation

```
pip install audiofetch
```

The only runtime dependency is `cryptography`.

## Modules

### `audiofetch.range_set`: range bookkeeping

`Range(start, length)` is an immutable half-open span. `RangeSet` is a sorted
set of disjoint ranges. Ranges that overlap or touch are merged.

```python
from audiofetch.range_set import Range, RangeSet

downloaded = RangeSet()
downloaded.add_range(Range(0, 100))
downloaded.add_range(Range(100, 50))   # touching ranges merge
print(downloaded)                      # ([0, 149])
print(120 in downloaded)               # True
print(downloaded.contained_length_from_value(120))  # 30

downloaded.subtract_range(Range(10, 5))
print(downloaded)                      # ([0, 9][15, 149])
print(len(downloaded))                 # 145 positions covered
```

`RangeSet` also provides the following:

- `add_range_set` and `union`.
- `subtract_range_set` and `minus`.
- `intersection`.
- `contains_range_set`.
- `copy`.
- Indexing and iteration over its ranges.

### `audiofetch.decrypt`: decryption

`AudioDecrypt(key, reader)` wraps a binary reader. `key` is a 16-byte AES
key. Data is decrypted with AES-128 in counter mode, using a fixed
initialisation vector. `seek()` moves the key stream to the new position, so
random access works. `tell()` reports the current position.

```python
import io
from audiofetch.decrypt import AudioDecrypt

audio_key = bytes(16)
encrypted = io.BytesIO(bytes(8192))
reader = AudioDecrypt(audio_key, encrypted)
reader.seek(4096)
chunk = reader.read(1024)
```

### `audiofetch.shared`: shared download state

`AudioFileShared` holds the state of one file's download. It is shared
between a reader and its fetcher, and it is guarded by the `cond` condition
variable. The state is:

- the requested and downloaded `RangeSet`s, held in `DownloadStatus`;
- the `DownloadStrategy` (`RANDOM_ACCESS` or `STREAMING`);
- the number of open requests;
- the ping time estimate (see `ping_time()`, in seconds);
- the read position.

The loader's commands are `FetchCommand(range)` and the `LoaderCommand`
members `RANDOM_ACCESS_MODE`, `STREAM_MODE` and `CLOSE`.

The module also defines the tuning constants:

- `MINIMUM_DOWNLOAD_SIZE`
- `INITIAL_DOWNLOAD_SIZE`
- `READ_AHEAD_DURING_PLAYBACK`
- `PREFETCH_THRESHOLD_FACTOR`
- `MAX_PREFETCH_REQUESTS`
- `DOWNLOAD_TIMEOUT`
- and others.

### `audiofetch.receive`: fetching ranges

`build_range_request(channel_id, file_id, start, end)` builds the binary
payload of a range request. `start` and `end` are counted in 4-byte words.

`request_range(session, file_id, offset, length)` sends a range request
through a session and returns the `Channel` that the response arrives on.
Both values must be 4-aligned; otherwise it raises `ValueError`. Data is
delivered to a `Channel` with `push_header`, `push_data` and `close`. It is
consumed with `headers()` and `chunks()`.

`receive_data(...)` forwards the received chunks, together with one ping
measurement, to a queue. When a request ends early, it releases the part that
never arrived.

`AudioFileFetch` does the following:

- It writes received data into the output file.
- It keeps a median of up to three ping times.
- It aligns download requests to 4 bytes and makes them at least
  `MINIMUM_DOWNLOAD_SIZE`.
- In streaming mode, it prefetches more data, preferring the data after the
  read position.

`audio_file_fetch(...)` runs the fetch loop over one queue, which carries both
loader commands and received data. The loop ends when one of these happens:

- the file is complete;
- `LoaderCommand.CLOSE` arrives;
- `None` is put on the queue.

### `audiofetch.stream`: reading files

`AudioFile` is either a cached local file (`cached=`) or an
`AudioFileStreaming` (`streaming=`). Both support `read` and `seek`.

A read from `AudioFileStreaming` requests whatever is missing. In streaming
mode it also requests data ahead. It then waits until the data at the read
position has been downloaded.

`AudioFile.stream_loader_controller()` returns a `StreamLoaderController`.
The controller lets a player:

- check availability with `range_available` and `range_to_end_available`;
- request ranges with `fetch` and `fetch_next`;
- wait for ranges with `fetch_blocking` and `fetch_next_blocking`;
- switch between `set_stream_mode()` and `set_random_access_mode()`;
- stop loading with `close()`;
- read the ping estimate with `ping_time()`.

`len(controller)` is the file size.

`open_audio_file(session, file_id, bytes_per_second, play_from_beginning)`
returns the cached file when the session's cache has it. Otherwise it requests
the first part of the file and starts streaming. When the download is
complete, the file is saved to the cache.

`open_streaming(...)` is the lower-level step. It reads the file size from
header `0x3` and starts the background fetch into a temporary file. It raises
`ConnectionError` if the headers end before the file size arrives.

## The session object

The package does not connect to any server. The caller supplies a session
object with these methods:

- `allocate_channel()`: returns `(channel_id, Channel)`.
- `send_packet(command, payload)`: sends a request packet. Range requests use
  command `0x8`.
- `spawn(func, *args)`: runs `func(*args)` in the background. The fetch loop
  and the receivers block, so `spawn` must start a thread or similar.
- `download_rate_estimate()`: returns bytes per second, used for fast
  prefetching.
- `cache()`: returns `None` or an object with `file(file_id)` and
  `save_file(file_id, stream)`. This method is only needed by
  `open_audio_file`.

## What this package does not do

The package leaves the following to the caller:

- It has no network connection, login or session handling.
- It does not implement a file cache.
- It does not decode or play audio.
- It has no command-line program.

## Running the tests

```
pip install "audiofetch[test]"
pytest
```