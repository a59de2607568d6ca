import io

import pytest

from audiofetch.decrypt import AUDIO_AES_IV, AudioDecrypt

KEY = bytes(range(16))
PLAIN = bytes((i * 7 + 3) % 256 for i in range(1000))


def encrypted():
    return AudioDecrypt(KEY, io.BytesIO(PLAIN)).read()


def test_iv_is_fixed():
    assert AUDIO_AES_IV.hex() == "72e067fbddcbcf77ebe8bc643f630d93"


def test_round_trip():
    cipher_text = encrypted()
    assert cipher_text != PLAIN
    assert len(cipher_text) == len(PLAIN)
    assert AudioDecrypt(KEY, io.BytesIO(cipher_text)).read() == PLAIN


def test_chunked_reads_match_whole_read():
    decrypt = AudioDecrypt(KEY, io.BytesIO(encrypted()))
    parts = []
    while True:
        chunk = decrypt.read(13)
        if not chunk:
            break
        parts.append(chunk)
    assert b"".join(parts) == PLAIN
    assert decrypt.tell() == len(PLAIN)


@pytest.mark.parametrize("offset", [0, 1, 15, 16, 17, 500, 999])
def test_seek_then_read_matches_slice(offset):
    decrypt = AudioDecrypt(KEY, io.BytesIO(encrypted()))
    decrypt.read(200)
    assert decrypt.seek(offset) == offset
    assert decrypt.tell() == offset
    assert decrypt.read(40) == PLAIN[offset:offset + 40]


def test_seek_relative_to_end():
    decrypt = AudioDecrypt(KEY, io.BytesIO(encrypted()))
    position = decrypt.seek(-10, io.SEEK_END)
    assert position == len(PLAIN) - 10
    assert decrypt.read() == PLAIN[-10:]


def test_different_key_gives_different_output():
    other_key = bytes(16)
    assert AudioDecrypt(other_key, io.BytesIO(PLAIN)).read() != encrypted()


def test_bad_key_length_rejected():
    with pytest.raises(ValueError):
        AudioDecrypt(b"short", io.BytesIO(PLAIN))