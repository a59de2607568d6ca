"""Range-based download, streaming reads and AES-CTR decryption of audio files."""

__version__ = "0.3.1"
__all__ = ["decrypt", "range_set", "receive", "shared", "stream"]