"""Compression codec for backup payloads.

gzip is the primary algorithm. When the interpreter was built without
zlib, bz2 is used instead and the payload is tagged accordingly, so a
reader always knows which algorithm to apply.
"""

from __future__ import annotations

import bz2
import logging

from fieldsync.core.errors import CodecUnavailable

logger = logging.getLogger(__name__)

GZIP = "gzip"
BZ2 = "bz2"

DEFAULT_LEVEL = 6


try:
    import gzip
    import zlib
except ImportError:  # interpreter built without zlib
    gzip = None  # type: ignore[assignment]
    zlib = None  # type: ignore[assignment]

_DECOMPRESS_ERRORS: tuple[type[BaseException], ...] = (OSError, EOFError)
if zlib is not None:
    _DECOMPRESS_ERRORS += (zlib.error,)


def _zlib_available() -> bool:
    return zlib is not None


def available_algorithms() -> list[str]:
    """List the algorithms usable on this interpreter, preferred first."""
    algorithms = []
    if _zlib_available():
        algorithms.append(GZIP)
    algorithms.append(BZ2)
    return algorithms


class CompressionCodec:
    """Reversible byte compression with a configurable effort level.

    Example:
        >>> codec = CompressionCodec(level=6)
        >>> codec.decompress(codec.compress(b"hello")) == b"hello"
        True
    """

    def __init__(self, level: int = DEFAULT_LEVEL, algorithm: str | None = None) -> None:
        """Initialize codec.

        Args:
            level: Effort level, 0 (fastest) to 9 (smallest).
            algorithm: Force an algorithm; defaults to the best available.

        Raises:
            ValueError: If level is outside 0-9.
            CodecUnavailable: If the requested algorithm cannot be used.
        """
        if not 0 <= level <= 9:
            raise ValueError("Compression level must be between 0 and 9")
        available = available_algorithms()
        if algorithm is None:
            algorithm = available[0]
        elif algorithm not in available:
            raise CodecUnavailable(f"Compression algorithm '{algorithm}' is not available")
        self._level = level
        self._algorithm = algorithm

    @classmethod
    def for_algorithm(cls, algorithm: str, level: int = DEFAULT_LEVEL) -> CompressionCodec:
        """Build a codec able to read payloads tagged with algorithm."""
        return cls(level=level, algorithm=algorithm)

    @property
    def algorithm(self) -> str:
        """Name of the algorithm this codec writes and reads."""
        return self._algorithm

    @property
    def level(self) -> int:
        """Configured effort level."""
        return self._level

    def compress(self, data: bytes) -> bytes:
        """Compress bytes.

        Args:
            data: Raw bytes, possibly empty.

        Returns:
            Compressed bytes.
        """
        if self._algorithm == GZIP:
            compressed = gzip.compress(data, compresslevel=self._level, mtime=0)
        else:
            # bz2 accepts levels 1-9 only
            compressed = bz2.compress(data, compresslevel=max(self._level, 1))

        if data:
            logger.debug(
                "%s compressed %d -> %d bytes (%.1f%%)",
                self._algorithm,
                len(data),
                len(compressed),
                (1 - len(compressed) / len(data)) * 100,
            )
        return compressed

    def decompress(self, data: bytes, algorithm: str | None = None) -> bytes:
        """Decompress bytes produced by compress().

        Args:
            data: Compressed bytes.
            algorithm: Algorithm the payload is tagged with, if known.

        Returns:
            Original bytes.

        Raises:
            CodecUnavailable: If the payload was produced by another algorithm.
            ValueError: If data is not a valid payload for this algorithm.
        """
        if algorithm is not None and algorithm != self._algorithm:
            raise CodecUnavailable(
                f"Payload compressed with '{algorithm}' cannot be read by the "
                f"'{self._algorithm}' codec"
            )
        try:
            if self._algorithm == GZIP:
                return gzip.decompress(data)
            return bz2.decompress(data)
        except _DECOMPRESS_ERRORS as e:
            raise ValueError(f"Corrupt {self._algorithm} payload: {e}") from e
