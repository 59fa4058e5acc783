"""
Cache Compression Engine
Content type-aware compression for large cache entries with cost/benefit gating.

Entries are only gzip-compressed when they exceed a per-type size threshold and
the compressed form is at least 10% smaller; anything else is stored as-is.
"""

import base64
import binascii
import gzip
import json
import logging
import time
import zlib
from typing import Dict, Any, Optional, List
from dataclasses import dataclass, field, asdict

from utils.exceptions import CacheCompressionError, CacheSerializationError

logger = logging.getLogger(__name__)

FLOAT_ARRAY_PREFIX = "FLOATS:"
FLOAT_PRECISION = 5
MIN_COMPRESSION_RATIO = 1.1
SEARCH_CONTENT_MAX_CHARS = 5000
TRUNCATION_SUFFIX = "..."
SEARCH_STRIPPED_FIELDS = frozenset({"embedding", "rawVector", "_additional"})


@dataclass
class CompressionOptions:
    """Compression settings for one content type."""
    threshold: int          # Compress if serialized size is at least this many bytes
    level: int              # gzip level 1-9
    content_type: str


DEFAULT_COMPRESSION_OPTIONS: Dict[str, CompressionOptions] = {
    "embedding": CompressionOptions(threshold=1024, level=6, content_type="embedding"),  # Balanced
    "search": CompressionOptions(threshold=2048, level=4, content_type="search"),        # Faster
    "text": CompressionOptions(threshold=512, level=9, content_type="text"),             # Maximum
    "json": CompressionOptions(threshold=1024, level=7, content_type="json"),
}


@dataclass
class CompressedEntry:
    """Serialized (and possibly gzip-compressed) cache payload."""
    payload: str
    compressed: bool
    original_size: int
    compressed_size: int
    compression_ratio: float
    algorithm: str                  # "gzip" | "none"
    content_type: str
    created_at: float = field(default_factory=time.time)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CompressedEntry":
        try:
            return cls(
                payload=data["payload"],
                compressed=bool(data["compressed"]),
                original_size=int(data["original_size"]),
                compressed_size=int(data["compressed_size"]),
                compression_ratio=float(data["compression_ratio"]),
                algorithm=data.get("algorithm", "gzip" if data["compressed"] else "none"),
                content_type=data["content_type"],
                created_at=float(data.get("created_at", time.time())),
            )
        except (KeyError, TypeError, ValueError) as e:
            raise CacheSerializationError(f"Malformed compressed entry: {e}") from e


class CacheCompressionManager:
    """Intelligent cache compression manager."""

    def __init__(self, thresholds: Optional[Dict[str, int]] = None,
                 options: Optional[Dict[str, CompressionOptions]] = None):
        self.options: Dict[str, CompressionOptions] = {
            name: CompressionOptions(opt.threshold, opt.level, opt.content_type)
            for name, opt in (options or DEFAULT_COMPRESSION_OPTIONS).items()
        }
        for name, threshold in (thresholds or {}).items():
            if name in self.options:
                self.options[name].threshold = threshold

    def get_options(self, content_type: str) -> CompressionOptions:
        """Compression options for a content type; unknown types use the json options."""
        return self.options.get(content_type) or self.options["json"]

    def compress_entry(self, data: Any, content_type: str = "json",
                       threshold: Optional[int] = None) -> CompressedEntry:
        """Compress cache entry if beneficial."""
        content_type = self._payload_content_type(data, content_type)
        options = self.get_options(content_type)
        serialized = self.serialize_data(data, content_type)
        original_size = len(serialized.encode("utf-8"))
        effective_threshold = options.threshold if threshold is None else threshold

        if original_size < effective_threshold:
            return self._uncompressed(serialized, original_size, content_type)

        try:
            compressed = self._gzip(serialized, options.level, content_type)
        except CacheCompressionError as e:
            logger.error(f"Compression error for {content_type} entry, storing uncompressed: {e}")
            return self._uncompressed(serialized, original_size, content_type)

        compressed_size = len(compressed)
        compression_ratio = original_size / compressed_size if compressed_size else 1.0

        # Compression saving less than ~10% is not worth the CPU cost on every read
        if compression_ratio < MIN_COMPRESSION_RATIO:
            return self._uncompressed(serialized, original_size, content_type)

        return CompressedEntry(
            payload=base64.b64encode(compressed).decode("ascii"),
            compressed=True,
            original_size=original_size,
            compressed_size=compressed_size,
            compression_ratio=compression_ratio,
            algorithm="gzip",
            content_type=content_type,
        )

    def build_uncompressed_entry(self, data: Any, content_type: str) -> CompressedEntry:
        """Plain entry for cache types with compression disabled."""
        content_type = self._payload_content_type(data, content_type)
        serialized = data if content_type == "text" else self._to_json(data)
        return self._uncompressed(serialized, len(serialized.encode("utf-8")), content_type)

    @staticmethod
    def _payload_content_type(data: Any, content_type: str) -> str:
        # Only str values are stored verbatim as text; anything else is JSON
        if content_type == "text" and not isinstance(data, str):
            return "json"
        return content_type

    def _uncompressed(self, serialized: str, original_size: int, content_type: str) -> CompressedEntry:
        return CompressedEntry(
            payload=serialized,
            compressed=False,
            original_size=original_size,
            compressed_size=original_size,
            compression_ratio=1.0,
            algorithm="none",
            content_type=content_type,
        )

    def _gzip(self, serialized: str, level: int, content_type: str) -> bytes:
        try:
            return gzip.compress(serialized.encode("utf-8"), compresslevel=level)
        except (ValueError, OSError, zlib.error) as e:
            raise CacheCompressionError(str(e), content_type=content_type) from e

    def decompress_entry(self, entry: CompressedEntry) -> Any:
        """Decompress and deserialize a cache entry."""
        if not entry.compressed:
            return self.deserialize_data(entry.payload, entry.content_type)

        try:
            compressed_buffer = base64.b64decode(entry.payload, validate=True)
            decompressed = gzip.decompress(compressed_buffer).decode("utf-8")
        except (binascii.Error, OSError, EOFError, zlib.error, UnicodeDecodeError) as e:
            raise CacheSerializationError(
                f"Failed to decompress cache entry: {e}", content_type=entry.content_type
            ) from e

        return self.deserialize_data(decompressed, entry.content_type)

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def serialize_data(self, data: Any, content_type: str) -> str:
        """Serialize data based on content type."""
        if content_type == "embedding" and self._is_float_array(data):
            return self._serialize_float_array(data)

        if content_type == "search":
            return self._to_json(self._optimize_search_data(data))

        if content_type == "text" and isinstance(data, str):
            return data

        return self._to_json(data)

    def deserialize_data(self, data: str, content_type: str) -> Any:
        """Deserialize data based on content type."""
        if content_type == "text":
            return data

        if content_type == "embedding" and data.startswith(FLOAT_ARRAY_PREFIX):
            return self._deserialize_float_array(data)

        try:
            return json.loads(data)
        except (json.JSONDecodeError, TypeError) as e:
            raise CacheSerializationError(
                f"Invalid JSON payload: {e}", content_type=content_type
            ) from e

    def _to_json(self, data: Any) -> str:
        try:
            return json.dumps(data, separators=(",", ":"), ensure_ascii=False)
        except (TypeError, ValueError) as e:
            raise CacheSerializationError(f"Value is not JSON serializable: {e}") from e

    @staticmethod
    def _is_float_array(data: Any) -> bool:
        return (
            isinstance(data, (list, tuple))
            and len(data) > 0
            and all(isinstance(v, (int, float)) and not isinstance(v, bool) for v in data)
        )

    def _serialize_float_array(self, floats) -> str:
        """Fixed precision comma-joined floats; much smaller than JSON for vectors."""
        return FLOAT_ARRAY_PREFIX + ",".join(repr(round(float(f), FLOAT_PRECISION)) for f in floats)

    def _deserialize_float_array(self, data: str) -> List[float]:
        float_string = data[len(FLOAT_ARRAY_PREFIX):]
        if not float_string:
            return []
        try:
            return [float(s) for s in float_string.split(",")]
        except ValueError as e:
            raise CacheSerializationError(
                f"Malformed float array payload: {e}", content_type="embedding"
            ) from e

    def _optimize_search_data(self, data: Any) -> Any:
        """Strip reconstructable fields and truncate oversized content."""
        if isinstance(data, list):
            return [self._optimize_search_data(item) for item in data]

        if isinstance(data, dict):
            optimized = {}
            for key, value in data.items():
                if key in SEARCH_STRIPPED_FIELDS:
                    continue

                if key == "content" and isinstance(value, str) and len(value) > SEARCH_CONTENT_MAX_CHARS:
                    optimized[key] = value[:SEARCH_CONTENT_MAX_CHARS] + TRUNCATION_SUFFIX
                    optimized["contentTruncated"] = True
                    continue

                optimized[key] = self._optimize_search_data(value)
            return optimized

        return data

    # ------------------------------------------------------------------
    # Statistics and thresholds
    # ------------------------------------------------------------------

    def get_compression_stats(self, entries: List[CompressedEntry]) -> Dict[str, Any]:
        """Calculate compression statistics over a set of entries."""
        if not entries:
            return {
                "total_entries": 0,
                "compressed_entries": 0,
                "compression_rate": 0.0,
                "total_saved": 0,
                "avg_compression_ratio": 1.0,
                "size_distribution": {}
            }

        compressed_entries = sum(1 for e in entries if e.compressed)
        total_saved = sum(e.original_size - e.compressed_size for e in entries)
        avg_compression_ratio = sum(e.compression_ratio for e in entries) / len(entries)

        size_distribution = {
            "small (<1KB)": 0,
            "medium (1-10KB)": 0,
            "large (10-100KB)": 0,
            "xlarge (>100KB)": 0
        }
        for entry in entries:
            size_kb = entry.original_size / 1024
            if size_kb < 1:
                size_distribution["small (<1KB)"] += 1
            elif size_kb < 10:
                size_distribution["medium (1-10KB)"] += 1
            elif size_kb < 100:
                size_distribution["large (10-100KB)"] += 1
            else:
                size_distribution["xlarge (>100KB)"] += 1

        return {
            "total_entries": len(entries),
            "compressed_entries": compressed_entries,
            "compression_rate": compressed_entries / len(entries),
            "total_saved": total_saved,
            "avg_compression_ratio": avg_compression_ratio,
            "size_distribution": size_distribution
        }

    @staticmethod
    def estimate_memory_savings(avg_entry_size: float, entry_count: int,
                                compression_ratio: float = 2.5) -> Dict[str, float]:
        """Estimate memory savings from compression."""
        original_size = avg_entry_size * entry_count
        compressed_size = original_size / compression_ratio
        savings = original_size - compressed_size

        return {
            "original_size": original_size,
            "compressed_size": compressed_size,
            "savings": savings,
            "savings_percent": (savings / original_size) * 100 if original_size else 0.0
        }

    def get_adaptive_threshold(self, content_type: str, memory_pressure: float,
                               base_threshold: Optional[int] = None) -> int:
        """Compression threshold scaled by memory pressure (lower under pressure)."""
        threshold = self.get_options(content_type).threshold if base_threshold is None else base_threshold

        if memory_pressure > 0.8:
            return round(threshold * 0.5)
        elif memory_pressure > 0.6:
            return round(threshold * 0.7)
        elif memory_pressure < 0.3:
            return round(threshold * 1.5)

        return threshold

    def should_compress(self, data: Any, content_type: str = "json") -> bool:
        """Quick size check without actually compressing."""
        return estimate_entry_size(data) >= self.get_options(content_type).threshold


def estimate_entry_size(data: Any) -> int:
    """Approximate serialized size of a value in bytes."""
    serialized = data if isinstance(data, str) else json.dumps(data, separators=(",", ":"), default=str)
    return len(serialized.encode("utf-8"))
