"""
Tests for the content-aware compression engine.
"""
import zlib
from unittest.mock import patch

import pytest

from caching.compression import CacheCompressionManager, CompressedEntry, estimate_entry_size
from utils.exceptions import CacheSerializationError


def _assert_size_invariant(entry: CompressedEntry):
    if entry.compressed:
        assert entry.original_size / entry.compressed_size >= 1.1
    else:
        assert entry.compressed_size == entry.original_size


class TestRoundTrip:
    """compress_entry followed by decompress_entry."""

    def test_embedding_vector_within_precision(self, compression_manager):
        vector = [i * 0.123456789 - 20 for i in range(400)]

        entry = compression_manager.compress_entry(vector, "embedding")
        restored = compression_manager.decompress_entry(entry)

        assert entry.compressed
        assert restored == pytest.approx(vector, abs=1e-5)
        _assert_size_invariant(entry)

    def test_search_results(self, compression_manager):
        results = {"documents": [{"id": i, "title": f"Document {i}", "score": 0.5} for i in range(100)]}

        entry = compression_manager.compress_entry(results, "search")

        assert compression_manager.decompress_entry(entry) == results
        _assert_size_invariant(entry)

    def test_text_is_stored_verbatim(self, compression_manager):
        text = "cache warming keeps hot entries ready. " * 50

        entry = compression_manager.compress_entry(text, "text")

        assert entry.compressed
        assert compression_manager.decompress_entry(entry) == text

    @pytest.mark.parametrize("data", [{"a": 1}, ["one", "two"], 42, {"notes": ["n" * 40] * 40}])
    def test_non_string_text_keeps_its_shape(self, compression_manager, data):
        entry = compression_manager.compress_entry(data, "text")

        assert entry.content_type == "json"
        assert compression_manager.decompress_entry(entry) == data

    def test_uncompressed_text_entry_round_trips(self, compression_manager):
        assert compression_manager.decompress_entry(
            compression_manager.build_uncompressed_entry("plain words", "text")
        ) == "plain words"
        assert compression_manager.decompress_entry(
            compression_manager.build_uncompressed_entry({"a": 1}, "text")
        ) == {"a": 1}

    @pytest.mark.parametrize("content_type", ["json", "classification", "contextual"])
    def test_small_json_left_uncompressed(self, compression_manager, content_type):
        data = {"type": "technical", "confidence": 0.8}

        entry = compression_manager.compress_entry(data, content_type)

        assert not entry.compressed
        assert entry.algorithm == "none"
        assert compression_manager.decompress_entry(entry) == data
        _assert_size_invariant(entry)

    def test_unknown_types_use_json_options(self, compression_manager):
        assert compression_manager.get_options("classification") is compression_manager.options["json"]

    def test_build_uncompressed_entry(self, compression_manager):
        entry = compression_manager.build_uncompressed_entry({"a": 1}, "classification")

        assert not entry.compressed
        assert compression_manager.decompress_entry(entry) == {"a": 1}

    def test_entry_dict_round_trip(self, compression_manager):
        entry = compression_manager.compress_entry({"k": "v" * 3000}, "json")
        assert CompressedEntry.from_dict(entry.to_dict()) == entry


class TestCompressionGate:
    """Threshold and benefit checks."""

    def test_below_threshold_not_compressed(self, compression_manager):
        entry = compression_manager.compress_entry("x" * 100, "text")

        assert not entry.compressed
        assert entry.compressed_size == entry.original_size == 100

    def test_threshold_override(self, compression_manager):
        entry = compression_manager.compress_entry("y" * 300, "text", threshold=100)
        assert entry.compressed

    def test_insufficient_saving_stored_uncompressed(self, compression_manager):
        text = "z" * 1000
        with patch("caching.compression.gzip.compress", return_value=b"x" * 990):
            entry = compression_manager.compress_entry(text, "text")

        assert not entry.compressed
        assert compression_manager.decompress_entry(entry) == text

    def test_compression_failure_falls_back_to_uncompressed(self, compression_manager):
        text = "fallback " * 200
        with patch("caching.compression.gzip.compress", side_effect=zlib.error("boom")):
            entry = compression_manager.compress_entry(text, "text")

        assert not entry.compressed
        assert compression_manager.decompress_entry(entry) == text

    def test_constructor_thresholds(self):
        manager = CacheCompressionManager(thresholds={"text": 10})
        assert manager.compress_entry("w" * 200, "text").compressed

    @pytest.mark.parametrize("pressure,expected", [(0.9, 512), (0.7, 717), (0.5, 1024), (0.1, 1536)])
    def test_adaptive_threshold(self, compression_manager, pressure, expected):
        assert compression_manager.get_adaptive_threshold("json", pressure) == expected

    def test_adaptive_threshold_with_base(self, compression_manager):
        assert compression_manager.get_adaptive_threshold("contextual", 0.9, base_threshold=1500) == 750

    def test_should_compress(self, compression_manager):
        assert compression_manager.should_compress("a" * 2000, "text")
        assert not compression_manager.should_compress("short", "text")
        assert estimate_entry_size({"a": 1}) == len('{"a":1}')


class TestSearchOptimization:
    """Field stripping and truncation for search payloads."""

    def test_oversized_content_truncated(self, compression_manager):
        data = {"results": [{"id": 1, "content": "c" * 6000}]}

        restored = compression_manager.decompress_entry(compression_manager.compress_entry(data, "search"))

        result = restored["results"][0]
        assert result["content"] == "c" * 5000 + "..."
        assert result["contentTruncated"] is True

    def test_normal_content_untouched(self, compression_manager):
        data = {"results": [{"id": 1, "content": "c" * 3000}]}

        restored = compression_manager.decompress_entry(compression_manager.compress_entry(data, "search"))

        assert restored == data
        assert "contentTruncated" not in restored["results"][0]

    def test_reconstructable_fields_stripped(self, compression_manager):
        data = [{"id": 1, "embedding": [0.1] * 10, "rawVector": [1], "_additional": {"x": 1}, "title": "t"}]

        restored = compression_manager.decompress_entry(compression_manager.compress_entry(data, "search"))

        assert restored == [{"id": 1, "title": "t"}]


class TestCorruptPayloads:
    """Malformed entries raise CacheSerializationError."""

    def test_invalid_base64(self, compression_manager):
        entry = CompressedEntry("!!!not-base64!!!", True, 10, 5, 2.0, "gzip", "json")
        with pytest.raises(CacheSerializationError):
            compression_manager.decompress_entry(entry)

    def test_invalid_json(self, compression_manager):
        entry = CompressedEntry("{not json", False, 9, 9, 1.0, "none", "json")
        with pytest.raises(CacheSerializationError):
            compression_manager.decompress_entry(entry)

    def test_malformed_float_array(self, compression_manager):
        entry = CompressedEntry("FLOATS:1.0,abc", False, 14, 14, 1.0, "none", "embedding")
        with pytest.raises(CacheSerializationError):
            compression_manager.decompress_entry(entry)

    def test_missing_fields(self):
        with pytest.raises(CacheSerializationError):
            CompressedEntry.from_dict({"payload": "x"})


class TestStatistics:
    """Aggregate compression statistics."""

    def test_empty_stats(self, compression_manager):
        assert compression_manager.get_compression_stats([])["total_entries"] == 0

    def test_stats_over_entries(self, compression_manager):
        entries = [
            compression_manager.compress_entry("a" * 5000, "text"),
            compression_manager.compress_entry("b" * 10, "text"),
        ]

        stats = compression_manager.get_compression_stats(entries)

        assert stats["total_entries"] == 2
        assert stats["compressed_entries"] == 1
        assert stats["compression_rate"] == 0.5
        assert stats["total_saved"] == entries[0].original_size - entries[0].compressed_size
        assert stats["size_distribution"]["small (<1KB)"] == 1
        assert stats["size_distribution"]["medium (1-10KB)"] == 1

    def test_estimate_memory_savings(self):
        savings = CacheCompressionManager.estimate_memory_savings(1000, 10)

        assert savings["original_size"] == 10000
        assert savings["savings"] == pytest.approx(6000)
        assert savings["savings_percent"] == pytest.approx(60)
