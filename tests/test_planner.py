"""Tests for chunk planning."""
import pytest

from multipart_uploader.errors import InvalidInput
from multipart_uploader.planner import part_count, plan_parts

MB = 1024 * 1024


class TestPlanParts:
    def test_twelve_mib_in_five_mib_chunks(self):
        parts = plan_parts(12 * MB, 5 * MB)

        assert [p.part_number for p in parts] == [1, 2, 3]
        assert [p.size for p in parts] == [5 * MB, 5 * MB, 2 * MB]
        assert [(p.start, p.end) for p in parts] == [
            (0, 5 * MB),
            (5 * MB, 10 * MB),
            (10 * MB, 12 * MB),
        ]

    def test_exact_multiple_gives_single_full_part(self):
        parts = plan_parts(5 * MB, 5 * MB)

        assert len(parts) == 1
        assert parts[0].size == 5 * MB
        assert (parts[0].start, parts[0].end) == (0, 5 * MB)

    def test_file_smaller_than_chunk(self):
        parts = plan_parts(10, 5 * MB)
        assert len(parts) == 1
        assert parts[0].size == 10

    @pytest.mark.parametrize("file_size", [1, 2, 7, 99, 100, 101, 1000, 4097])
    @pytest.mark.parametrize("chunk_size", [1, 3, 10, 100, 4096])
    def test_ranges_cover_file_exactly(self, file_size, chunk_size):
        parts = plan_parts(file_size, chunk_size)

        assert len(parts) == part_count(file_size, chunk_size)
        assert sum(p.size for p in parts) == file_size
        assert parts[0].start == 0
        assert parts[-1].end == file_size
        for previous, current in zip(parts, parts[1:]):
            assert current.start == previous.end
            assert current.part_number == previous.part_number + 1
        assert all(p.size == chunk_size for p in parts[:-1])
        assert 0 < parts[-1].size <= chunk_size

    def test_deterministic(self):
        assert plan_parts(123456, 1000) == plan_parts(123456, 1000)

    def test_empty_file_rejected(self):
        with pytest.raises(InvalidInput, match="empty"):
            plan_parts(0, 5 * MB)

    @pytest.mark.parametrize("chunk_size", [0, -1, 2.5, None])
    def test_invalid_chunk_size_rejected(self, chunk_size):
        with pytest.raises(InvalidInput, match="chunk_size"):
            plan_parts(100, chunk_size)

    def test_negative_file_size_rejected(self):
        with pytest.raises(InvalidInput):
            plan_parts(-5, 10)


def test_part_count():
    assert part_count(12 * MB, 5 * MB) == 3
    assert part_count(5 * MB, 5 * MB) == 1
    assert part_count(5 * MB + 1, 5 * MB) == 2
