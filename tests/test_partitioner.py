"""Tests for chunk partitioning."""
import pytest

from chunked_uploader.exceptions import InvalidInput
from chunked_uploader.models import MB
from chunked_uploader.services.partitioner import chunk_bounds, chunk_count, partition


def test_chunk_count_is_ceiling():
    assert chunk_count(0, 10) == 0
    assert chunk_count(1, 10) == 1
    assert chunk_count(10, 10) == 1
    assert chunk_count(11, 10) == 2
    assert chunk_count(45 * MB, 20 * MB) == 3


def test_partition_45mb_into_20mb_chunks():
    chunks = partition(45 * MB, 20 * MB)

    assert [c.size for c in chunks] == [20 * MB, 20 * MB, 5 * MB]
    assert [c.index for c in chunks] == [0, 1, 2]
    assert [c.part_number for c in chunks] == [1, 2, 3]
    assert chunks[-1].byte_end == 45 * MB


@pytest.mark.parametrize("total,size", [(1, 1), (7, 3), (100, 7), (4096, 4096), (4097, 4096)])
def test_partition_covers_file_contiguously(total, size):
    chunks = partition(total, size)

    position = 0
    for chunk in chunks:
        assert chunk.byte_start == position
        assert 0 < chunk.size <= size
        position = chunk.byte_end
    assert position == total
    # only the last chunk may be short
    assert all(c.size == size for c in chunks[:-1])


def test_partition_empty_file():
    assert partition(0, 20 * MB) == []


def test_partition_is_deterministic():
    assert partition(12345, 1000) == partition(12345, 1000)


def test_chunk_bounds_clamps_last_chunk():
    assert chunk_bounds(0, 25, 10) == (0, 10)
    assert chunk_bounds(2, 25, 10) == (20, 25)


@pytest.mark.parametrize("total,size", [(10, 0), (10, -1), (-1, 10)])
def test_partition_rejects_invalid_sizes(total, size):
    with pytest.raises(InvalidInput):
        partition(total, size)


def test_invalid_input_is_value_error():
    with pytest.raises(ValueError):
        chunk_count(10, 0)
