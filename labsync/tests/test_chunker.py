import pytest

from labsync.services.chunker import ChunkPlan, split


def test_split_covers_file_in_order():
    data = bytes(range(250))
    plan = split("f1", data, chunk_size=100)
    chunks = list(plan)
    assert plan.total_chunks == 3
    assert [c.index for c in chunks] == [0, 1, 2]
    assert [c.offset for c in chunks] == [0, 100, 200]
    assert [c.size for c in chunks] == [100, 100, 50]
    assert b"".join(c.data for c in chunks) == data
    assert [c.is_last for c in chunks] == [False, False, True]
    assert all(c.total_chunks == 3 for c in chunks)


def test_exact_multiple_has_no_trailing_empty_chunk():
    plan = split("f1", b"x" * 200, chunk_size=100)
    assert len(plan) == 2
    assert [c.size for c in plan] == [100, 100]


def test_empty_file_is_one_empty_chunk():
    chunks = list(split("f1", b"", chunk_size=100))
    assert len(chunks) == 1
    assert chunks[0].data == b""
    assert chunks[0].is_last


def test_plan_can_be_walked_again():
    plan = split("f1", b"abcdef", chunk_size=4)
    first = [c.data for c in plan]
    second = [c.data for c in plan]
    assert first == second == [b"abcd", b"ef"]


def test_rejects_non_positive_chunk_size():
    with pytest.raises(ValueError):
        ChunkPlan("f1", b"abc", chunk_size=0)
