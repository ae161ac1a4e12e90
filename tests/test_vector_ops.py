import pytest

from lachesis.vector_ops import add_vecs, bool_mask, mul_vec, normalize_vec

MAX_INT32 = 2**31 - 1
HALF = 1073741823  # MaxInt32 / 2, truncated


def test_sum_limit():
    a = [HALF, -HALF, MAX_INT32]
    b = [HALF + 1, -HALF - 1, -MAX_INT32]
    assert add_vecs(a, b) == [MAX_INT32, -MAX_INT32, 0]


def test_sum_empty():
    assert add_vecs([], []) == []


def test_sum_length_mismatch():
    with pytest.raises(ValueError):
        add_vecs([1, 2], [1])


def test_mul():
    assert mul_vec([-1, 1, -1], MAX_INT32) == [-MAX_INT32, MAX_INT32, -MAX_INT32]


def test_normalize():
    assert normalize_vec([5, 0, -3, -1, 7]) == [1, 1, -1, -1, 1]


def test_bool_mask():
    vec = [HALF - 1, -HALF + 1, HALF, -HALF, 0, -MAX_INT32, MAX_INT32]
    q = HALF
    assert bool_mask(vec, lambda x: x >= q) == [False, False, True, False, False, False, True]
    assert bool_mask(vec, lambda x: x <= -q) == [False, False, False, True, False, True, False]