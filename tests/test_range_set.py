import random

import pytest

from audiofetch.range_set import Range, RangeSet

UNIVERSE = 120


def random_ranges(rng, count):
    result = []
    for _ in range(count):
        start = rng.randrange(0, UNIVERSE - 10)
        length = rng.randrange(0, 15)
        result.append(Range(start, min(length, UNIVERSE - start)))
    return result


def points_of_ranges(ranges):
    return {v for r in ranges for v in range(r.start, r.end())}


def points_of_set(rs):
    return {v for v in range(UNIVERSE) if v in rs}


def assert_canonical(rs):
    items = list(rs)
    for r in items:
        assert r.length > 0
    for left, right in zip(items, items[1:]):
        assert left.end() < right.start


def test_touching_ranges_merge():
    rs = RangeSet([Range(0, 10), Range(10, 5)])
    assert list(rs) == [Range(0, 15)]


def test_str_format():
    rs = RangeSet([Range(20, 10), Range(0, 10)])
    assert str(rs) == "([0, 9][20, 29])"


def test_subtract_punches_hole():
    rs = RangeSet([Range(0, 10)])
    rs.subtract_range(Range(3, 2))
    assert list(rs) == [Range(0, 3), Range(5, 5)]


def test_zero_length_range_is_ignored():
    rs = RangeSet([Range(5, 0)])
    assert not rs
    assert len(rs) == 0
    assert list(rs) == []


def test_negative_range_rejected():
    with pytest.raises(ValueError):
        Range(-1, 3)
    with pytest.raises(ValueError):
        Range(1, -3)


def test_getitem_and_iteration_sorted():
    rs = RangeSet([Range(50, 5), Range(10, 5), Range(30, 5)])
    assert rs[0] == Range(10, 5)
    assert [r.start for r in rs] == sorted(r.start for r in rs)
    with pytest.raises(IndexError):
        rs[3]


def test_union_and_minus_do_not_mutate():
    a = RangeSet([Range(0, 10)])
    b = RangeSet([Range(5, 10)])
    a_before, b_before = a.copy(), b.copy()
    a.union(b)
    a.minus(b)
    a.intersection(b)
    assert a == a_before
    assert b == b_before


def test_copy_is_independent():
    a = RangeSet([Range(0, 10)])
    c = a.copy()
    c.add_range(Range(40, 5))
    assert a == RangeSet([Range(0, 10)])
    assert c != a


@pytest.mark.parametrize("seed", range(25))
def test_add_matches_point_model(seed):
    rng = random.Random(seed)
    ranges = random_ranges(rng, 8)
    rs = RangeSet(ranges)
    assert_canonical(rs)
    assert points_of_set(rs) == points_of_ranges(ranges)
    assert len(rs) == len(points_of_ranges(ranges))


@pytest.mark.parametrize("seed", range(25))
def test_subtract_matches_point_model(seed):
    rng = random.Random(1000 + seed)
    base = random_ranges(rng, 6)
    removed = random_ranges(rng, 4)
    rs = RangeSet(base)
    for r in removed:
        rs.subtract_range(r)
    assert_canonical(rs)
    assert points_of_set(rs) == points_of_ranges(base) - points_of_ranges(removed)


@pytest.mark.parametrize("seed", range(25))
def test_set_operations_match_point_model(seed):
    rng = random.Random(2000 + seed)
    a_ranges = random_ranges(rng, 5)
    b_ranges = random_ranges(rng, 5)
    a, b = RangeSet(a_ranges), RangeSet(b_ranges)
    pa, pb = points_of_ranges(a_ranges), points_of_ranges(b_ranges)

    union = a.union(b)
    minus = a.minus(b)
    inter = a.intersection(b)
    for result in (union, minus, inter):
        assert_canonical(result)

    assert points_of_set(union) == pa | pb
    assert points_of_set(minus) == pa - pb
    assert points_of_set(inter) == pa & pb
    assert len(union) == len(a) + len(b) - len(inter)


@pytest.mark.parametrize("seed", range(15))
def test_contained_length_matches_point_model(seed):
    rng = random.Random(3000 + seed)
    rs = RangeSet(random_ranges(rng, 6))
    points = points_of_set(rs)
    for value in range(UNIVERSE):
        run = 0
        while value + run in points:
            run += 1
        assert rs.contained_length_from_value(value) == run


@pytest.mark.parametrize("seed", range(15))
def test_contains_range_set_matches_subset(seed):
    rng = random.Random(4000 + seed)
    a = RangeSet(random_ranges(rng, 6))
    b = RangeSet(random_ranges(rng, 2))
    assert a.contains_range_set(b) == (points_of_set(b) <= points_of_set(a))
    assert a.union(b).contains_range_set(b)
    assert a.union(b).contains_range_set(a)
    assert not a.minus(b).intersection(b)