"""
Module: tests.test_rng
Purpose: Seeded and system random sources
"""

import numpy as np
import pytest

from sd_sampler.rng import (
    RandomSource,
    SeededRandomSource,
    SystemRandomSource,
    make_random_source,
)

class CountingSource(RandomSource):
    """Minimal source that only implements next()."""

    def __init__(self):
        self.value = 0

    def next(self) -> int:
        self.value += 1
        return (self.value * 0x9E3779B97F4A7C15) % (1 << 64)


def test_make_random_source_picks_kind():
    assert isinstance(make_random_source(0), SystemRandomSource)
    assert isinstance(make_random_source(42), SeededRandomSource)


@pytest.mark.parametrize("seed", [-1, 2 ** 32])
def test_seed_out_of_range(seed):
    with pytest.raises(ValueError):
        make_random_source(seed)


def test_seeded_streams_repeat():
    a = SeededRandomSource(7)
    b = SeededRandomSource(7)

    assert [a.next() for _ in range(5)] == [b.next() for _ in range(5)]


def test_next_is_unsigned_64_bit():
    for source in (SeededRandomSource(3), SystemRandomSource()):
        for _ in range(100):
            value = source.next()
            assert 0 <= value < 2 ** 64


def test_uniform_range_and_dtype():
    values = SeededRandomSource(99).uniform(10000, -1.0, 1.0)

    assert values.dtype == np.float32
    assert values.shape == (10000,)
    assert values.min() >= -1.0 and values.max() <= 1.0
    # Roughly centred
    assert abs(float(values.mean())) < 0.05


def test_default_raw_uses_next():
    values = CountingSource().uniform(16)

    assert values.shape == (16,)
    assert np.all((values >= -1.0) & (values <= 1.0))
