import math

import pytest

from batcher.solver import CEIL_THREADS, UnreachableEffect, solve_threads, weaken_threads_needed


def weaken(t):
    return t * 0.05


def test_zero_or_negative_effect_needs_no_threads():
    assert solve_threads(weaken, 0) == 0
    assert solve_threads(weaken, -3.0) == 0


@pytest.mark.parametrize("amt, expected", [(0.33, 7), (0.04, 1), (5.0, 100)])
def test_linear_effect_lands_on_integer_boundary(amt, expected):
    assert solve_threads(weaken, amt) == expected


@pytest.mark.parametrize("amt", [0.7, 3.3, 10.0, 57.25, 199.5])
def test_result_never_undershoots_and_is_minimal(amt):
    f = math.sqrt
    t = solve_threads(f, amt)
    assert f(t) >= amt
    if t > 1:
        assert f(t - 1) < amt


def test_unreachable_effect_raises():
    with pytest.raises(UnreachableEffect) as exc:
        solve_threads(weaken, 10_000.0)
    assert exc.value.ceil == CEIL_THREADS
    assert exc.value.max_effect == pytest.approx(5000.0)


def test_custom_ceiling():
    assert solve_threads(weaken, 0.5, ceil=10) == 10
    with pytest.raises(UnreachableEffect):
        solve_threads(weaken, 0.55, ceil=10)


def test_weaken_threads_needed_uses_host_effect():
    class H:
        def weaken_effect(self, threads):
            return threads * 0.1

    assert weaken_threads_needed(H(), 0.35) == 4
    assert weaken_threads_needed(H(), 0.0) == 0
