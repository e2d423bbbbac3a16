from tradeloop.execution.position_manager import ForcedExitPolicy, should_force_exit

HOUR_MS = 3600 * 1000
NOW = 100 * HOUR_MS


def _check(**overrides):
    base = dict(
        entry_price=100.0,
        entry_ms=NOW - 3 * HOUR_MS,
        price=100.2,
        momentum=45.0,
        exit_signal_valid=True,
        now_ms=NOW,
        policy=ForcedExitPolicy(),
    )
    base.update(overrides)
    return should_force_exit(**base)


def test_stagnant_weak_position_is_forced_out():
    ok, why = _check()
    assert ok is True
    assert why.startswith("STAGNANT_")


def test_young_position_is_left_alone():
    ok, why = _check(entry_ms=NOW - HOUR_MS)
    assert (ok, why) == (False, "YOUNG")


def test_moving_price_is_left_alone():
    ok, why = _check(price=101.0)
    assert ok is False
    assert why.startswith("MOVING_")


def test_moving_down_also_counts_as_moving():
    ok, _ = _check(price=99.0)
    assert ok is False


def test_strong_momentum_is_left_alone():
    assert _check(momentum=55.0) == (False, "MOMENTUM_OK")


def test_without_momentum_lost_exit_signal_means_weak():
    assert _check(momentum=None, exit_signal_valid=False)[0] is True
    assert _check(momentum=None, exit_signal_valid=True) == (False, "MOMENTUM_OK")


def test_missing_entry_data():
    assert _check(entry_ms=0) == (False, "NO_ENTRY_TIME")
    assert _check(entry_price=None) == (False, "NO_PRICE")
