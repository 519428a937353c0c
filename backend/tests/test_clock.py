from arena.services.contest.clock import Countdown, CountdownRegistry, countdown, remaining_seconds


def test_remaining_seconds_floors_and_clamps():
    assert remaining_seconds(100.0, 40.0) == 60
    assert remaining_seconds(100.0, 40.4) == 59
    assert remaining_seconds(100.0, 100.0) == 0
    assert remaining_seconds(100.0, 161.0) == 0


def test_countdown_is_finite_and_ends_at_zero(clock):
    end = clock() + 3
    values = list(countdown(end, clock=clock, sleep=clock.sleep, interval=1))
    assert values == [3, 2, 1, 0]


def test_countdown_rederives_from_deadline_after_throttled_tick(clock):
    end = clock() + 10
    ticks = countdown(end, clock=clock, sleep=clock.sleep, interval=1)
    assert next(ticks) == 10
    # Backgrounded tab: the next tick arrives 7 seconds late
    clock.advance(6)
    assert next(ticks) == 3
    assert list(ticks) == [2, 1, 0]


def test_countdown_fires_expiry_exactly_once(clock):
    seen, fired = [], []
    cd = Countdown(('JDOE', 1), clock() + 2, seen.append, lambda: fired.append(True),
                   clock=clock, sleep=clock.sleep, interval=1)
    cd.run()
    assert seen == [2, 1, 0]
    assert fired == [True]
    assert cd.fire() is False
    assert fired == [True]
    assert cd.cancelled


def test_cancelled_countdown_stops_ticking_and_never_fires(clock):
    seen, fired = [], []

    def _tick(remaining):
        seen.append(remaining)
        if remaining == 4:
            cd.cancel()

    cd = Countdown(('JDOE', 1), clock() + 5, _tick, lambda: fired.append(True),
                   clock=clock, sleep=clock.sleep, interval=1)
    cd.run()
    assert seen == [5, 4]
    assert fired == []


def test_registry_keeps_one_countdown_per_session(flask_app, clock):
    registry = CountdownRegistry()
    first = Countdown(('JDOE', 1), clock() + 60, lambda r: None, lambda: None, clock=clock)
    second = Countdown(('JDOE', 1), clock() + 60, lambda r: None, lambda: None, clock=clock)
    assert registry.start(flask_app, first) is first
    assert registry.start(flask_app, second) is first

    registry.cancel(('JDOE', 1))
    assert first.cancelled
    assert registry.get(('JDOE', 1)) is None
    assert registry.start(flask_app, second) is second
