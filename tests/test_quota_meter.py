from app.services.quota_meter import QuotaMeter


def test_attempts_expire_after_window(clock):
    meter = QuotaMeter(window_seconds=60, soft_limit=10, clock=clock)
    meter.note_attempt()
    clock.advance(30)
    meter.note_attempt()
    assert meter.get_snapshot().requests_in_window == 2

    clock.advance(31)
    assert meter.get_snapshot().requests_in_window == 1

    clock.advance(30)
    assert meter.get_snapshot().requests_in_window == 0


def test_in_flight_never_negative(clock):
    meter = QuotaMeter(clock=clock)
    meter.note_attempt()
    assert meter.get_snapshot().in_flight == 1
    meter.note_success()
    meter.note_failure()
    meter.note_rate_limited()
    assert meter.get_snapshot().in_flight == 0


def test_near_limit_and_timestamps(clock):
    meter = QuotaMeter(window_seconds=60, soft_limit=3, clock=clock)
    for _ in range(2):
        meter.note_attempt()
    assert meter.get_snapshot().is_near_limit is False

    snapshot = meter.note_attempt()
    assert snapshot.is_near_limit is True
    assert snapshot.soft_limit == 3

    clock.advance(1)
    meter.note_rate_limited()
    clock.advance(1)
    meter.note_success()
    snapshot = meter.get_snapshot()
    assert snapshot.last_rate_limit_at == clock.now - 1
    assert snapshot.last_success_at == clock.now
    assert snapshot.in_flight == 1
