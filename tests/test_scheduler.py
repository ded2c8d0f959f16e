from livematch.services import CancelScope, ManualScheduler


def test_call_later_fires_once_at_due_time() -> None:
    scheduler = ManualScheduler(start=100.0)
    fired = []
    scheduler.call_later(2.0, lambda: fired.append(scheduler.now()))

    scheduler.advance(1.5)
    assert fired == []
    scheduler.advance(1.0)
    assert fired == [102.0]
    scheduler.advance(10)
    assert fired == [102.0]
    assert scheduler.active_handles == 0


def test_call_every_repeats_until_cancelled() -> None:
    scheduler = ManualScheduler()
    fired = []
    handle = scheduler.call_every(1.0, lambda: fired.append(scheduler.now()))

    scheduler.advance(3)
    assert fired == [1.0, 2.0, 3.0]

    handle.cancel()
    scheduler.advance(3)
    assert len(fired) == 3
    assert scheduler.active_handles == 0


def test_failing_callback_is_logged_and_loop_continues(caplog) -> None:
    scheduler = ManualScheduler()
    fired = []

    def explode():
        raise RuntimeError("boom")

    scheduler.call_later(1, explode)
    scheduler.call_later(2, lambda: fired.append("after"))
    scheduler.advance(5)

    assert fired == ["after"]
    assert "failed" in caplog.text


def test_dispatch_returns_result() -> None:
    scheduler = ManualScheduler()
    assert scheduler.dispatch(lambda a, b: a + b, 2, 3) == 5
    assert scheduler.dispatch(lambda: 1 / 0) is None


def test_cancel_scope_tears_down_timers_and_resources() -> None:
    scheduler = ManualScheduler()
    scope = CancelScope(scheduler)
    cancelled = []

    class Resource:
        def cancel(self):
            cancelled.append(True)

    scope.call_later(5, lambda: None)
    scope.call_every(1, lambda: None)
    scope.track(Resource())
    assert scope.active_count == 2
    assert scheduler.active_handles == 2

    scope.cancel()
    assert scheduler.active_handles == 0
    assert cancelled == [True]

    late = scope.call_every(1, lambda: None)
    assert not late.active
    scope.track(Resource())
    assert cancelled == [True, True]
    assert scheduler.active_handles == 0
