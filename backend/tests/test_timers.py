from gobachi.services.feeding.timers import BackgroundTaskScheduler, SystemClock


class InlineRunner:
    """Runs background tasks synchronously; sleep counts calls."""

    def __init__(self, on_sleep=None):
        self.started = []
        self.sleeps = []
        self.on_sleep = on_sleep

    def start_background_task(self, target, *args, **kwargs):
        self.started.append(target)
        return target(*args, **kwargs)

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        if self.on_sleep:
            self.on_sleep(len(self.sleeps))


def test_repeating_timer_fires_until_cancelled():
    fired = []
    state = {}

    def on_sleep(count):
        if count == 4:
            state['handle'].cancel()

    runner = InlineRunner(on_sleep)
    scheduler = BackgroundTaskScheduler(runner)

    def callback():
        fired.append(len(runner.sleeps))

    # The inline runner executes the loop inside every(); hand it the handle first
    original = runner.start_background_task

    def start(target, handle, *args):
        state['handle'] = handle
        return original(target, handle, *args)

    runner.start_background_task = start
    handle = scheduler.every(250, callback)

    assert fired == [1, 2, 3]
    assert runner.sleeps == [0.25] * 4
    assert handle.cancelled


def test_callback_errors_do_not_stop_the_timer():
    calls = []
    state = {}

    def on_sleep(count):
        if count == 3:
            state['handle'].cancel()

    runner = InlineRunner(on_sleep)
    original = runner.start_background_task

    def start(target, handle, *args):
        state['handle'] = handle
        return original(target, handle, *args)

    runner.start_background_task = start

    def callback():
        calls.append(1)
        raise RuntimeError('tick failed')

    BackgroundTaskScheduler(runner).every(100, callback)
    assert len(calls) == 2


def test_system_clock_returns_epoch_ms():
    now = SystemClock().now_ms()
    assert isinstance(now, int)
    assert now > 1_600_000_000_000
