from __future__ import annotations

import threading

from diskd.core.jobs import CancelToken


def test_cancel_runs_callbacks_once() -> None:
    token = CancelToken()
    calls: list[str] = []
    token.connect(lambda: calls.append("a"))
    token.connect(lambda: calls.append("b"))

    token.cancel()
    token.cancel()

    assert token.is_cancelled()
    assert calls == ["a", "b"]


def test_disconnected_callback_is_not_run() -> None:
    token = CancelToken()
    calls: list[int] = []
    handler_id = token.connect(lambda: calls.append(1))
    assert handler_id > 0

    token.disconnect(handler_id)
    token.disconnect(handler_id)
    token.disconnect(0)
    token.cancel()

    assert calls == []


def test_connect_after_cancel_runs_immediately() -> None:
    token = CancelToken()
    token.cancel()
    calls: list[int] = []

    assert token.connect(lambda: calls.append(1)) == 0
    assert calls == [1]


def test_failing_callback_does_not_stop_the_others() -> None:
    token = CancelToken()
    calls: list[int] = []

    def broken() -> None:
        raise RuntimeError("boom")

    token.connect(broken)
    token.connect(lambda: calls.append(1))
    token.cancel()

    assert calls == [1]


def test_callbacks_run_in_the_cancelling_thread() -> None:
    token = CancelToken()
    seen: list[threading.Thread] = []
    token.connect(lambda: seen.append(threading.current_thread()))

    worker = threading.Thread(target=token.cancel)
    worker.start()
    worker.join(timeout=2.0)

    assert seen == [worker]
