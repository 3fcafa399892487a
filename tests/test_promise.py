"""Settling script promises from native code."""

import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

from qjs_python import Promise, PromiseState, ScriptException, UnhandledRejection, run_in_worker


def test_only_the_first_settlement_counts(context):
    bridge = Promise(context)
    assert bridge.state == PromiseState.PENDING
    assert bridge.resolve(1)
    assert bridge.resolve(2)
    assert bridge.reject("late")
    assert bridge.state == PromiseState.FULFILLED
    with bridge.result as result:
        assert result.to_int32() == 1
    bridge.dispose()


def test_then_runs_as_a_job(context):
    seen = []
    bridge = Promise(context)
    with bridge.promise() as p:
        p.invoke("then", lambda ctx, args: seen.append(args[0].to_python())).dispose()
    bridge.resolve({"ok": True})
    assert seen == []
    assert context.execute_jobs() == 1
    assert seen == [{"ok": True}]
    bridge.dispose()


def test_resolving_with_a_promise_adopts_its_state(context):
    inner = Promise(context)
    outer = Promise(context)
    with inner.promise() as p:
        outer.resolve(p)
    assert outer.state == PromiseState.PENDING
    inner.resolve("done")
    context.execute_jobs()
    assert outer.state == PromiseState.FULFILLED
    assert outer.result.to_string() == "done"
    inner.dispose()
    outer.dispose()


def test_unhandled_rejection_is_reported_once(context, logs):
    bridge = Promise(context)
    bridge.reject(context.new_error("bad thing"))
    bridge.reject("again")
    assert bridge.state == PromiseState.REJECTED
    assert logs == ["Possibly unhandled promise rejection: Error: bad thing"]
    assert len(context.runtime.unhandled_rejections) == 1

    # a late handler marks it handled
    with bridge.promise() as p:
        p.invoke("catch", lambda ctx, args: None).dispose()
    assert context.runtime.unhandled_rejections == {}
    context.execute_jobs()
    bridge.dispose()


def test_handled_rejections_are_forgotten(context, logs):
    runtime = context.runtime
    for i in range(3):
        bridge = Promise(context)
        bridge.reject(f"failure {i}")
        with bridge.promise() as p:
            p.invoke("catch", lambda ctx, args: None).dispose()
        context.execute_jobs()
        bridge.dispose()
    assert len(logs) == 3
    assert runtime.unhandled_rejections == {}
    assert runtime._reported == set()
    runtime.check_rejections()


def test_check_rejections_raises_while_unhandled(context, logs):
    bridge = Promise(context)
    bridge.reject(context.new_error("lost"))
    with pytest.raises(UnhandledRejection) as exc_info:
        context.runtime.check_rejections()
    assert exc_info.value.messages == ["Error: lost"]

    with bridge.promise() as p:
        p.invoke("catch", lambda ctx, args: None).dispose()
    context.runtime.check_rejections()
    context.execute_jobs()
    bridge.dispose()


def test_handled_rejection_is_not_reported(context, logs):
    reasons = []
    bridge = Promise(context)
    with bridge.promise() as p:
        p.invoke("then", None, lambda ctx, args: reasons.append(args[0].to_string())).dispose()
    bridge.reject("nope")
    context.execute_jobs()
    assert reasons == ["nope"]
    assert logs == []
    bridge.dispose()


def test_cleared_bridge_cannot_settle(context):
    bridge = Promise(context)
    bridge.clear()
    assert not bridge.resolve(1)
    assert bridge.state == PromiseState.PENDING
    bridge.dispose()


def test_settling_from_another_thread_is_refused(context):
    bridge = Promise(context)
    errors = []

    def worker():
        try:
            bridge.resolve(1)
        except RuntimeError as e:
            errors.append(e)

    thread = threading.Thread(target=worker)
    thread.start()
    thread.join()
    assert len(errors) == 1
    assert bridge.state == PromiseState.PENDING
    bridge.dispose()


def test_run_in_worker_resolves_on_owning_thread(context):
    seen = []

    def work(a, b):
        seen.append(threading.get_ident())
        return a ** b

    results = []
    with ThreadPoolExecutor(max_workers=1) as pool:
        with run_in_worker(context, pool, work, 2, 10) as p:
            assert p.is_promise()
            p.invoke("then", lambda ctx, args: results.append(args[0].to_python())).dispose()
            context.loop(timeout=5)

    assert results == [1024]
    assert seen and seen[0] != threading.get_ident()
    assert context.tasks.outstanding == 0


def test_run_in_worker_rejects_on_failure(context):
    def work():
        raise ValueError("worker failed")

    reasons = []
    with ThreadPoolExecutor(max_workers=1) as pool:
        with run_in_worker(context, pool, work) as p:
            p.invoke("catch", lambda ctx, args: reasons.append(args[0].to_string())).dispose()
            context.loop(timeout=5)

    assert reasons == ["Error: worker failed"]


def test_run_in_worker_submit_failure(context):
    pool = ThreadPoolExecutor(max_workers=1)
    pool.shutdown()
    with pytest.raises(RuntimeError):
        run_in_worker(context, pool, lambda: 1)
    assert context.tasks.outstanding == 0


def test_promise_values_convert_to_python_handles(context):
    bridge = Promise(context)
    with bridge.promise() as p:
        handle = p.to_python()
        assert handle.is_promise()
        handle.dispose()
    with pytest.raises(ScriptException, match="'nope' is not a function"):
        with bridge.promise() as p:
            p.invoke("nope")
    bridge.dispose()
