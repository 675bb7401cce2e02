"""
End-to-end tests for the shutdown sequence: API trigger, OS signal,
duplicate triggers, drain deadline and listener start failure.
"""
import asyncio
import logging
import os
import signal
import socket
import threading
import time

import requests
from fastapi.responses import PlainTextResponse

from graceful_server.config import ServerConfig
from graceful_server.main import create_app, run
from graceful_server.services.coordinator import ServerState, ShutdownCoordinator
from graceful_server.services.server import ListenerStartError, Server


class CollectingHandler(logging.Handler):
    def __init__(self):
        super().__init__(level=logging.INFO)
        self.messages = []

    def emit(self, record):
        self.messages.append(record.getMessage())


def capture_logs(name="graceful_server.services.coordinator"):
    logger = logging.getLogger(name)
    handler = CollectingHandler()
    previous_level = logger.level
    logger.addHandler(handler)
    logger.setLevel(logging.INFO)

    def detach():
        logger.removeHandler(handler)
        logger.setLevel(previous_level)

    return handler, detach


def start_server(**overrides) -> Server:
    server = Server(ServerConfig(addr="127.0.0.1:0", **overrides), create_app)
    server.start()
    assert server.wait_started(10), "server did not start"
    return server


def test_api_trigger_stops_server():
    server = start_server()
    coordinator = ShutdownCoordinator(server)
    assert coordinator.state is ServerState.RUNNING

    response = requests.get(f"http://127.0.0.1:{server.port}/shutdown", timeout=5)
    assert response.status_code == 200
    assert response.text == "Shutdown server"

    report = coordinator.wait_shutdown(timeout=10)
    assert report.request.source == "api"
    assert report.drained
    assert report.state is ServerState.STOPPED
    assert coordinator.state is ServerState.STOPPED
    assert server.wait_stopped(10)

    try:
        requests.get(f"http://127.0.0.1:{server.port}/api/get", timeout=2)
    except requests.exceptions.ConnectionError:
        pass
    else:
        raise AssertionError("server still accepting connections after shutdown")
    print("✅ /shutdown drove the server to stopped")


def test_termination_signals_reach_same_state():
    for signum in (signal.SIGINT, signal.SIGTERM):
        server = start_server()
        coordinator = ShutdownCoordinator(server)
        previous_handler = signal.getsignal(signum)
        # Handlers are installed as soon as wait_shutdown starts
        timer = threading.Timer(0.3, os.kill, (os.getpid(), signum))
        timer.start()
        try:
            report = coordinator.wait_shutdown(timeout=10)
        finally:
            timer.cancel()

        assert report.request.source == "signal"
        assert report.request.detail == signal.Signals(signum).name
        assert report.drained
        assert report.state is ServerState.STOPPED
        assert server.wait_stopped(10)
        assert signal.getsignal(signum) == previous_handler
        print(f"✅ {signal.Signals(signum).name} drove the server to stopped")


def test_signal_before_wait_is_queued():
    server = start_server()
    coordinator = ShutdownCoordinator(server)
    previous_handler = signal.getsignal(signal.SIGTERM)
    coordinator.install_signal_handlers()
    try:
        # Handled on the main thread right away, nobody waiting yet
        os.kill(os.getpid(), signal.SIGTERM)
        time.sleep(0.1)
        report = coordinator.wait_shutdown(timeout=5)
    finally:
        coordinator.restore_signal_handlers()

    assert report.request.detail == "SIGTERM"
    assert report.state is ServerState.STOPPED
    assert server.wait_stopped(10)
    assert signal.getsignal(signal.SIGTERM) == previous_handler


def test_failed_graceful_stop_still_ends_stopped():
    server = start_server()
    coordinator = ShutdownCoordinator(server)
    previous_handler = signal.getsignal(signal.SIGTERM)

    def broken_stop(timeout):
        raise RuntimeError("listener vanished")

    server.graceful_stop = broken_stop
    server.trigger.fire()
    try:
        coordinator.wait_shutdown(timeout=10)
    except RuntimeError as e:
        assert "listener vanished" in str(e)
    else:
        raise AssertionError("graceful stop error should propagate")

    assert coordinator.state is ServerState.STOPPED
    assert signal.getsignal(signal.SIGTERM) == previous_handler
    try:
        coordinator.wait_shutdown(timeout=1)
    except RuntimeError:
        pass
    else:
        raise AssertionError("no second shutdown sequence after a failed one")

    Server.graceful_stop(server, 2)
    assert server.wait_stopped(10)


def test_duplicate_triggers_run_one_drain():
    server = start_server()
    url = f"http://127.0.0.1:{server.port}/shutdown"
    handler, detach = capture_logs()
    try:
        responses = []
        lock = threading.Lock()

        def call():
            r = requests.get(url, timeout=5)
            with lock:
                responses.append((r.status_code, r.text))

        callers = [threading.Thread(target=call) for _ in range(10)]
        for t in callers:
            t.start()
        for t in callers:
            t.join()

        coordinator = ShutdownCoordinator(server)
        report = coordinator.wait_shutdown(timeout=10)
        assert server.wait_stopped(10)
    finally:
        detach()

    assert responses == [(200, "Shutdown server")] * 10
    assert report.state is ServerState.STOPPED
    assert server.notifications.empty()
    assert handler.messages.count("Stopping http server..") == 1
    assert not any(m.startswith("Shutdown request error") for m in handler.messages)


def test_coordinator_runs_only_once():
    server = start_server()
    coordinator = ShutdownCoordinator(server)
    server.trigger.fire()
    coordinator.wait_shutdown(timeout=10)
    assert server.wait_stopped(10)

    try:
        coordinator.wait_shutdown(timeout=1)
    except RuntimeError:
        pass
    else:
        raise AssertionError("second shutdown sequence should be refused")


def test_wait_without_request_times_out():
    server = start_server()
    coordinator = ShutdownCoordinator(server)
    try:
        coordinator.wait_shutdown(timeout=0.2)
    except TimeoutError:
        pass
    else:
        raise AssertionError("expected TimeoutError")
    assert coordinator.state is ServerState.RUNNING
    assert not server.stopped.is_set()

    # Still usable afterwards
    server.trigger.fire()
    report = coordinator.wait_shutdown(timeout=10)
    assert report.state is ServerState.STOPPED
    assert server.wait_stopped(10)


def test_drain_deadline_exceeded_is_logged_not_fatal():
    server = Server(ServerConfig(addr="127.0.0.1:0", shutdown_timeout=0.5), create_app)

    async def slow():
        await asyncio.sleep(5)
        return PlainTextResponse("finished")

    server.app.add_api_route("/slow", slow)
    server.start()
    assert server.wait_started(10)

    def slow_client():
        try:
            requests.get(f"http://127.0.0.1:{server.port}/slow", timeout=10)
        except requests.exceptions.RequestException:
            pass

    client = threading.Thread(target=slow_client, daemon=True)
    client.start()
    deadline = time.monotonic() + 5
    while server.in_flight.count == 0 and time.monotonic() < deadline:
        time.sleep(0.01)
    assert server.in_flight.count == 1

    handler, detach = capture_logs()
    try:
        server.trigger.fire()
        started = time.monotonic()
        report = ShutdownCoordinator(server).wait_shutdown(timeout=10)
        assert server.wait_stopped(10)
        elapsed = time.monotonic() - started
    finally:
        detach()

    assert not report.drained
    assert report.state is ServerState.STOPPED
    assert elapsed < 4, f"slow request was not cut off ({elapsed:.2f}s)"
    assert any(m.startswith("Shutdown request error") for m in handler.messages)
    print(f"✅ Drain deadline hit, server still stopped after {elapsed:.2f}s")


def test_in_flight_request_completes_within_deadline():
    server = Server(ServerConfig(addr="127.0.0.1:0", shutdown_timeout=5), create_app)

    async def brief():
        await asyncio.sleep(0.5)
        return PlainTextResponse("finished")

    server.app.add_api_route("/brief", brief)
    server.start()
    assert server.wait_started(10)

    result = {}

    def client():
        result["response"] = requests.get(f"http://127.0.0.1:{server.port}/brief", timeout=10)

    t = threading.Thread(target=client)
    t.start()
    deadline = time.monotonic() + 5
    while server.in_flight.count == 0 and time.monotonic() < deadline:
        time.sleep(0.01)

    server.trigger.fire()
    report = ShutdownCoordinator(server).wait_shutdown(timeout=10)
    t.join(10)

    assert report.drained
    assert result["response"].status_code == 200
    assert result["response"].text == "finished"
    assert server.wait_stopped(10)


def test_listener_start_failure():
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as taken:
        taken.bind(("127.0.0.1", 0))
        taken.listen()
        port = taken.getsockname()[1]

        config = ServerConfig(addr=f"127.0.0.1:{port}")
        server = Server(config, create_app)
        try:
            server.start()
        except ListenerStartError as e:
            assert str(port) in str(e)
        else:
            raise AssertionError("binding a busy port should fail")

        assert run(config) == 1


def test_run_exits_zero_after_sigterm():
    handler, detach = capture_logs("graceful_server.main")
    timer = threading.Timer(1.5, os.kill, (os.getpid(), signal.SIGTERM))
    timer.start()
    try:
        exit_code = run(ServerConfig(addr="127.0.0.1:0"))
    finally:
        timer.cancel()
        detach()

    assert exit_code == 0
    assert "DONE!" in handler.messages
    assert any(m.startswith("Server listening on 127.0.0.1:") for m in handler.messages)
    print("✅ run() drained and exited 0 after SIGTERM")


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO)
    test_api_trigger_stops_server()
    test_termination_signals_reach_same_state()
    test_signal_before_wait_is_queued()
    test_failed_graceful_stop_still_ends_stopped()
    test_duplicate_triggers_run_one_drain()
    test_coordinator_runs_only_once()
    test_wait_without_request_times_out()
    test_drain_deadline_exceeded_is_logged_not_fatal()
    test_in_flight_request_completes_within_deadline()
    test_listener_start_failure()
    test_run_exits_zero_after_sigterm()
    print("\n🎉 All shutdown tests passed!")
