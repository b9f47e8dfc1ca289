import logging
import socket
import threading
import time

import pytest

from portrelay import PortRelay
from portrelay.log import logger

from echo_server import EchoServer


def wait_until(predicate, timeout=5.0, interval=0.02):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(interval)
    return predicate()


def recv_exactly(sock, size):
    chunks = []
    remaining = size
    while remaining:
        chunk = sock.recv(remaining)
        if not chunk:
            break
        chunks.append(chunk)
        remaining -= len(chunk)
    return b"".join(chunks)


def tcp_pair():
    """Two connected loopback TCP sockets."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(1)
    near = socket.create_connection(listener.getsockname(), timeout=5)
    far, _ = listener.accept()
    far.settimeout(5)
    listener.close()
    return near, far


def free_port():
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


@pytest.fixture(autouse=True)
def reset_logger():
    yield
    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.setLevel(logging.NOTSET)
    logger.propagate = True


@pytest.fixture
def echo_server():
    server = EchoServer().start()
    yield server
    server.stop()


@pytest.fixture
def start_relay():
    started = []

    def _start(remote_port, **kwargs):
        relay = PortRelay(0, "127.0.0.1", remote_port, bind_host="127.0.0.1", **kwargs)
        relay.bind()
        thread = threading.Thread(target=relay.serve_forever, daemon=True)
        thread.start()
        started.append((relay, thread))
        return relay, thread

    yield _start

    for relay, thread in started:
        relay.shutdown()
        thread.join(timeout=5)


@pytest.fixture
def connect():
    opened = []

    def _connect(port):
        sock = socket.create_connection(("127.0.0.1", port), timeout=5)
        opened.append(sock)
        return sock

    yield _connect

    for sock in opened:
        sock.close()


@pytest.fixture
def high_fds():
    """Push new socket descriptors above select()'s 1024 limit."""
    resource = pytest.importorskip("resource")
    soft, hard = resource.getrlimit(resource.RLIMIT_NOFILE)
    wanted = 1400
    if soft != resource.RLIM_INFINITY and soft < wanted:
        if hard != resource.RLIM_INFINITY and hard < wanted:
            pytest.skip(f"open file limit {hard} is too low")
        resource.setrlimit(resource.RLIMIT_NOFILE, (wanted, hard))

    fillers = [socket.socket(socket.AF_INET, socket.SOCK_STREAM) for _ in range(1100)]
    yield

    for sock in fillers:
        sock.close()
    resource.setrlimit(resource.RLIMIT_NOFILE, (soft, hard))
