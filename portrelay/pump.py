import errno
import selectors
import socket

from .log import logger

BUFFER_SIZE = 8192
IO_TIMEOUT = 30.0
POLL_INTERVAL = 1.0
KEEPALIVE_IDLE = 10
KEEPALIVE_INTERVAL = 1


def _setopt(sock, level, option, value):
    try:
        sock.setsockopt(level, option, value)
    except OSError as e:
        logger.debug(f"setsockopt({option}) failed: {e.errno}")


def tune_endpoint(sock):
    """Timeouts, no-delay and aggressive keepalive for one side of a relay."""
    sock.settimeout(IO_TIMEOUT)
    _setopt(sock, socket.IPPROTO_TCP, socket.TCP_NODELAY, 1)
    _setopt(sock, socket.SOL_SOCKET, socket.SO_KEEPALIVE, 1)

    if hasattr(socket, "SIO_KEEPALIVE_VALS"):
        try:
            sock.ioctl(socket.SIO_KEEPALIVE_VALS,
                       (1, KEEPALIVE_IDLE * 1000, KEEPALIVE_INTERVAL * 1000))
        except OSError as e:
            logger.debug(f"SIO_KEEPALIVE_VALS failed: {e.errno}")
        return

    if hasattr(socket, "TCP_KEEPIDLE"):
        _setopt(sock, socket.IPPROTO_TCP, socket.TCP_KEEPIDLE, KEEPALIVE_IDLE)
    elif hasattr(socket, "TCP_KEEPALIVE"):
        # macOS spells the idle time TCP_KEEPALIVE
        _setopt(sock, socket.IPPROTO_TCP, socket.TCP_KEEPALIVE, KEEPALIVE_IDLE)
    if hasattr(socket, "TCP_KEEPINTVL"):
        _setopt(sock, socket.IPPROTO_TCP, socket.TCP_KEEPINTVL, KEEPALIVE_INTERVAL)


def close_endpoint(sock):
    try:
        sock.shutdown(socket.SHUT_RDWR)
    except OSError:
        # already closed or never connected
        pass
    sock.close()


def _recv_failure(exc):
    if isinstance(exc, ConnectionResetError):
        return "connection reset by peer"
    if isinstance(exc, ConnectionAbortedError):
        return "connection aborted"
    if exc.errno == errno.ENETRESET:
        return "disconnected by network reset"
    if isinstance(exc, socket.timeout) or exc.errno == errno.ETIMEDOUT:
        return "connection timed out"
    return None


def _send_all(sock, data, name):
    view = memoryview(data)
    total_sent = 0
    while total_sent < len(view):
        try:
            total_sent += sock.send(view[total_sent:])
        except (ConnectionResetError, BrokenPipeError):
            logger.info(f"{name.capitalize()} connection reset while sending")
            return False
        except ConnectionAbortedError:
            logger.info(f"{name.capitalize()} connection aborted while sending")
            return False
        except OSError as e:
            logger.error(f"send() to {name} failed: {e.errno}")
            return False
    return True


def _forward(source, dest, source_name, dest_name):
    """Move one chunk from source to dest.

    Returns the number of bytes forwarded, or 0 once the relay has to stop.
    """
    try:
        data = source.recv(BUFFER_SIZE)
    except OSError as e:
        reason = _recv_failure(e)
        if reason:
            logger.info(f"{source_name.capitalize()} {reason}")
        else:
            logger.error(f"recv() from {source_name} failed: {e.errno}")
        return 0

    if not data:
        logger.info(f"{source_name.capitalize()} closed connection gracefully")
        return 0

    if not _send_all(dest, data, dest_name):
        return 0
    return len(data)


def run_relay(slot, table, stopping):
    """Worker body: pump both directions of ``slot`` until one side goes away.

    ``stopping`` is the process-wide shutdown event. The slot is always torn
    down and released back to ``table`` on the way out.
    """
    client, remote = slot.client, slot.remote
    sel = selectors.DefaultSelector()
    try:
        tune_endpoint(client)
        tune_endpoint(remote)
        sel.register(client, selectors.EVENT_READ)
        sel.register(remote, selectors.EVENT_READ)
        logger.info("Connection established, forwarding traffic...")

        while not stopping.is_set() and not slot.stop_requested.is_set():
            try:
                events = sel.select(POLL_INTERVAL)
            except (OSError, ValueError) as e:
                logger.error(f"select() failed: {e}")
                break

            if not events:
                continue
            readable = [key.fileobj for key, _ in events]

            if client in readable:
                forwarded = _forward(client, remote, "client", "remote")
                if not forwarded:
                    break
                slot.bytes_client_to_remote += forwarded

            if remote in readable:
                forwarded = _forward(remote, client, "remote", "client")
                if not forwarded:
                    break
                slot.bytes_remote_to_client += forwarded
    finally:
        logger.info(
            f"Closing connection (Sent: {slot.bytes_client_to_remote} bytes, "
            f"Received: {slot.bytes_remote_to_client} bytes, "
            f"Total: {slot.bytes_total} bytes)"
        )
        sel.close()
        close_endpoint(client)
        close_endpoint(remote)
        table.release(slot)
