import selectors
import socket
import threading

from .admission import AdmissionFilter
from .errors import (
    RelayError,
    RemoteConnectError,
    ResolveError,
    ShuttingDownError,
    TableFullError,
    WorkerStartError,
)
from .log import logger
from .pump import POLL_INTERVAL, close_endpoint, run_relay
from .table import MAX_CONNECTIONS, ConnectionTable

CONNECT_TIMEOUT = 10.0
SHUTDOWN_JOIN_TIMEOUT = 5.0


class PortRelay:
    """Listens on a local port and relays every admitted client to one remote target."""

    def __init__(self, listen_port, remote_host, remote_port, allowed_ip=None,
                 verbose=False, max_connections=MAX_CONNECTIONS, bind_host=""):
        self.listen_port = listen_port
        self.remote_host = remote_host
        self.remote_port = remote_port
        self.bind_host = bind_host
        self.verbose = verbose
        self.admission = AdmissionFilter(allowed_ip)
        self.table = ConnectionTable(max_connections)
        self.listen_sock = None
        self.port = None

        self._stopping = threading.Event()
        self._shutdown_lock = threading.Lock()
        self._shutdown_started = False
        self._worker_count = 0

    @property
    def running(self):
        return not self._stopping.is_set()

    def bind(self):
        listen_sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        try:
            listen_sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
            listen_sock.bind((self.bind_host, self.listen_port))
            listen_sock.listen(socket.SOMAXCONN)
            listen_sock.setblocking(False)
        except OSError:
            listen_sock.close()
            raise
        self.listen_sock = listen_sock
        self.port = listen_sock.getsockname()[1]
        logger.info(f"Listening on port {self.port}...")

    def serve_forever(self):
        if self.listen_sock is None:
            self.bind()

        with selectors.DefaultSelector() as sel:
            if self.running:
                sel.register(self.listen_sock, selectors.EVENT_READ)
                self._accept_loop(sel)

        self.shutdown()

    def _accept_loop(self, sel):
        while self.running:
            try:
                if not sel.select(POLL_INTERVAL):
                    continue
                client_sock, client_addr = self.listen_sock.accept()
            except BlockingIOError:
                # pending connection went away before accept()
                continue
            except (OSError, ValueError) as e:
                # shutdown() closed the listener under us
                if not self.running:
                    break
                logger.error(f"accept() failed: {getattr(e, 'errno', e)}")
                break
            self.accept_client(client_sock, client_addr)

    def accept_client(self, client_sock, client_addr):
        client_ip, client_port = client_addr[0], client_addr[1]

        if not self.admission.is_allowed(client_ip):
            if self.verbose:
                logger.info(f"Connection from {client_ip}:{client_port} REJECTED (IP not allowed)")
            close_endpoint(client_sock)
            return None

        logger.info(f"New connection from {client_ip}:{client_port} ACCEPTED")
        try:
            return self.handle_connection(client_sock)
        except RelayError as e:
            logger.error(str(e))
            return None

    def handle_connection(self, client_sock):
        """Dial the remote target for an accepted client and start its relay.

        Raises a RelayError subclass after closing the client if anything
        fails before the worker is running.
        """
        try:
            remote_sock = socket.create_connection(
                (self.remote_host, self.remote_port), timeout=CONNECT_TIMEOUT)
        except socket.gaierror as e:
            close_endpoint(client_sock)
            raise ResolveError(f"getaddrinfo() failed for {self.remote_host}", e.errno) from e
        except OSError as e:
            close_endpoint(client_sock)
            raise RemoteConnectError("connect() to remote failed", e.errno) from e

        logger.info(f"Connected to remote {self.remote_host}:{self.remote_port}")

        slot = self.table.reserve(client_sock, remote_sock)
        if slot is None:
            close_endpoint(remote_sock)
            close_endpoint(client_sock)
            raise TableFullError("Maximum connections reached")

        if not self.running:
            self.table.release(slot)
            close_endpoint(remote_sock)
            close_endpoint(client_sock)
            raise ShuttingDownError("Relay is shutting down")

        self._worker_count += 1
        slot.worker = threading.Thread(
            target=run_relay,
            args=(slot, self.table, self._stopping),
            name=f"relay-{self._worker_count}",
            daemon=True,
        )
        try:
            slot.worker.start()
        except RuntimeError as e:
            self.table.release(slot)
            close_endpoint(remote_sock)
            close_endpoint(client_sock)
            raise WorkerStartError(f"Thread start failed ({e})") from e
        return slot

    def _stop_and_wait(self, slot):
        slot.request_stop()
        worker = slot.worker
        if worker is None or worker is threading.current_thread():
            return
        worker.join(SHUTDOWN_JOIN_TIMEOUT)
        if worker.is_alive():
            logger.warning(f"{worker.name} did not stop in {SHUTDOWN_JOIN_TIMEOUT:g}s, abandoning it")

    def shutdown(self):
        """Stop accepting, stop every relay and wait for them. Runs at most once."""
        with self._shutdown_lock:
            if self._shutdown_started:
                return
            self._shutdown_started = True

        logger.info("Shutting down...")
        self._stopping.set()

        if self.listen_sock is not None:
            self.listen_sock.close()

        self.table.for_each_active(self._stop_and_wait)
        logger.info("Cleanup complete")
