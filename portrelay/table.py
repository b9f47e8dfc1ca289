import threading

MAX_CONNECTIONS = 100


class RelaySlot:
    """One forwarded connection: both sockets, its worker and byte counters.

    The slot owns ``client`` and ``remote`` and closes them exactly once,
    from its worker's teardown.
    """

    def __init__(self, index, client, remote):
        self._index = index
        self.client = client
        self.remote = remote
        self.worker = None
        self.active = True
        self.bytes_client_to_remote = 0
        self.bytes_remote_to_client = 0
        self.stop_requested = threading.Event()

    @property
    def bytes_total(self):
        return self.bytes_client_to_remote + self.bytes_remote_to_client

    def request_stop(self):
        self.stop_requested.set()

    def __repr__(self):
        state = "active" if self.active else "closed"
        return f"<RelaySlot #{self._index} {state}>"


class ConnectionTable:
    def __init__(self, capacity=MAX_CONNECTIONS):
        if capacity < 1:
            raise ValueError("capacity must be at least 1")
        self.capacity = capacity
        self._slots = [None] * capacity
        self._lock = threading.Lock()

    def reserve(self, client, remote):
        """Claim the lowest free index. Returns None when the table is full."""
        with self._lock:
            for index, slot in enumerate(self._slots):
                if slot is None:
                    slot = RelaySlot(index, client, remote)
                    self._slots[index] = slot
                    return slot
        return None

    def release(self, slot):
        with self._lock:
            if self._slots[slot._index] is slot:
                self._slots[slot._index] = None
            slot.active = False

    def active_slots(self):
        with self._lock:
            return [slot for slot in self._slots if slot is not None]

    def active_count(self):
        with self._lock:
            return sum(1 for slot in self._slots if slot is not None)

    def for_each_active(self, fn):
        # fn runs without the lock held; workers need it to release themselves
        for slot in self.active_slots():
            fn(slot)

    def __len__(self):
        return self.active_count()
