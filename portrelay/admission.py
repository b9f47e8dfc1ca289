class AdmissionFilter:
    """Single-entry allow-list for client source addresses.

    The check is plain string equality on the address as returned by
    ``accept()``. There is no subnet matching and no normalization, so
    ``::ffff:10.0.0.5`` does not match ``10.0.0.5``.
    """

    def __init__(self, allowed_ip=None):
        self.allowed_ip = allowed_ip

    def is_allowed(self, address):
        if self.allowed_ip is None:
            return True
        return address == self.allowed_ip
