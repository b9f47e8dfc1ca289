class RelayError(Exception):
    """A single connection could not be relayed. The accept loop keeps going."""

    def __init__(self, message, errno=None):
        super().__init__(message)
        self.errno = errno

    def __str__(self):
        message = super().__str__()
        if self.errno is not None:
            return f"{message}: {self.errno}"
        return message


class ResolveError(RelayError):
    pass


class RemoteConnectError(RelayError):
    pass


class TableFullError(RelayError):
    pass


class WorkerStartError(RelayError):
    pass


class ShuttingDownError(RelayError):
    pass
