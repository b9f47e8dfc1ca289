from .admission import AdmissionFilter
from .errors import (
    RelayError,
    RemoteConnectError,
    ResolveError,
    ShuttingDownError,
    TableFullError,
    WorkerStartError,
)
from .relay import PortRelay
from .table import ConnectionTable, RelaySlot

__version__ = "0.1.0"
