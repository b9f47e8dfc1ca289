import logging
import sys

LOGGER_NAME = "portrelay"

PREFIXES = {
    logging.DEBUG: "[DEBUG]",
    logging.INFO: "[#]",
    logging.WARNING: "[WARN]",
    logging.ERROR: "[ERROR]",
    logging.CRITICAL: "[ERROR]",
}

logger = logging.getLogger(LOGGER_NAME)


class PrefixFormatter(logging.Formatter):
    def format(self, record):
        record.prefix = PREFIXES.get(record.levelno, f"[{record.levelname}]")
        return super().format(record)


class _BelowWarning(logging.Filter):
    def filter(self, record):
        return record.levelno < logging.WARNING


def setup_logging(verbose=False):
    """Send info lines to stdout and warnings/errors to stderr."""
    formatter = PrefixFormatter("%(prefix)s %(message)s")

    out = logging.StreamHandler(sys.stdout)
    out.addFilter(_BelowWarning())
    out.setFormatter(formatter)

    err = logging.StreamHandler(sys.stderr)
    err.setLevel(logging.WARNING)
    err.setFormatter(formatter)

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
    logger.addHandler(out)
    logger.addHandler(err)
    logger.setLevel(logging.DEBUG if verbose else logging.INFO)
    logger.propagate = False
    return logger
