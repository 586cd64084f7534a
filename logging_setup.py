import logging
import sys

_HANDLER_NAME = "tasktracker-console"


class _ThirdPartyFilter(logging.Filter):
    """Let our own modules through, keep library chatter at WARNING+."""

    _NOISY = ("engineio", "socketio", "passlib", "multipart", "sqlalchemy")

    def filter(self, record: logging.LogRecord) -> bool:
        if record.name.startswith(self._NOISY):
            return record.levelno >= logging.WARNING
        return True


def setup_logging(level: str = "INFO") -> None:
    """
    Install a single console handler on the root logger.

    Safe to call more than once (create_app runs per test); the handler is
    only added the first time, later calls just adjust the level.
    """
    root = logging.getLogger()
    root.setLevel(level.upper())

    if any(h.get_name() == _HANDLER_NAME for h in root.handlers):
        return

    handler = logging.StreamHandler(sys.stderr)
    handler.set_name(_HANDLER_NAME)
    handler.setFormatter(logging.Formatter("%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"))
    handler.addFilter(_ThirdPartyFilter())
    root.addHandler(handler)
