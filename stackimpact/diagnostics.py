"""
Debug-gated diagnostics and the fault-isolation wrapper.

Every line goes through the "stackimpact" logger and only when config.debug is on.
recover_and_log() keeps agent faults from unwinding into the host application.
Depends: stdlib + stackimpact.config + stackimpact.version.
"""
import logging
import sys
from contextlib import contextmanager
from typing import Generator

from stackimpact.config import AgentConfig
from stackimpact.version import version

logger = logging.getLogger("stackimpact")

_LOG_FORMAT = "[%(asctime)s.%(msecs)03d] StackImpact " + version + ": %(message)s"
_DATE_FORMAT = "%b %d %H:%M:%S"


class _StdoutHandler(logging.StreamHandler):
    """StreamHandler that writes to whatever sys.stdout is at emit time."""

    def __init__(self, level: int = logging.NOTSET) -> None:
        logging.Handler.__init__(self, level)

    @property
    def stream(self):  # type: ignore[override]
        return sys.stdout


def _ensure_handler() -> None:
    """Attach the stdout handler once; later calls are no-ops.

    Propagation is turned off with it so a root handler from logging.basicConfig()
    does not print each line a second time.
    """
    if any(isinstance(h, _StdoutHandler) for h in logger.handlers):
        return
    handler = _StdoutHandler()
    handler.setFormatter(logging.Formatter(_LOG_FORMAT, _DATE_FORMAT))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False


class Diagnostics:
    """Debug-gated log sinks bound to one agent's configuration."""

    def __init__(self, config: AgentConfig) -> None:
        self._config = config

    @property
    def enabled(self) -> bool:
        return bool(self._config.debug)

    def log(self, msg: str, *args: object) -> None:
        if not self.enabled:
            return
        _ensure_handler()
        logger.info(msg, *args)

    def warning(self, msg: str, *args: object) -> None:
        if not self.enabled:
            return
        _ensure_handler()
        logger.warning(msg, *args)

    def error(self, err: BaseException | str) -> None:
        """Banner line followed by the error's text."""
        if not self.enabled:
            return
        _ensure_handler()
        logger.error("Error\n%s", err)

    @contextmanager
    def recover_and_log(self) -> Generator[None, None, None]:
        """
        Suppress any Exception raised in the block and log it (debug-gated).
        KeyboardInterrupt and SystemExit are not intercepted.
        """
        try:
            yield
        except Exception as e:
            self.log("Recovered from panic in agent: %s", e)
