"""Runtime configuration that the administration interface can change."""

from __future__ import annotations

import logging
import threading

logger = logging.getLogger(__name__)

DEFAULT_MAX_CONNECTIONS = 500
_UINT32_MAX = 0xFFFFFFFF


class AdminConfig:
    """Thread-safe server settings with a flag that records pending changes."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._max_connections = DEFAULT_MAX_CONNECTIONS
        self._changed = False

    @property
    def max_connections(self) -> int:
        """The largest number of simultaneous client connections."""
        with self._lock:
            return self._max_connections

    def set_max_connections(self, max_connections: int) -> None:
        """Change the connection limit, flagging the change if the value differs."""
        if not 0 <= max_connections <= _UINT32_MAX:
            raise ValueError(f"max_connections out of range: {max_connections}")
        with self._lock:
            if self._max_connections == max_connections:
                return
            old_value = self._max_connections
            self._max_connections = max_connections
            self._changed = True
        logger.info("max_connections changed from %s to %s", old_value, max_connections)

    def has_changed(self) -> bool:
        """Return True if a change has not been marked as processed yet."""
        with self._lock:
            return self._changed

    def mark_processed(self) -> None:
        """Clear the pending-change flag."""
        with self._lock:
            self._changed = False

    def reset(self) -> None:
        """Restore the default values."""
        with self._lock:
            self._max_connections = DEFAULT_MAX_CONNECTIONS
            self._changed = False
        logger.info("admin configuration reset to defaults")


_GLOBAL_CONFIG = AdminConfig()


def get_config() -> AdminConfig:
    """Return the configuration shared by the whole server."""
    return _GLOBAL_CONFIG