"""Session persistence wiring.

SessionAutosaver listens to a SimulationSession and writes its snapshot to
storage after a short quiet period, so bursts of commands produce a single
write and commands never wait for disk. load_session restores a session
from storage, falling back to a fresh one when the record is untrusted.
"""

from __future__ import annotations

import logging
from typing import Optional

from PySide6.QtCore import QObject, QTimer, Signal

from simtrader.storage.serializer import SessionSerializer, SnapshotError
from simtrader.storage.storage import IStorageService
from simtrader.trading.session import SimulationSession, StateChange

logger = logging.getLogger(__name__)

SESSION_STORAGE_KEY = "session"


class SessionAutosaver(QObject):
    """Debounced persistence of a session's state.

    Signals:
        saved: Emitted after a snapshot was written
        saveFailed: Emitted with the error message when a write fails
    """

    saved = Signal()
    saveFailed = Signal(str)

    def __init__(
        self,
        session: SimulationSession,
        storage: IStorageService,
        delay_ms: int = 750,
        key: str = SESSION_STORAGE_KEY,
        parent: Optional[QObject] = None,
    ) -> None:
        super().__init__(parent)
        self._session = session
        self._storage = storage
        self._key = key
        self._dirty = False
        self._timer = QTimer(self)
        self._timer.setSingleShot(True)
        self._timer.setInterval(max(0, int(delay_ms)))
        self._timer.timeout.connect(self.flush)
        session.subscribe(self._on_state_changed)

    @property
    def is_pending(self) -> bool:
        return self._dirty

    def _on_state_changed(self, change: StateChange) -> None:
        self._dirty = True
        self._timer.start()

    def flush(self) -> bool:
        """Write the current snapshot now.

        Returns:
            True if the snapshot was written
        """
        self._timer.stop()
        try:
            data = SessionSerializer.serialize(self._session.snapshot())
            self._storage.save(self._key, data)
        except Exception as e:
            logger.error(f"Failed to save session: {e}")
            self.saveFailed.emit(str(e))
            return False
        self._dirty = False
        logger.info("Session saved to storage")
        self.saved.emit()
        return True

    def detach(self) -> None:
        """Stop listening, writing any pending changes first."""
        if self._dirty:
            self.flush()
        self._session.unsubscribe(self._on_state_changed)


def load_session(
    storage: IStorageService,
    strict_transitions: bool = False,
    enforce_risk_limits: bool = False,
    key: str = SESSION_STORAGE_KEY,
) -> SimulationSession:
    """Create a session from the stored record, or a default one.

    A record that fails validation or carries another schema version is
    discarded.
    """
    session = SimulationSession(
        strict_transitions=strict_transitions, enforce_risk_limits=enforce_risk_limits
    )
    data = storage.load(key)
    if data is None:
        return session
    try:
        snapshot = SessionSerializer.deserialize(data)
    except SnapshotError as e:
        logger.warning(f"Discarding stored session: {e}")
        storage.delete(key)
        return session
    session.restore(snapshot)
    return session
