import inspect
import logging
from threading import Lock
from typing import Awaitable, Callable, List, Optional, Union

from offline_sync.models import ConnectivitySnapshot

logger = logging.getLogger(__name__)

ConnectivityListener = Callable[[ConnectivitySnapshot, ConnectivitySnapshot], Union[None, Awaitable[None]]]


class ConnectivityMonitor:
    """Latest reachability reported by the device, plus change listeners."""

    def __init__(self, initial: Optional[ConnectivitySnapshot] = None) -> None:
        self._lock = Lock()
        self._state = initial or ConnectivitySnapshot()
        self._listeners: List[ConnectivityListener] = []

    def current_state(self) -> ConnectivitySnapshot:
        with self._lock:
            return self._state.model_copy()

    def is_online(self) -> bool:
        return self.current_state().online

    def subscribe(self, listener: ConnectivityListener) -> Callable[[], None]:
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    async def update(self, snapshot: ConnectivitySnapshot) -> ConnectivitySnapshot:
        with self._lock:
            previous = self._state
            self._state = snapshot.model_copy()
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                result = listener(previous, snapshot)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Connectivity listener failed")
        return previous
