# services/negotiation/correlator.py

import logging
import threading
from typing import Dict, Optional

logger = logging.getLogger(__name__)


class CallCorrelator:
    """
    Process-local registry of external call handles -> negotiation ids.

    - Shared by the trigger path, timeout firing and webhook ingress.
    - A handle is registered when the dispatcher returns it and removed when
      its negotiation reaches a terminal state.
    - resolve() on an unknown handle returns None; callers drop the event.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._handles: Dict[str, str] = {}

    def register(self, handle: str, negotiation_id: str) -> None:
        if not handle:
            raise ValueError("call handle must be a non-empty string")
        with self._lock:
            existing = self._handles.get(handle)
            if existing is not None and existing != negotiation_id:
                raise ValueError(
                    f"Call handle {handle} already registered to negotiation {existing}"
                )
            self._handles[handle] = negotiation_id
        logger.debug(f"Registered call handle {handle} -> {negotiation_id}")

    def resolve(self, handle: str) -> Optional[str]:
        if not handle:
            return None
        with self._lock:
            return self._handles.get(handle)

    def unregister(self, handle: str) -> bool:
        """
        Remove a handle. Returns False when it was not registered, so repeated
        terminal deliveries are harmless.
        """
        if not handle:
            return False
        with self._lock:
            removed = self._handles.pop(handle, None)
        if removed is not None:
            logger.debug(f"Unregistered call handle {handle} (negotiation {removed})")
        return removed is not None

    def snapshot(self) -> Dict[str, str]:
        """
        Return a copy of all handles currently tracked.
        """
        with self._lock:
            return dict(self._handles)

    def __len__(self) -> int:
        with self._lock:
            return len(self._handles)
