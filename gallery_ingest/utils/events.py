from dataclasses import dataclass
from typing import Dict, List, Callable, Optional
import asyncio
import logging
logger = logging.getLogger(__name__)


@dataclass
class PhaseProgress:
    """Progress information for an ingestion phase."""
    phase: str
    message: str
    current: int = 0
    total: int = 0


class EventEmitter:
    """Simple event emitter for ingestion events."""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._lock: Optional[asyncio.Lock] = None

    def on(self, event_name: str, callback: Callable):
        """Subscribe to an event."""
        if event_name not in self._listeners:
            self._listeners[event_name] = []
        if callback not in self._listeners[event_name]:
            self._listeners[event_name].append(callback)

    def off(self, event_name: str, callback: Callable):
        """Unsubscribe from an event."""
        if event_name in self._listeners:
            if callback in self._listeners[event_name]:
                self._listeners[event_name].remove(callback)

    def has_listeners(self, event_name: str) -> bool:
        return bool(self._listeners.get(event_name))

    async def emit(self, event_name: str, *args, **kwargs):
        """Emit an event to all listeners."""
        if event_name not in self._listeners:
            return

        # Created lazily so the emitter can be built outside a running loop
        if self._lock is None:
            self._lock = asyncio.Lock()

        async with self._lock:
            for callback in self._listeners[event_name][:]:  # Copy list to avoid modification during iteration
                try:
                    if asyncio.iscoroutinefunction(callback):
                        await callback(*args, **kwargs)
                    else:
                        callback(*args, **kwargs)
                except Exception as e:
                    logger.error(f"Error in event listener for {event_name}: {e}")
