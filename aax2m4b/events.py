import logging

log = logging.getLogger(__name__)


class EventPublisher:
    """Forwards progress events to an optional ``callback(event_type, data)``."""

    _event_callback = None

    def set_event_callback(self, callback):
        self._event_callback = callback

    def _publish(self, event_type: str, data: dict):
        if self._event_callback:
            try:
                self._event_callback(event_type, data)
            except Exception:
                log.exception("Event callback error")
