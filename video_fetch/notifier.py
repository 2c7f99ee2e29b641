"""Best-effort delivery of download lifecycle notifications."""

from typing import Callable, Dict, List, Optional

from .logger import TransferLogger

Listener = Callable[[Dict], None]


class Notifier:
    """Sends ``{"action": "download<Status>", ...}`` messages to whoever listens.

    Delivery never raises: a missing or failing listener is only logged.
    """

    def __init__(self, logger: Optional[TransferLogger] = None) -> None:
        self.logger = logger or TransferLogger()
        self._listeners: List[Listener] = []

    def add_listener(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def remove_listener(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def emit(self, status: str, **data) -> Dict:
        message = {"action": f"download{status}", **data}
        if not self._listeners:
            self.logger.info(f"No listener for {message['action']}")
            return message

        for listener in list(self._listeners):
            try:
                listener(message)
            except Exception as exc:
                self.logger.warning(f"Failed to deliver {message['action']}: {exc}")
        return message

    def started(self, transfer_id: int) -> Dict:
        return self.emit("Started", downloadId=transfer_id)

    def complete(self, transfer_id: int) -> Dict:
        return self.emit("Complete", downloadId=transfer_id)

    def failed(self, error: str, need_refresh: bool = False) -> Dict:
        if need_refresh:
            return self.emit("Failed", error=error, needRefresh=True)
        return self.emit("Failed", error=error)
