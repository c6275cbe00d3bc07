"""User-visible status notifications.

The core never reverts an optimistic edit when a remote save fails. It
reports the failure here instead, and UI collaborators render the
``sidebar`` and ``save_icon`` signals.
"""
import asyncio
import itertools
import logging
from typing import Dict, List, Optional

from connected_notes.models.schema import (
    BackendStatusNotification,
    BackendStatusNotificationType,
    epoch_millis,
)
from connected_notes.reactive import Signal

logger = logging.getLogger(__name__)

_id_counter = itertools.count()


class NotificationService:
    """Tracks sidebar messages and which files have unsaved changes."""

    def __init__(self) -> None:
        self.sidebar: Signal[List[BackendStatusNotification]] = Signal([], name="sidebar")
        self.unsaved: Signal[List[str]] = Signal([], name="unsaved")
        self.save_icon: Signal[Optional[str]] = Signal(None, name="save_icon")
        self._removal_handles: Dict[str, asyncio.TimerHandle] = {}

    @staticmethod
    def create_id() -> str:
        return f"{epoch_millis()}-{next(_id_counter)}"

    def to_sidebar(
        self,
        notification_id: str,
        message: str,
        remove_after_millis: Optional[int] = None,
        notification_type: BackendStatusNotificationType = BackendStatusNotificationType.MOLE,
    ) -> None:
        """Show or overwrite a sidebar message.

        Args:
            notification_id: Reusing an ID replaces the earlier message and
                cancels its pending removal.
            message: Text shown to the user.
            remove_after_millis: Auto-remove after this delay. Needs a running
                event loop; without one the message stays until overwritten.
            notification_type: How prominently the UI should render it.
        """
        current = [n for n in self.sidebar.value if n.id != notification_id]
        current.append(
            BackendStatusNotification(
                id=notification_id,
                message=message,
                remove_after_millis=remove_after_millis,
                type=notification_type,
            )
        )
        self._cancel_removal(notification_id)
        self.sidebar.next(current)

        if remove_after_millis:
            try:
                loop = asyncio.get_running_loop()
            except RuntimeError:
                return
            self._removal_handles[notification_id] = loop.call_later(
                remove_after_millis / 1000, self.remove, notification_id
            )

    def show_blocking_message(self, message: str) -> None:
        """Show a popup-style message that stays until replaced."""
        logger.warning(message)
        self.to_sidebar(
            self.create_id(), message, notification_type=BackendStatusNotificationType.POPUP
        )

    def remove(self, notification_id: str) -> None:
        self._cancel_removal(notification_id)
        remaining = [n for n in self.sidebar.value if n.id != notification_id]
        if len(remaining) != len(self.sidebar.value):
            self.sidebar.next(remaining)

    def unsaved_changed(self, file_id: str) -> None:
        """Mark ``file_id`` as having changes that did not reach storage."""
        values = list(self.unsaved.value)
        if file_id not in values:
            values.append(file_id)
        self.save_icon.next("unsaved")
        self.unsaved.next(values)

    def note_saved(self, file_id: str) -> None:
        values = [v for v in self.unsaved.value if v != file_id]
        if not values:
            self.save_icon.next("saved")
        self.unsaved.next(values)

    def _cancel_removal(self, notification_id: str) -> None:
        handle = self._removal_handles.pop(notification_id, None)
        if handle is not None:
            handle.cancel()
