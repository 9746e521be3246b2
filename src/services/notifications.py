"""In-app notifications and email for complaint lifecycle events.

The complaint service never waits on delivery.  It puts a typed event on
the :class:`EventChannel` (a bounded in-process queue) right after its
primary write succeeds; :class:`NotificationWorker` drains the channel
in a background task and hands each event to
:class:`NotificationDispatcher`, which writes documents to the
``notifications`` collection and sends EmailJS mail.  Every delivery
failure is logged and dropped.

Notification documents::

    {recipientId | recipientRole | recipientDept, message, complaintId,
     type, createdAt, isRead: false}

Routing:

* ``ComplaintFiled``  -- assigned department (when not ``Unassigned``)
  plus a confirmation email to the student.
* ``StatusChanged``   -- owning student; entering ``Resolved`` also
  sends the "resolved" email.
* ``Escalated``       -- the ``admin`` role.
* ``Reopened``        -- assigned department, or ``admin`` when unassigned.
* ``RepliedTo``       -- staff reply: the student; student reply: the
  assigned department, or ``admin`` when unassigned.
"""

from __future__ import annotations

import asyncio
import contextlib
from typing import TYPE_CHECKING, Any, Final

import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from config.departments import UNASSIGNED
from src.models.enums import ComplaintStatus, Role
from src.models.events import (
    ComplaintEvent,
    ComplaintFiled,
    Escalated,
    Recipient,
    RepliedTo,
    Reopened,
    StatusChanged,
)
from src.services.errors import TransientStoreError
from src.services.store.base import SERVER_TIMESTAMP

if TYPE_CHECKING:
    from src.services.email import EmailService
    from src.services.store.base import DocumentStore

logger = structlog.get_logger(__name__)

NOTIFICATIONS: Final[str] = "notifications"


# ---------------------------------------------------------------------------
# Channel
# ---------------------------------------------------------------------------


class EventChannel:
    """Bounded queue between the complaint service and the delivery worker."""

    __slots__ = ("_queue",)

    def __init__(self, maxsize: int = 1_000) -> None:
        self._queue: asyncio.Queue[ComplaintEvent] = asyncio.Queue(maxsize=maxsize)

    def emit(self, event: ComplaintEvent) -> bool:
        """Enqueue without waiting.  Returns ``False`` when the event was dropped."""
        try:
            self._queue.put_nowait(event)
        except asyncio.QueueFull:
            logger.warning(
                "notifications.channel_full",
                event_type=event.type.value,
                complaint_id=event.complaint_id,
            )
            return False
        return True

    async def get(self) -> ComplaintEvent:
        return await self._queue.get()

    def task_done(self) -> None:
        self._queue.task_done()

    async def join(self) -> None:
        await self._queue.join()

    @property
    def pending(self) -> int:
        return self._queue.qsize()


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


def _recipient_fields(recipient: Recipient) -> dict[str, str]:
    if recipient.user_id:
        return {"recipientId": recipient.user_id}
    if recipient.role is not None:
        return {"recipientRole": recipient.role.value}
    return {"recipientDept": recipient.department or ""}


def _department_or_admin(assigned_dept: str) -> Recipient:
    if assigned_dept and assigned_dept != UNASSIGNED:
        return Recipient.for_department(assigned_dept)
    return Recipient.for_role(Role.ADMIN)


class NotificationDispatcher:
    """Writes notification documents and sends lifecycle emails."""

    __slots__ = ("_email", "_store")

    def __init__(self, store: DocumentStore, email: EmailService | None = None) -> None:
        self._store = store
        self._email = email

    async def notify(
        self,
        recipient: Recipient,
        message: str,
        metadata: dict[str, Any] | None = None,
    ) -> bool:
        """Create one notification document.  Never raises."""
        doc: dict[str, Any] = {
            **(metadata or {}),
            **_recipient_fields(recipient),
            "message": message,
            "createdAt": SERVER_TIMESTAMP,
            "isRead": False,
        }
        try:
            await self._write(doc)
        except Exception:
            logger.warning(
                "notifications.write_failed",
                recipient=_recipient_fields(recipient),
                notification_type=doc.get("type"),
                exc_info=True,
            )
            return False
        return True

    @retry(
        retry=retry_if_exception_type(TransientStoreError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
        reraise=True,
    )
    async def _write(self, doc: dict[str, Any]) -> None:
        await self._store.create(NOTIFICATIONS, doc)

    async def deliver(self, event: ComplaintEvent) -> None:
        """Route one lifecycle event to its recipients."""
        meta = {"complaintId": event.complaint_id, "type": event.type.value}
        title = event.complaint_title

        if isinstance(event, ComplaintFiled):
            if event.assigned_dept and event.assigned_dept != UNASSIGNED:
                await self.notify(
                    Recipient.for_department(event.assigned_dept),
                    f"New [{event.priority.value}] priority complaint '{title}' "
                    "has been assigned to your department.",
                    meta,
                )
            if self._email is not None:
                await self._send_email(
                    self._email.send_new_complaint,
                    event,
                    to_email=event.owner_email,
                    to_name=event.owner_name,
                )

        elif isinstance(event, StatusChanged):
            await self.notify(
                Recipient.user(event.owner_id),
                f'The status of your complaint "{title}" was updated to {event.new_status.value}.',
                meta,
            )
            entering_resolved = (
                event.new_status is ComplaintStatus.RESOLVED and event.old_status is not ComplaintStatus.RESOLVED
            )
            if entering_resolved and self._email is not None:
                await self._send_email(
                    self._email.send_resolved,
                    event,
                    to_email=event.owner_email,
                    to_name=event.owner_name,
                )

        elif isinstance(event, Escalated):
            await self.notify(
                Recipient.for_role(Role.ADMIN),
                f'Complaint "{title}" has been escalated by the student.',
                meta,
            )

        elif isinstance(event, Reopened):
            await self.notify(
                _department_or_admin(event.assigned_dept),
                f'Complaint "{title}" has been re-opened by the student.',
                meta,
            )

        elif isinstance(event, RepliedTo):
            if event.author_role.is_staff:
                await self.notify(
                    Recipient.user(event.owner_id),
                    f'{event.author_label} replied to your complaint: "{title}"',
                    meta,
                )
            else:
                await self.notify(
                    _department_or_admin(event.assigned_dept),
                    f'The student replied to complaint: "{title}"',
                    meta,
                )

    async def _send_email(self, send: Any, event: ComplaintEvent, *, to_email: str, to_name: str) -> None:
        try:
            await send(
                to_email=to_email,
                to_name=to_name,
                complaint_id=event.complaint_id,
                complaint_title=event.complaint_title,
            )
        except Exception:
            logger.warning(
                "notifications.email_failed",
                event_type=event.type.value,
                complaint_id=event.complaint_id,
                exc_info=True,
            )


# ---------------------------------------------------------------------------
# Worker
# ---------------------------------------------------------------------------


class NotificationWorker:
    """Background task draining an :class:`EventChannel` into a dispatcher."""

    __slots__ = ("_channel", "_dispatcher", "_task")

    def __init__(self, channel: EventChannel, dispatcher: NotificationDispatcher) -> None:
        self._channel = channel
        self._dispatcher = dispatcher
        self._task: asyncio.Task[None] | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.create_task(self._run(), name="notification-worker")
        logger.info("notifications.worker_started")

    async def stop(self, *, drain_timeout: float = 5.0) -> None:
        """Let queued events finish (bounded by *drain_timeout*), then cancel."""
        if self._task is None:
            return
        try:
            await asyncio.wait_for(self._channel.join(), timeout=drain_timeout)
        except TimeoutError:
            logger.warning("notifications.drain_timeout", pending=self._channel.pending)
        self._task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await self._task
        self._task = None
        logger.info("notifications.worker_stopped")

    async def _run(self) -> None:
        while True:
            event = await self._channel.get()
            try:
                await self._dispatcher.deliver(event)
            except Exception:
                logger.exception(
                    "notifications.delivery_failed",
                    event_type=event.type.value,
                    complaint_id=event.complaint_id,
                )
            finally:
                self._channel.task_done()
