"""Customer notifications for lifecycle transitions.

Sent after the transition has been committed. A channel failure is logged
and reported, never raised to the caller.
"""

import html
from dataclasses import dataclass, field
from typing import Awaitable, Callable, Optional

from libs.common.emails.core import EmailDeliveryError, send_email
from libs.common.logging import get_logger
from libs.common.sms import SmsDeliveryError, send_sms
from services.lockers_service.errors import NotificationFailure
from services.lockers_service.models import NotificationKind
from services.lockers_service.services.lifecycle import OrderSnapshot

logger = get_logger(__name__)

SmsSender = Callable[[str, str], Awaitable[bool]]
EmailSender = Callable[..., Awaitable[bool]]


# ---------------------------------------------------------------------------
# Templates
# ---------------------------------------------------------------------------


@dataclass
class Message:
    subject: str
    text: str
    sms: str

    @property
    def html_body(self) -> str:
        paragraphs = (
            html.escape(p).replace("\n", "<br>") for p in self.text.split("\n\n")
        )
        return "".join(f"<p>{p}</p>" for p in paragraphs)


def _order_label(order: OrderSnapshot) -> str:
    return f"#{order.order_number}" if order.order_number else order.external_order_id


def render(kind: NotificationKind, order: OrderSnapshot) -> Message:
    label = _order_label(order)
    greeting = f"Hi {order.customer_name}," if order.customer_name else "Hi,"
    location = order.location_name or "your pickup locker"

    if kind == NotificationKind.PICKUP_READY:
        link = order.pickup_link or ""
        return Message(
            subject=f"Your order {label} is ready for pickup",
            text=(
                f"{greeting}\n\n"
                f"Your order {label} is waiting for you at {location}.\n"
                f"Open your locker with this link: {link}\n\n"
                "Please collect it within the next few days."
            ),
            sms=f"LockerDrop: order {label} is ready at {location}. Open: {link}",
        )
    if kind == NotificationKind.PICKED_UP:
        return Message(
            subject=f"Order {label} picked up",
            text=f"{greeting}\n\nYou picked up order {label}. Thanks for using LockerDrop!",
            sms=f"LockerDrop: order {label} was picked up. Thanks!",
        )
    if kind == NotificationKind.CANCELLED:
        return Message(
            subject=f"Locker pickup for order {label} cancelled",
            text=(
                f"{greeting}\n\n"
                f"The locker pickup for order {label} has been cancelled. "
                "The store will contact you about next steps."
            ),
            sms=f"LockerDrop: locker pickup for order {label} was cancelled.",
        )
    if kind == NotificationKind.EXPIRED:
        return Message(
            subject=f"Pickup window for order {label} has ended",
            text=(
                f"{greeting}\n\n"
                f"Order {label} was not collected from {location} in time. "
                "The store will contact you to arrange delivery."
            ),
            sms=f"LockerDrop: the pickup window for order {label} has ended.",
        )
    raise ValueError(f"Unknown notification kind: {kind}")


# ---------------------------------------------------------------------------
# Dispatcher
# ---------------------------------------------------------------------------


@dataclass
class DispatchReport:
    kind: NotificationKind
    sent: list[str] = field(default_factory=list)
    failed: list[str] = field(default_factory=list)


class NotificationDispatcher:
    """Fans a notification out to the customer's SMS and email."""

    def __init__(
        self,
        sms_sender: Optional[SmsSender] = None,
        email_sender: Optional[EmailSender] = None,
    ):
        self._send_sms = sms_sender or send_sms
        self._send_email = email_sender or send_email

    async def _sms(self, to: str, message: Message) -> bool:
        try:
            return await self._send_sms(to, message.sms)
        except SmsDeliveryError as e:
            raise NotificationFailure("sms", str(e)) from e

    async def _email(self, to: str, message: Message) -> bool:
        try:
            return await self._send_email(
                to_email=to,
                subject=message.subject,
                body=message.text,
                html_body=message.html_body,
            )
        except EmailDeliveryError as e:
            raise NotificationFailure("email", str(e)) from e

    async def dispatch(
        self, kind: NotificationKind, order: OrderSnapshot
    ) -> DispatchReport:
        report = DispatchReport(kind=kind)
        message = render(kind, order)

        channels = []
        if order.customer_phone:
            channels.append(("sms", self._sms, order.customer_phone))
        if order.customer_email:
            channels.append(("email", self._email, order.customer_email))

        if not channels:
            logger.warning(
                "No contact details for order %s; %s notification skipped",
                order.external_order_id,
                kind.value,
            )
            return report

        for name, send, to in channels:
            try:
                if await send(to, message):
                    report.sent.append(name)
            except NotificationFailure as e:
                report.failed.append(name)
                logger.error(
                    "Notification %s failed for order %s: %s",
                    kind.value,
                    order.external_order_id,
                    e,
                )
            except Exception:
                report.failed.append(name)
                logger.exception(
                    "Unexpected error sending %s %s for order %s",
                    name,
                    kind.value,
                    order.external_order_id,
                )

        return report

    async def dispatch_safely(
        self, kind: Optional[NotificationKind], order: Optional[OrderSnapshot]
    ) -> Optional[DispatchReport]:
        """Dispatch if there is something to send."""
        if kind is None or order is None:
            return None
        return await self.dispatch(kind, order)
