"""Alert notification fan-out.

The alert engine hands a stored alert to ``NotificationDispatcher.dispatch``,
which only enqueues it on the event bus. Delivery happens on the bus worker
thread: every recipient (device owner plus assigned users) gets a realtime
push and an email, subject to the interface's popup/email flags. Every
attempt is logged to the notifications table. A failing sink is logged and
never reaches the alert engine.
"""
import smtplib
import threading
from email.message import EmailMessage
from typing import Callable, Dict, List, Optional

from app.events import Event, EventBus, EventType
from config import get_logger
from config.exceptions import NotificationFailure
from monitor.models import Alert, AlertKind, Device, MonitoredInterface
from monitor.utils import format_rate

logger = get_logger(__name__)

RealtimeCallback = Callable[[dict], None]

TITLES = {
    AlertKind.TRAFFIC: "Traffic Alert",
    AlertKind.PORT_DOWN: "Port Down",
    AlertKind.CONNECTIVITY: "Router Down",
}


def build_payload(alert: Alert, device: Device) -> dict:
    """Realtime notification body for one alert."""
    return {
        "alert_id": alert.id,
        "title": f"{TITLES[alert.kind]}: {device.name}",
        "message": alert.message,
        "severity": alert.severity.value,
        "device_name": device.name,
        "interface_name": alert.interface_name,
        "interface_comment": alert.interface_comment,
    }


class RealtimeChannel:
    """Per-user realtime push channel.

    Live sessions register a callback for their user. ``push_realtime``
    fans a payload out to every session of that user.
    """

    def __init__(self):
        self._subscribers: Dict[str, List[RealtimeCallback]] = {}
        self._lock = threading.Lock()

    def subscribe(self, user_id: str, callback: RealtimeCallback) -> None:
        with self._lock:
            self._subscribers.setdefault(user_id, []).append(callback)

    def unsubscribe(self, user_id: str, callback: RealtimeCallback) -> bool:
        with self._lock:
            callbacks = self._subscribers.get(user_id, [])
            try:
                callbacks.remove(callback)
            except ValueError:
                return False
            if not callbacks:
                self._subscribers.pop(user_id, None)
            return True

    def session_count(self, user_id: str) -> int:
        with self._lock:
            return len(self._subscribers.get(user_id, []))

    def push_realtime(self, user_id: str, payload: dict) -> int:
        """Deliver to every live session of a user.

        Returns:
            Number of sessions reached (0 when the user is offline).

        Raises:
            NotificationFailure: At least one session callback failed.
        """
        with self._lock:
            callbacks = list(self._subscribers.get(user_id, []))

        delivered = 0
        errors = []
        for callback in callbacks:
            try:
                callback(payload)
                delivered += 1
            except Exception as e:
                errors.append(str(e))

        if errors:
            raise NotificationFailure(
                f"Realtime push to {user_id} failed for {len(errors)} session(s)",
                {"errors": errors, "delivered": delivered},
            )
        return delivered


class EmailSink:
    """Sends alert emails over SMTP.

    Without a configured SMTP host the message is written to the log
    instead, which keeps a fresh install usable.
    """

    def __init__(self, settings, timeout: float = 10.0):
        self._settings = settings
        self._timeout = timeout

    @staticmethod
    def compose(alert: Alert, device: Device) -> EmailMessage:
        subject_target = alert.interface_name or "Router Connectivity"
        kind = "Connectivity Alert" if alert.is_device_scoped else TITLES[alert.kind]
        observed = format_rate(alert.observed_value) if alert.observed_value is not None else "N/A"
        threshold = format_rate(alert.threshold) if alert.threshold is not None else "N/A"

        message = EmailMessage()
        message["Subject"] = (
            f"[{alert.severity.value.upper()}] {kind}: {device.name} - {subject_target}"
        )
        message.set_content(
            f"{kind} Notification\n"
            f"\n"
            f"Router: {device.name} ({device.address})\n"
            f"Interface: {subject_target}\n"
            f"Severity: {alert.severity.value}\n"
            f"\n"
            f"Current RX Traffic: {observed}\n"
            f"Threshold: {threshold}\n"
            f"\n"
            f"{alert.message}\n"
            f"\n"
            f"---\n"
            f"Router Monitor\n"
        )
        return message

    def send_email(self, user_id: str, alert: Alert, device: Device) -> bool:
        """Email one recipient.

        Returns:
            True if a message was handed to the SMTP server, False if the
            user has no address or SMTP is not configured.

        Raises:
            NotificationFailure: The SMTP exchange failed.
        """
        address = self._settings.get_user_email(user_id)
        if not address:
            logger.debug(f"No email address for user {user_id}, skipping email")
            return False

        smtp = self._settings.get_smtp()
        message = self.compose(alert, device)
        message["From"] = smtp.from_address
        message["To"] = address

        if not smtp.configured:
            logger.info(f"SMTP not configured; email to {address}: {message['Subject']}")
            return False

        try:
            if smtp.port == 465:
                server = smtplib.SMTP_SSL(smtp.host, smtp.port, timeout=self._timeout)
            else:
                server = smtplib.SMTP(smtp.host, smtp.port, timeout=self._timeout)
            with server:
                if smtp.use_tls and smtp.port != 465:
                    server.starttls()
                if smtp.username:
                    server.login(smtp.username, smtp.password)
                server.send_message(message)
        except (smtplib.SMTPException, OSError) as e:
            raise NotificationFailure(
                f"Failed to send alert email to {address}: {e}", {"alert_id": alert.id}
            ) from e

        logger.info(f"Alert email sent to {address}")
        return True


class NotificationDispatcher:
    """Fire-and-forget delivery of alerts to the email and realtime sinks."""

    def __init__(self, store, bus: EventBus, email: Optional[EmailSink] = None,
                 realtime: Optional[RealtimeChannel] = None):
        self._store = store
        self._bus = bus
        self._email = email
        self._realtime = realtime
        bus.subscribe(EventType.ALERT_CREATED, self._on_alert_created)

    def dispatch(self, alert: Alert, device: Device,
                 interface: Optional[MonitoredInterface] = None) -> None:
        """Queue delivery of a stored alert. Returns immediately."""
        self._bus.publish(
            EventType.ALERT_CREATED,
            {"alert": alert, "device": device, "interface": interface},
            source="alerts",
        )

    def _on_alert_created(self, event: Event) -> None:
        self.deliver(event.data["alert"], event.data["device"], event.data.get("interface"))

    def deliver(self, alert: Alert, device: Device,
                interface: Optional[MonitoredInterface] = None) -> Dict[str, int]:
        """Deliver to every recipient now (runs on the bus worker).

        Returns:
            Count of successful deliveries per channel.
        """
        recipients = self._store.get_alert_recipients(device.id)
        if not recipients and device.owner_id:
            recipients = [device.owner_id]

        send_popup = interface is None or interface.popup_notifications
        send_email = interface is None or interface.email_notifications
        payload = build_payload(alert, device)
        delivered = {"popup": 0, "email": 0}

        for user_id in recipients:
            if send_popup and self._realtime is not None:
                self._attempt("popup", alert, user_id,
                              lambda: self._push(user_id, payload),
                              delivered)
            if send_email and self._email is not None:
                self._attempt("email", alert, user_id,
                              lambda: self._email.send_email(user_id, alert, device),
                              delivered)

        logger.info(
            f"Alert #{alert.id} for {device.name} sent to {len(recipients)} user(s): "
            f"{delivered['popup']} popup, {delivered['email']} email"
        )
        return delivered

    def _push(self, user_id: str, payload: dict) -> bool:
        # The notification row doubles as the inbox entry for offline users
        self._realtime.push_realtime(user_id, payload)
        return True

    def _attempt(self, channel: str, alert: Alert, user_id: str,
                 send: Callable[[], bool], delivered: Dict[str, int]) -> None:
        try:
            sent = send()
        except NotificationFailure as e:
            logger.error(f"{channel} notification for alert #{alert.id} to {user_id} failed: {e}")
            self._store.record_notification(alert.id, user_id, channel, False, e.message)
            return
        except Exception as e:
            logger.error(f"Unexpected {channel} sink error for alert #{alert.id}: {e}")
            self._store.record_notification(alert.id, user_id, channel, False, str(e))
            return

        if sent:
            delivered[channel] += 1
            self._store.record_notification(alert.id, user_id, channel, True)
