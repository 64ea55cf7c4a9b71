"""
Notification Service - forwards terminal task outcomes to an external notifier.

Delivery problems are logged and never touch the recorded task state.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import httpx

from file_lifecycle.config import Settings
from file_lifecycle.core.events.event_bus import DomainEventBus
from file_lifecycle.core.events.task_events import TaskFinishedEvent
from file_lifecycle.models import TaskNotification, TaskState


class Notifier(ABC):
    @abstractmethod
    async def notify(self, notification: TaskNotification) -> None:
        ...

    async def close(self) -> None:
        """Release resources held by the notifier."""


class LoggingNotifier(Notifier):
    """Default notifier: writes the notification to the log."""

    async def notify(self, notification: TaskNotification) -> None:
        if notification.state == TaskState.COMPLETED:
            logging.info(f"[green]NOTIFY[/] {notification.file_name} completed at {notification.timestamp.isoformat()}")
        else:
            logging.warning(
                f"[red]NOTIFY[/] {notification.file_name} failed at {notification.timestamp.isoformat()}: "
                f"{notification.error_message}"
            )


class WebhookNotifier(Notifier):
    """Posts the notification as JSON to a configured URL."""

    def __init__(self, url: str, timeout_seconds: float = 10.0, client: Optional[httpx.AsyncClient] = None):
        self.url = url
        self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

    async def notify(self, notification: TaskNotification) -> None:
        response = await self._client.post(
            self.url,
            json=notification.model_dump(mode="json", by_alias=True, exclude_none=True),
        )
        response.raise_for_status()

    async def close(self) -> None:
        await self._client.aclose()


class NotificationService:
    def __init__(self, event_bus: DomainEventBus, notifier: Notifier):
        self.event_bus = event_bus
        self.notifier = notifier
        self.sent = 0
        self.failed = 0

    async def start(self) -> None:
        await self.event_bus.subscribe(TaskFinishedEvent, self.handle_task_finished)
        logging.info(f"NotificationService subscribed with {self.notifier.__class__.__name__}")

    async def stop(self) -> None:
        await self.event_bus.unsubscribe(TaskFinishedEvent, self.handle_task_finished)
        await self.notifier.close()

    async def handle_task_finished(self, event: TaskFinishedEvent) -> None:
        notification = TaskNotification(
            file_name=event.file_name,
            state=event.state,
            timestamp=event.timestamp,
            error_message=event.error_message or None,
        )
        try:
            await self.notifier.notify(notification)
            self.sent += 1
        except httpx.HTTPError as e:
            self.failed += 1
            logging.warning(f"Notification for {event.file_name} (task {event.task_id}) not delivered: {e}")


def build_notifier(settings: Settings) -> Notifier:
    if settings.notification_webhook_url:
        return WebhookNotifier(
            settings.notification_webhook_url, settings.notification_timeout_seconds
        )
    return LoggingNotifier()
