"""
Notification channels - domain independent.

A NotificationMessage is addressed to one recipient inside one tenant. The
app layer provides a NotificationChannel per sink (in-app rows, email,
webhook) and a ChannelRegistry fans a message out to the enabled sinks.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterable, List, Optional
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationMessage:
    """One notification for one recipient"""
    tenant_id: str
    recipient: str
    title: str
    body: str = ""
    entity_type: Optional[str] = None
    entity_id: Optional[str] = None


@dataclass
class DeliveryReport:
    """Channel types a message was delivered through, or failed on"""
    delivered: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.failed


class NotificationChannel(ABC):
    """A notification sink

    Subclasses set channel_type and implement deliver(). deliver() reports a
    failed delivery by returning False.
    """

    channel_type: str = ""

    @abstractmethod
    def deliver(self, message: NotificationMessage) -> bool:
        """Deliver one message; False when the sink rejected it"""


class ChannelRegistry:
    """Channels by type, one registry per notification service

        registry = ChannelRegistry([InAppChannel(db)])
        registry.dispatch(message, enabled=lambda channel_type: channel_type != "email")
    """

    def __init__(self, channels: Iterable[NotificationChannel] = ()):
        self._channels: Dict[str, NotificationChannel] = {}
        for channel in channels:
            self.add(channel)

    def add(self, channel: NotificationChannel) -> None:
        if not channel.channel_type:
            raise ValueError(f"{type(channel).__name__} has no channel_type")
        if channel.channel_type in self._channels:
            raise ValueError(f"Channel already registered: {channel.channel_type}")
        self._channels[channel.channel_type] = channel

    def get(self, channel_type: str) -> Optional[NotificationChannel]:
        return self._channels.get(channel_type)

    def channels(self, enabled: Optional[Callable[[str], bool]] = None) -> List[NotificationChannel]:
        """Registered channels in registration order, optionally filtered by type"""
        return [c for c in self._channels.values() if enabled is None or enabled(c.channel_type)]

    def dispatch(
        self,
        message: NotificationMessage,
        enabled: Optional[Callable[[str], bool]] = None,
    ) -> DeliveryReport:
        """Deliver through every enabled channel; one failing channel does not stop the others"""
        report = DeliveryReport()
        for channel in self.channels(enabled):
            if channel.deliver(message):
                report.delivered.append(channel.channel_type)
            else:
                logger.warning(f"[{message.tenant_id}] {channel.channel_type} delivery to "
                               f"{message.recipient} failed")
                report.failed.append(channel.channel_type)
        return report


__all__ = ["NotificationMessage", "DeliveryReport", "NotificationChannel", "ChannelRegistry"]
