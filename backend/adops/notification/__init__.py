from adops.notification.in_app_channel import InAppChannel

__all__ = ["InAppChannel"]
