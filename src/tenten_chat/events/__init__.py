"""Event bus for publishing transcript changes to renderers."""

from tenten_chat.events.bus import EventBus

__all__ = ["EventBus"]
