from __future__ import annotations

import logging
from collections import defaultdict
from collections.abc import Callable


logger = logging.getLogger(__name__)

CHANNEL_PREFIX = "bookmarks-sync-"
CHANGED_MESSAGE = {"type": "bookmarks-changed"}


def channel_name(owner_id: str) -> str:
    return f"{CHANNEL_PREFIX}{owner_id}"


class BroadcastHub:
    """Same-origin message bus shared by every tab of one browser profile.

    Channels opened with the same name see each other's messages. A channel
    never receives what it posts itself.
    """

    def __init__(self):
        self._channels: dict[str, list[BroadcastChannel]] = defaultdict(list)

    def open(self, name: str) -> "BroadcastChannel":
        channel = BroadcastChannel(self, name)
        self._channels[name].append(channel)
        return channel

    def _detach(self, channel: "BroadcastChannel") -> None:
        peers = self._channels.get(channel.name, [])
        if channel in peers:
            peers.remove(channel)
        if not peers:
            self._channels.pop(channel.name, None)

    def _deliver(self, sender: "BroadcastChannel", message: dict) -> int:
        delivered = 0
        for peer in list(self._channels.get(sender.name, [])):
            if peer is sender or peer.on_message is None:
                continue
            peer.on_message(dict(message))
            delivered += 1
        return delivered

    def listener_count(self, name: str) -> int:
        return sum(1 for ch in self._channels.get(name, []) if ch.on_message)


class BroadcastChannel:
    def __init__(self, hub: BroadcastHub, name: str):
        self.name = name
        self.on_message: Callable[[dict], None] | None = None
        self._hub = hub
        self.closed = False

    def post_message(self, message: dict) -> int:
        if self.closed:
            raise RuntimeError(f"channel {self.name} is closed")
        return self._hub._deliver(self, message)

    def close(self) -> None:
        if self.closed:
            return
        self.closed = True
        self.on_message = None
        self._hub._detach(self)


class TabNotifier:
    """Cross-tab change notifications for one owner.

    ``hub=None`` means the broadcast primitive is unavailable; every call
    then degrades to a no-op and the change feed remains the only sync path.
    """

    def __init__(self, owner_id: str, hub: BroadcastHub | None = None):
        self.owner_id = owner_id
        self.name = channel_name(owner_id)
        self._hub = hub
        self._listener: BroadcastChannel | None = None

    @property
    def available(self) -> bool:
        return self._hub is not None

    @property
    def listening(self) -> bool:
        return self._listener is not None

    def listen(self, callback: Callable[[dict], None]) -> None:
        if self._hub is None:
            logger.debug("broadcast unavailable, no tab sync for %s", self.owner_id)
            return
        self.close()
        self._listener = self._hub.open(self.name)
        self._listener.on_message = callback

    def notify(self) -> None:
        if self._hub is None:
            return
        # A transient channel, so this tab's own listener hears it too.
        channel = self._hub.open(self.name)
        try:
            channel.post_message(CHANGED_MESSAGE)
        finally:
            channel.close()

    def close(self) -> None:
        if self._listener is not None:
            self._listener.close()
            self._listener = None
