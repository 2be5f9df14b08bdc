from directory import (
    DiscordMessageParserCallbacks,
    DiscordMessageParserEntity,
    MatrixMessageParserCallbacks,
)
from discord_types import DiscordEmoji


class FakeDiscordDirectory(DiscordMessageParserCallbacks):
    """In-memory directory: everything resolves except id ``123`` and emoji named ``unknown``."""

    def __init__(self, references=None):
        self.references = references or {}
        self.calls = []

    async def get_user(self, user_id):
        self.calls.append(("user", user_id))
        if user_id == "123":
            return None
        return DiscordMessageParserEntity(mxid="@_discord_12345:localhost", name="foxies")

    async def get_channel(self, channel_id):
        self.calls.append(("channel", channel_id))
        if channel_id == "123":
            return None
        return DiscordMessageParserEntity(mxid="#_discord_1234_12345:localhost", name="foxies")

    async def get_emoji(self, name, animated, emoji_id):
        self.calls.append(("emoji", name))
        if name == "unknown":
            return None
        return f"mxc://localhost/{name}"

    async def get_reference(self, message_id):
        self.calls.append(("reference", message_id))
        return self.references.get(message_id)


class FakeMatrixDirectory(MatrixMessageParserCallbacks):
    """In-memory directory: ids containing ``12345`` resolve, emoji with ``real_emote`` in the mxc."""

    def __init__(self, can_notify=True):
        self.can_notify = can_notify
        self.calls = []

    async def can_notify_room(self):
        self.calls.append(("can_notify_room",))
        return self.can_notify

    async def get_user_id(self, mxid):
        self.calls.append(("user", mxid))
        return "12345" if "12345" in mxid else None

    async def get_channel_id(self, mxid):
        self.calls.append(("channel", mxid))
        return "12345" if "12345" in mxid else None

    async def get_emoji(self, mxc, name):
        self.calls.append(("emoji", mxc))
        if "real_emote" in mxc:
            return DiscordEmoji(id="123456", name="test_emoji", animated=False)
        return None

    def mxc_url_to_http(self, mxc):
        return mxc
