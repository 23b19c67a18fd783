"""Outbound message delivery.

User and bot keys have the form ``<server>_<id>`` (e.g. ``discord_1234``);
the server prefix names the channel that owns the user.
"""

from abc import ABC, abstractmethod

import discord

from logger import logger
from .errors import DeliveryError

DISCORD_SERVER = "discord"

# Discord rejects messages longer than this
DISCORD_MESSAGE_LIMIT = 2000


def make_key(server: str, identifier) -> str:
    return f"{server}_{identifier}"


def split_key(key: str) -> tuple[str, str]:
    """Split ``<server>_<id>`` into its parts.

    Raises:
        DeliveryError: If the key has no server prefix
    """
    server, sep, identifier = key.partition("_")
    if not sep or not server or not identifier:
        raise DeliveryError(f"Invalid user or bot key: {key!r}")
    return server, identifier


class Notifier(ABC):
    """Delivers text to a user through the channel that owns them."""

    @abstractmethod
    async def send(self, user: str, bot: str, text: str) -> None:
        """Send ``text`` to ``user`` via ``bot``.

        Raises:
            DeliveryError: If delivery fails
        """


class DiscordNotifier(Notifier):
    """Sends direct messages through a discord.py client."""

    def __init__(self, client: discord.Client):
        self.client = client

    async def send(self, user: str, bot: str, text: str) -> None:
        server, user_id = split_key(user)
        bot_server, bot_id = split_key(bot)
        if server != DISCORD_SERVER or bot_server != DISCORD_SERVER:
            raise DeliveryError(f"Discord cannot deliver to {user} via {bot}")
        if self.client.user is not None and str(self.client.user.id) != bot_id:
            raise DeliveryError(f"Bot {bot} is not connected")

        try:
            recipient = self.client.get_user(int(user_id)) or await self.client.fetch_user(int(user_id))
            # Split long messages
            for i in range(0, len(text), DISCORD_MESSAGE_LIMIT):
                await recipient.send(text[i:i + DISCORD_MESSAGE_LIMIT])
        except (discord.HTTPException, ValueError) as e:
            raise DeliveryError(f"Failed to message {user}: {e}") from e

        logger.debug(f"Delivered {len(text)} chars to {user}")
