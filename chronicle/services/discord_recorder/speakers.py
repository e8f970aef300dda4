"""Mapping Discord user ids to the labels used in clip filenames."""

import logging
from dataclasses import dataclass

import discord

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class KnownSpeaker:
    user_id: int
    display_name: str

    @property
    def label(self) -> str:
        return self.display_name


@dataclass(frozen=True)
class FallbackSpeaker:
    """A speaker whose Discord name could not be looked up."""

    user_id: int

    @property
    def label(self) -> str:
        return f"User_{str(self.user_id)[-4:]}"


ResolvedSpeaker = KnownSpeaker | FallbackSpeaker


async def resolve_speaker(
    bot: discord.Client | None, guild: discord.Guild | None, user_id: int
) -> ResolvedSpeaker:
    """
    Resolve a user id to a speaker, trying caches before the API.

    Never raises: any lookup failure yields a FallbackSpeaker.
    """
    member = guild.get_member(user_id) if guild is not None else None
    if member is not None:
        return KnownSpeaker(user_id, member.name)

    if bot is None:
        return FallbackSpeaker(user_id)

    user = bot.get_user(user_id)
    if user is not None:
        return KnownSpeaker(user_id, user.name)

    try:
        user = await bot.fetch_user(user_id)
    except discord.DiscordException as e:
        logger.warning(f"Could not resolve user {user_id}: {type(e).__name__}: {e}")
        return FallbackSpeaker(user_id)

    return KnownSpeaker(user_id, user.name)
