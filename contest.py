# contest.py
import discord
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, List, Optional
from config import (
    CONTEST_DURATION,
    REACTION_EMOJIS,
    ANNOUNCEMENT_HASHTAG
)

logger = logging.getLogger('contest')


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass(frozen=True)
class MemeEntry:
    """A leaderboard row"""
    message_id: str
    reaction_count: int


@dataclass(frozen=True)
class ReactionEvent:
    """Platform-independent view of a "reaction added" event"""
    message_id: str
    channel_id: Optional[int]
    emoji_name: Optional[str]
    emoji_id: Optional[str]
    reactor_is_bot: bool
    message_created_at: datetime


@dataclass
class Announcement:
    """One outbound winner post"""
    content: str
    attachment_urls: List[str] = field(default_factory=list)


class ContestManager:
    """Contest timing and reaction tally for the meme of the week.

    Not thread-safe: every mutation is expected to happen on the bot's
    event loop.
    """

    def __init__(self, clock: Callable[[], datetime] = utcnow, duration=CONTEST_DURATION):
        self.clock = clock
        self.duration = duration
        self.contest_start_date: Optional[datetime] = None
        self.contest_end_date: Optional[datetime] = None
        self.last_announcement_date: Optional[datetime] = None
        # message_id -> count; dict order is first-insertion order
        self.leaderboard: Dict[str, int] = {}

    def start_contest(self):
        """Open a new contest window and discard the previous tally"""
        now = self.clock()
        self.contest_start_date = now
        self.contest_end_date = now + self.duration
        self.last_announcement_date = now
        self.leaderboard.clear()
        logger.info(f"Contest started, running until {self.contest_end_date.isoformat()}")

    def is_contest_running(self) -> bool:
        if self.contest_start_date is None or self.contest_end_date is None:
            return False
        return self.contest_start_date <= self.clock() < self.contest_end_date

    def record_reaction(self, message_id, message_created_at=None):
        """Add one reaction to a message's tally"""
        message_id = str(message_id)
        self.leaderboard[message_id] = self.leaderboard.get(message_id, 0) + 1
        logger.debug(f"Message {message_id} now has {self.leaderboard[message_id]} reaction(s)")

    def get_top_memes(self, top: int) -> List[MemeEntry]:
        return get_top_memes(self.leaderboard, top)


def is_allowed_emoji(emoji_name, emoji_id, allowed=REACTION_EMOJIS) -> bool:
    """Check by name first (unicode emoji), then by id (custom emoji)"""
    if emoji_name and emoji_name in allowed:
        return True
    return emoji_id is not None and str(emoji_id) in allowed


def is_eligible_reaction(manager: ContestManager, event: ReactionEvent, contest_channel_id,
                         allowed=REACTION_EMOJIS) -> bool:
    if event.reactor_is_bot:
        return False
    if contest_channel_id is None or event.channel_id != contest_channel_id:
        return False
    if not is_allowed_emoji(event.emoji_name, event.emoji_id, allowed):
        return False
    if not manager.is_contest_running():
        return False
    last = manager.last_announcement_date
    return last is None or event.message_created_at > last


def handle_reaction(manager: ContestManager, event: ReactionEvent, contest_channel_id,
                    allowed=REACTION_EMOJIS) -> bool:
    """Record the reaction if it counts toward the leaderboard.

    Ineligible reactions are expected and dropped without logging.
    Returns True when the tally changed.
    """
    if not is_eligible_reaction(manager, event, contest_channel_id, allowed):
        return False
    manager.record_reaction(event.message_id, event.message_created_at)
    return True


def get_top_memes(leaderboard: Dict[str, int], top: int) -> List[MemeEntry]:
    """Rank by reaction count descending, ties in first-insertion order"""
    if top <= 0:
        return []
    ranked = sorted(
        enumerate(leaderboard.items()),
        key=lambda item: (-item[1][1], item[0])
    )
    return [MemeEntry(message_id, count) for _, (message_id, count) in ranked[:top]]


def build_announcement(rank: int, winner: MemeEntry, message) -> Announcement:
    content = (
        f"🎉 Felicitaciones, {message.author.mention}! Tu post ha ganado el #{rank} "
        f"puesto al \"Meme de la semana\" con {winner.reaction_count} reacciones. "
        f"{ANNOUNCEMENT_HASHTAG}. Link: {message.jump_url} 🎉"
    )
    announcement = Announcement(content=content)
    if message.attachments:
        announcement.attachment_urls.append(message.attachments[0].url)
    return announcement


async def announce_winners(channel, winners: List[MemeEntry], fetch_files=None) -> int:
    """Post one announcement per winner, in rank order.

    `channel` is the meme channel or None when it is not configured.
    `fetch_files` turns attachment URLs into discord.File objects; without it
    announcements go out as text only. A failed send only affects its own
    winner. Returns the number of posts sent.
    """
    if channel is None:
        logger.error("Meme channel is not available, cannot announce winners")
        return 0

    sent = 0
    for rank, winner in enumerate(winners, 1):
        try:
            message = await channel.fetch_message(int(winner.message_id))
        except (discord.NotFound, discord.Forbidden) as e:
            logger.warning(f"Skipping #{rank} winner {winner.message_id}: {e}")
            continue

        announcement = build_announcement(rank, winner, message)
        files = []
        if fetch_files and announcement.attachment_urls:
            files = await fetch_files(announcement.attachment_urls)

        try:
            if files:
                try:
                    await channel.send(content=announcement.content, files=files)
                except discord.HTTPException as e:
                    # e.g. 413 when the meme is over the upload limit
                    logger.warning(f"Attachment rejected for #{rank} winner {winner.message_id}, sending text only: {e}")
                    await channel.send(content=announcement.content)
            else:
                await channel.send(content=announcement.content)
        except discord.HTTPException as e:
            logger.error(f"Could not announce #{rank} winner {winner.message_id}: {e}")
            continue
        sent += 1
        logger.info(f"Announced #{rank}: message {winner.message_id} ({winner.reaction_count} reactions)")
    return sent
