"""
meme_contest.py — "Meme de la semana" module

Counts allow-listed reactions on posts in the meme channel while a contest is
running, and every Friday at noon announces the most-reacted memes before
starting the next contest. Moderators can do the same by hand with
/startcontest and /winner.
"""

import io
import asyncio
import discord
import aiohttp
import pytz
from discord.ext import tasks
from pathlib import Path
from datetime import datetime
from urllib.parse import urlparse
from config import (
    MEME_CHANNEL_ID,
    TOP_MEMES,
    CONTEST_TIMEZONE,
    ANNOUNCEMENT_WEEKDAY,
    ANNOUNCEMENT_HOUR,
    START_CONTEST_COMMAND,
    WINNER_COMMAND,
    ATTACHMENT_DOWNLOAD_TIMEOUT
)
from contest import ContestManager, ReactionEvent, handle_reaction, announce_winners

MODULE_NAME = "MEME_CONTEST"

START_CONTEST_REPLY = "El concurso ha comenzado!"
WINNERS_ANNOUNCED_REPLY = "Ganadores anunciados!"
NO_WINNERS_REPLY = "No winners found for this week."
ANNOUNCE_FAILED_REPLY = "No se pudo publicar ningún ganador, revisa los logs."
ERROR_REPLY = "There was an error while executing this command!"


class MemeContest:
    """Connects the ContestManager to Discord events, commands and the weekly job"""

    def __init__(self, bot, manager=None, channel_id=MEME_CHANNEL_ID):
        self.bot = bot
        self.manager = manager or ContestManager()
        self.channel_id = channel_id
        self.tz = pytz.timezone(CONTEST_TIMEZONE)
        self.last_announcement_week = None

    # ── Reactions ────────────────────────────────────────────────────────

    def _reactor_is_bot(self, payload: discord.RawReactionActionEvent) -> bool:
        if payload.member is not None:
            return payload.member.bot
        user = self.bot.get_user(payload.user_id)
        if user is not None:
            return user.bot
        return self.bot.user is not None and payload.user_id == self.bot.user.id

    def event_from_payload(self, payload: discord.RawReactionActionEvent) -> ReactionEvent:
        return ReactionEvent(
            message_id=str(payload.message_id),
            channel_id=payload.channel_id,
            emoji_name=payload.emoji.name,
            emoji_id=str(payload.emoji.id) if payload.emoji.id else None,
            reactor_is_bot=self._reactor_is_bot(payload),
            # Message creation time is encoded in its snowflake, no fetch needed
            message_created_at=discord.utils.snowflake_time(payload.message_id),
        )

    def on_reaction(self, payload: discord.RawReactionActionEvent) -> bool:
        return handle_reaction(self.manager, self.event_from_payload(payload), self.channel_id)

    # ── Announcements ────────────────────────────────────────────────────

    async def resolve_channel(self):
        """Return the meme channel, or None if it is missing or unreachable"""
        if self.channel_id is None:
            return None
        channel = self.bot.get_channel(self.channel_id)
        if channel is not None:
            return channel
        try:
            return await self.bot.fetch_channel(self.channel_id)
        except (discord.NotFound, discord.Forbidden) as e:
            self.bot.logger.error(MODULE_NAME, f"Meme channel {self.channel_id} is not reachable", e)
            return None

    async def download_attachments(self, urls):
        """Fetch attachment URLs into discord.File objects, skipping failures"""
        files = []
        timeout = aiohttp.ClientTimeout(total=ATTACHMENT_DOWNLOAD_TIMEOUT)
        async with aiohttp.ClientSession(timeout=timeout) as session:
            for url in urls:
                try:
                    async with session.get(url) as resp:
                        if resp.status != 200:
                            self.bot.logger.log(MODULE_NAME, f"Attachment download failed: {resp.status} {url}", "WARNING")
                            continue
                        data = await resp.read()
                except (aiohttp.ClientError, asyncio.TimeoutError) as e:
                    self.bot.logger.log(MODULE_NAME, f"Attachment download failed: {url} ({e})", "WARNING")
                    continue

                filename = Path(urlparse(url).path).name or "meme.png"
                files.append(discord.File(io.BytesIO(data), filename=filename))
        return files

    async def announce_top_memes(self) -> int:
        """Announce the current top memes. Returns the number of posts sent."""
        winners = self.manager.get_top_memes(TOP_MEMES)
        if not winners:
            return 0

        if not self.manager.is_contest_running():
            self.bot.logger.log(MODULE_NAME, "Announcing winners while no contest is running", "WARNING")

        if self.channel_id is None:
            self.bot.logger.error(MODULE_NAME, "MEME_CHANNEL_ID is not set in the environment variables")
            return 0

        channel = await self.resolve_channel()
        sent = await announce_winners(channel, winners, fetch_files=self.download_attachments)
        self.bot.logger.log(MODULE_NAME, f"Announced {sent}/{len(winners)} winner(s)")
        return sent

    # ── Slash commands ───────────────────────────────────────────────────

    async def start_contest_command(self, interaction: discord.Interaction):
        try:
            self.manager.start_contest()
            self.bot.logger.log(MODULE_NAME, f"Contest started by {interaction.user}")
            await interaction.response.send_message(START_CONTEST_REPLY)
        except Exception as e:
            self.bot.logger.error(MODULE_NAME, "startcontest command failed", e)
            await self.reply_error(interaction)

    async def winner_command(self, interaction: discord.Interaction):
        try:
            await interaction.response.defer(thinking=True)
            if not self.manager.get_top_memes(TOP_MEMES):
                await interaction.followup.send(NO_WINNERS_REPLY)
                return
            sent = await self.announce_top_memes()
            await interaction.followup.send(WINNERS_ANNOUNCED_REPLY if sent else ANNOUNCE_FAILED_REPLY)
        except Exception as e:
            self.bot.logger.error(MODULE_NAME, "winner command failed", e)
            await self.reply_error(interaction)

    async def reply_error(self, interaction: discord.Interaction):
        try:
            if interaction.response.is_done():
                await interaction.followup.send(ERROR_REPLY, ephemeral=True)
            else:
                await interaction.response.send_message(ERROR_REPLY, ephemeral=True)
        except discord.HTTPException as e:
            self.bot.logger.error(MODULE_NAME, "Could not send error reply", e)

    # ── Weekly job ───────────────────────────────────────────────────────

    def is_announcement_due(self, now: datetime) -> bool:
        """True once per week, during the configured hour on the configured weekday"""
        if now.weekday() != ANNOUNCEMENT_WEEKDAY or now.hour != ANNOUNCEMENT_HOUR:
            return False
        return now.strftime("%G-%V") != self.last_announcement_week

    async def run_weekly(self, now: datetime = None):
        now = now or datetime.now(self.tz)
        if not self.is_announcement_due(now):
            return False

        self.last_announcement_week = now.strftime("%G-%V")
        self.bot.logger.log(MODULE_NAME, "Running weekly meme announcement...")
        try:
            await self.announce_top_memes()
        finally:
            self.manager.start_contest()
        return True

    # ── Text summaries ───────────────────────────────────────────────────

    def status_lines(self):
        m = self.manager
        if m.contest_start_date is None:
            lines = ["No contest has been started yet."]
        else:
            state = "running" if m.is_contest_running() else "finished"
            lines = [
                f"Contest {state}: {m.contest_start_date.astimezone(self.tz):%Y-%m-%d %H:%M} → "
                f"{m.contest_end_date.astimezone(self.tz):%Y-%m-%d %H:%M} ({CONTEST_TIMEZONE})"
            ]
        top = m.get_top_memes(TOP_MEMES)
        if not top:
            lines.append("Leaderboard is empty.")
        for rank, entry in enumerate(top, 1):
            lines.append(f"{rank}. message {entry.message_id} — {entry.reaction_count} reacciones")
        return lines


def setup(bot):
    """Setup function called by main bot to initialize this module"""

    listener_name = f"_{MODULE_NAME.lower()}_listener_registered"
    if hasattr(bot, listener_name):
        bot.logger.log(MODULE_NAME, "Module already setup, skipping duplicate registration")
        return
    setattr(bot, listener_name, True)

    contest = MemeContest(bot)
    bot.contest_manager = contest.manager
    bot.meme_contest = contest

    if MEME_CHANNEL_ID is None:
        bot.logger.log(MODULE_NAME, "⚠️  MEME_CHANNEL_ID is not set — reactions are not counted and winners cannot be announced", "WARNING")
    else:
        bot.logger.log(
            MODULE_NAME,
            f"Meme contest → channel {MEME_CHANNEL_ID} | top {TOP_MEMES} | "
            f"weekly on weekday {ANNOUNCEMENT_WEEKDAY} at {ANNOUNCEMENT_HOUR}:00 {CONTEST_TIMEZONE}"
        )

    @bot.listen("on_raw_reaction_add")
    async def on_raw_reaction_add(payload: discord.RawReactionActionEvent):
        try:
            contest.on_reaction(payload)
        except Exception as e:
            bot.logger.error(MODULE_NAME, "Reaction handling error", e)

    # --- Slash commands ---
    @bot.tree.command(name=START_CONTEST_COMMAND, description="Start a new meme of the week contest")
    async def start_contest(interaction: discord.Interaction):
        await contest.start_contest_command(interaction)

    @bot.tree.command(name=WINNER_COMMAND, description="Announce the memes of the week")
    async def winner(interaction: discord.Interaction):
        await contest.winner_command(interaction)

    # --- Weekly announcement task ---
    @tasks.loop(minutes=1)
    async def weekly_announcement():
        """Announce winners and restart the contest every Friday at noon"""
        try:
            await contest.run_weekly()
        except Exception as e:
            bot.logger.error(MODULE_NAME, "Error in weekly announcement", e)

    @weekly_announcement.before_loop
    async def before_weekly_announcement():
        await bot.wait_until_ready()

    weekly_announcement.start()

    # --- Console Command Handlers ---
    async def handle_start_contest(args):
        contest.manager.start_contest()
        print("✅ Contest started")

    async def handle_winner(args):
        if not contest.manager.get_top_memes(TOP_MEMES):
            print("ℹ️ No winners found for this week")
            return
        sent = await contest.announce_top_memes()
        print(f"✅ Announced {sent} winner(s)" if sent else "⚠️ No winner could be announced, check the logs")

    async def handle_leaderboard(args):
        print()
        for line in contest.status_lines():
            print(f"  {line}")
        print()

    register = getattr(bot, "register_console_command", None)
    if register:
        register("startcontest", "Start a new meme contest", handle_start_contest)
        register("winner", "Announce the current top memes", handle_winner)
        register("leaderboard", "Show contest window and standings", handle_leaderboard)

    bot.logger.log(MODULE_NAME, "Meme contest module loaded.")

