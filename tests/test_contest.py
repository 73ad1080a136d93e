import asyncio
from datetime import datetime, timedelta, timezone
from types import SimpleNamespace

import discord

from contest import (
    ContestManager,
    MemeEntry,
    ReactionEvent,
    announce_winners,
    build_announcement,
    get_top_memes,
    handle_reaction,
    is_allowed_emoji,
)

CHANNEL_ID = 555
T0 = datetime(2026, 10, 16, 17, 0, tzinfo=timezone.utc)


class FakeClock:
    def __init__(self, now=T0):
        self.now = now

    def __call__(self):
        return self.now

    def advance(self, **kwargs):
        self.now += timedelta(**kwargs)


class FakeChannel:
    def __init__(self, messages):
        self.messages = messages
        self.sent = []

    async def fetch_message(self, message_id):
        if message_id not in self.messages:
            raise discord.NotFound(SimpleNamespace(status=404, reason="Not Found"), "Unknown Message")
        return self.messages[message_id]

    async def send(self, content=None, files=None):
        self.sent.append({"content": content, "files": files})


def make_message(message_id, author="<@42>", attachments=()):
    return SimpleNamespace(
        id=message_id,
        author=SimpleNamespace(mention=author),
        jump_url=f"https://discord.com/channels/1/{CHANNEL_ID}/{message_id}",
        attachments=[SimpleNamespace(url=url) for url in attachments],
    )


def reaction(message_id="100", created_at=None, emoji_name="😂", emoji_id=None,
             is_bot=False, channel_id=CHANNEL_ID):
    return ReactionEvent(
        message_id=message_id,
        channel_id=channel_id,
        emoji_name=emoji_name,
        emoji_id=emoji_id,
        reactor_is_bot=is_bot,
        message_created_at=created_at or T0 + timedelta(minutes=5),
    )


def running_manager():
    clock = FakeClock()
    manager = ContestManager(clock=clock)
    manager.start_contest()
    return manager, clock


def test_contest_not_running_before_start():
    manager = ContestManager(clock=FakeClock())
    assert manager.is_contest_running() is False
    assert manager.contest_start_date is None
    assert manager.leaderboard == {}


def test_contest_window_is_seven_days():
    manager, clock = running_manager()
    assert manager.is_contest_running()
    assert manager.contest_end_date - manager.contest_start_date == timedelta(days=7)
    assert manager.last_announcement_date == T0

    clock.advance(days=6, hours=23, minutes=59)
    assert manager.is_contest_running()

    clock.advance(minutes=1)
    assert manager.is_contest_running() is False


def test_start_contest_clears_leaderboard():
    manager, clock = running_manager()
    manager.record_reaction("1")
    manager.record_reaction("2")
    clock.advance(days=1)

    manager.start_contest()
    assert manager.leaderboard == {}
    assert manager.contest_start_date == T0 + timedelta(days=1)


def test_record_reaction_creates_then_increments():
    manager, _ = running_manager()
    manager.record_reaction("7")
    manager.record_reaction(7)
    assert manager.leaderboard == {"7": 2}


def test_top_memes_ties_keep_first_insertion_order():
    leaderboard = {}
    for message_id, count in (("A", 5), ("B", 5), ("C", 3)):
        leaderboard[message_id] = count
    assert get_top_memes(leaderboard, 2) == [MemeEntry("A", 5), MemeEntry("B", 5)]


def test_top_memes_ranking_follows_reaction_order():
    manager, _ = running_manager()
    for message_id in ["C", "A", "B", "A", "B", "D", "A"]:
        manager.record_reaction(message_id)

    top = manager.get_top_memes(10)
    assert [(e.message_id, e.reaction_count) for e in top] == [
        ("A", 3), ("B", 2), ("C", 1), ("D", 1)
    ]


def test_top_memes_bounded_by_n_and_size():
    manager, _ = running_manager()
    assert manager.get_top_memes(3) == []
    manager.record_reaction("1")
    manager.record_reaction("2")
    assert len(manager.get_top_memes(1)) == 1
    assert len(manager.get_top_memes(5)) == 2
    assert manager.get_top_memes(0) == []


def test_allowed_emoji_by_name_or_custom_id():
    assert is_allowed_emoji("🤣", None)
    assert is_allowed_emoji("pepelaugh", "974777892418519081")
    assert is_allowed_emoji("pepelaugh", 974777892418519081)
    assert not is_allowed_emoji("👍", None)
    assert not is_allowed_emoji("pepelaugh", "1")


def test_qualifying_reaction_is_counted():
    manager, _ = running_manager()
    assert handle_reaction(manager, reaction(), CHANNEL_ID)
    assert handle_reaction(manager, reaction(emoji_name="custom", emoji_id="930549056466485298"), CHANNEL_ID)
    assert manager.leaderboard == {"100": 2}


def test_bot_reactions_never_count():
    manager, _ = running_manager()
    for _ in range(5):
        assert not handle_reaction(manager, reaction(is_bot=True), CHANNEL_ID)
    assert manager.leaderboard.get("100", 0) == 0


def test_unlisted_emoji_never_counts():
    manager, _ = running_manager()
    assert not handle_reaction(manager, reaction(emoji_name="👍"), CHANNEL_ID)
    assert manager.leaderboard == {}


def test_other_channel_or_unconfigured_channel_ignored():
    manager, _ = running_manager()
    assert not handle_reaction(manager, reaction(channel_id=999), CHANNEL_ID)
    assert not handle_reaction(manager, reaction(), None)
    assert manager.leaderboard == {}


def test_reactions_ignored_when_no_contest_running():
    clock = FakeClock()
    manager = ContestManager(clock=clock)
    assert not handle_reaction(manager, reaction(), CHANNEL_ID)

    manager.start_contest()
    clock.advance(days=8)
    assert not handle_reaction(manager, reaction(created_at=clock.now), CHANNEL_ID)
    assert manager.leaderboard == {}


def test_previous_cycle_message_ignored_after_rollover():
    manager, clock = running_manager()
    old_created = T0 + timedelta(hours=1)
    assert handle_reaction(manager, reaction("M1", created_at=old_created), CHANNEL_ID)

    clock.advance(days=7)
    manager.start_contest()
    clock.advance(hours=2)

    assert not handle_reaction(manager, reaction("M1", created_at=old_created), CHANNEL_ID)
    assert "M1" not in manager.leaderboard

    assert handle_reaction(manager, reaction("M2", created_at=clock.now), CHANNEL_ID)
    assert manager.leaderboard == {"M2": 1}


def test_message_created_at_announcement_time_is_ignored():
    manager, _ = running_manager()
    assert not handle_reaction(manager, reaction(created_at=T0), CHANNEL_ID)


def test_build_announcement_text_and_attachment():
    message = make_message(300, attachments=["https://cdn.example/a.png", "https://cdn.example/b.png"])
    announcement = build_announcement(2, MemeEntry("300", 9), message)

    assert announcement.content == (
        "🎉 Felicitaciones, <@42>! Tu post ha ganado el #2 puesto al \"Meme de la semana\" "
        "con 9 reacciones. #LaPlazaRulez!. Link: "
        f"https://discord.com/channels/1/{CHANNEL_ID}/300 🎉"
    )
    assert announcement.attachment_urls == ["https://cdn.example/a.png"]


def test_build_announcement_without_attachment():
    announcement = build_announcement(1, MemeEntry("1", 1), make_message(1))
    assert announcement.attachment_urls == []


def test_announce_winners_in_rank_order():
    channel = FakeChannel({
        1: make_message(1, author="<@1>"),
        2: make_message(2, author="<@2>", attachments=["https://cdn.example/meme.gif"]),
    })
    fetched = []

    async def fetch_files(urls):
        fetched.extend(urls)
        return ["file"]

    winners = [MemeEntry("2", 8), MemeEntry("1", 4)]
    sent = asyncio.run(announce_winners(channel, winners, fetch_files=fetch_files))

    assert sent == 2
    assert "#1 puesto" in channel.sent[0]["content"]
    assert "<@2>" in channel.sent[0]["content"]
    assert channel.sent[0]["files"] == ["file"]
    assert "#2 puesto" in channel.sent[1]["content"]
    assert channel.sent[1]["files"] is None
    assert fetched == ["https://cdn.example/meme.gif"]


def test_announce_winners_skips_deleted_message():
    channel = FakeChannel({3: make_message(3, author="<@3>")})
    winners = [MemeEntry("1", 10), MemeEntry("3", 2)]

    sent = asyncio.run(announce_winners(channel, winners))

    assert sent == 1
    assert len(channel.sent) == 1
    assert "#2 puesto" in channel.sent[0]["content"]


def test_announce_winners_without_channel_is_noop():
    manager, _ = running_manager()
    manager.record_reaction("1")
    before = dict(manager.leaderboard)

    assert asyncio.run(announce_winners(None, manager.get_top_memes(3))) == 0
    assert manager.leaderboard == before
    assert manager.last_announcement_date == T0


class OversizeUploadChannel(FakeChannel):
    """Rejects any post with files the way Discord does for oversized uploads"""

    async def send(self, content=None, files=None):
        if files:
            raise discord.HTTPException(SimpleNamespace(status=413, reason="Payload Too Large"), "Request entity too large")
        await super().send(content=content, files=files)


class BrokenSendChannel(FakeChannel):
    def __init__(self, messages, failing_mention):
        super().__init__(messages)
        self.failing_mention = failing_mention

    async def send(self, content=None, files=None):
        if self.failing_mention in content:
            raise discord.HTTPException(SimpleNamespace(status=500, reason="Internal Server Error"), "")
        await super().send(content=content, files=files)


def test_rejected_upload_falls_back_to_text_and_continues():
    channel = OversizeUploadChannel({
        1: make_message(1, author="<@1>", attachments=["https://cdn.example/huge.mp4"]),
        2: make_message(2, author="<@2>"),
        3: make_message(3, author="<@3>"),
    })

    async def fetch_files(urls):
        return ["huge.mp4"]

    winners = [MemeEntry("1", 9), MemeEntry("2", 5), MemeEntry("3", 2)]
    sent = asyncio.run(announce_winners(channel, winners, fetch_files=fetch_files))

    assert sent == 3
    assert [post["files"] for post in channel.sent] == [None, None, None]
    assert "<@1>" in channel.sent[0]["content"] and "#1 puesto" in channel.sent[0]["content"]
    assert "#2 puesto" in channel.sent[1]["content"]
    assert "#3 puesto" in channel.sent[2]["content"]


def test_failed_send_only_skips_that_winner():
    channel = BrokenSendChannel({
        1: make_message(1, author="<@1>"),
        2: make_message(2, author="<@2>"),
        3: make_message(3, author="<@3>"),
    }, failing_mention="<@1>")

    winners = [MemeEntry("1", 9), MemeEntry("2", 5), MemeEntry("3", 2)]
    sent = asyncio.run(announce_winners(channel, winners))

    assert sent == 2
    assert "<@2>" in channel.sent[0]["content"]
    assert "<@3>" in channel.sent[1]["content"]
