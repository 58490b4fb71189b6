"""PRIVMSG -> ChatMessage normalization.

Pure transformation from a parsed IRC line plus its tags into the canonical
ChatMessage record. No I/O and no side effects: given the same input (and the
same `now_ms` when no `tmi-sent-ts` tag is present) the output is identical.

Tag reference (Twitch IRC, PRIVMSG):
- display-name, color, badges, emotes, id, tmi-sent-ts, user-type
- subscriber / mod / vip flags ("1" when set)
- emotes format: `id:start-end,start-end/id:start-end`
- badges format: `name/version,name/version`
"""

from __future__ import annotations

import hashlib
import time
import uuid
from typing import Callable, Dict, List, Optional, Tuple

from ..core.errors import MalformedMessageError
from .irc import IrcMessage
from .models import Badge, ChatMessage, EmotePositions, MessageFlags

# Fallback palette for users who never picked a chat color
COLOR_PALETTE = (
    "#FF6B6B",
    "#4ECDC4",
    "#45B7D1",
    "#96CEB4",
    "#FECA57",
    "#FF9FF3",
    "#54A0FF",
    "#5F27CD",
    "#00D2D3",
    "#FF9F43",
    "#10AC84",
    "#EE5A24",
)


def derive_color(username: str) -> str:
    """Map a username to a palette color, stable across processes."""
    digest = hashlib.sha1(username.strip().lower().encode("utf-8")).digest()
    return COLOR_PALETTE[int.from_bytes(digest[:4], "big") % len(COLOR_PALETTE)]


def parse_badges(badges_tag: Optional[str]) -> Tuple[Badge, ...]:
    if not badges_tag:
        return ()
    badges: List[Badge] = []
    for item in badges_tag.split(","):
        item = item.strip()
        if not item:
            continue
        name, _, version = item.partition("/")
        badges.append(Badge(name=name, version=version))
    return tuple(badges)


def parse_emotes(emotes_tag: Optional[str]) -> Tuple[EmotePositions, ...]:
    """Parse the emotes tag, keeping every range of a repeated emote id."""
    if not emotes_tag:
        return ()

    by_id: Dict[str, List[Tuple[int, int]]] = {}
    for section in emotes_tag.split("/"):
        emote_id, sep, ranges = section.partition(":")
        if not sep or not emote_id:
            continue
        for range_str in ranges.split(","):
            start_str, dash, end_str = range_str.partition("-")
            if not dash:
                continue
            try:
                start, end = int(start_str), int(end_str)
            except ValueError:
                continue
            if start < 0 or end < start:
                continue
            by_id.setdefault(emote_id, []).append((start, end))

    return tuple(EmotePositions(id=emote_id, ranges=tuple(r)) for emote_id, r in by_id.items())


def _sent_at(tags: Dict[str, str], now_ms: Callable[[], int]) -> int:
    raw = tags.get("tmi-sent-ts", "")
    if raw:
        try:
            return int(raw)
        except ValueError:
            pass
    return now_ms()


def _now_ms() -> int:
    return int(time.time() * 1000)


def normalize(message: IrcMessage, now_ms: Optional[Callable[[], int]] = None) -> ChatMessage:
    """Build a ChatMessage from a parsed PRIVMSG.

    Raises MalformedMessageError when the channel, sender or text is missing.
    """
    if message.command != "PRIVMSG":
        raise MalformedMessageError(f"expected PRIVMSG, got {message.command or 'nothing'}")

    channel = message.channel
    if not channel:
        raise MalformedMessageError("PRIVMSG without a #channel param")
    if message.trailing is None:
        raise MalformedMessageError(f"PRIVMSG to #{channel} without text")

    tags = message.tags
    login = message.nick or tags.get("login", "").lower()
    username = tags.get("display-name", "").strip() or login
    if not username:
        raise MalformedMessageError(f"PRIVMSG to #{channel} without a sender")

    text = message.trailing
    is_action = False
    if text.startswith("\x01ACTION ") and text.endswith("\x01"):
        is_action = True
        text = text[8:-1]

    badges = parse_badges(tags.get("badges"))
    badge_names = {b.name for b in badges}
    flags = MessageFlags(
        is_subscriber=tags.get("subscriber") == "1",
        is_moderator=tags.get("mod") == "1",
        is_vip=tags.get("vip") == "1" or "vip" in badge_names,
    )

    return ChatMessage(
        id=tags.get("id") or str(uuid.uuid4()),
        channel=channel,
        username=username,
        login=login or username.lower(),
        text=text,
        color_hex=tags.get("color", "").strip() or derive_color(login or username),
        sent_at=_sent_at(tags, now_ms or _now_ms),
        badges=badges,
        emotes=parse_emotes(tags.get("emotes")),
        flags=flags,
        user_type=tags.get("user-type", "").strip() or "viewer",
        is_action=is_action,
    )
