"""Tests for Twitch IRC line parsing and reconnect backoff."""

from multichat.chat.irc import (
    RECONNECT_BACKOFF_FACTOR,
    RECONNECT_JITTER,
    Backoff,
    parse_irc_message,
    parse_irc_tags,
    unescape_tag_value,
)

# --- parse_irc_tags ---


def test_parse_irc_tags_empty():
    assert parse_irc_tags("") == {}


def test_parse_irc_tags_multiple():
    result = parse_irc_tags("@color=#FF0000;display-name=TestUser;subscriber=1")
    assert result == {"color": "#FF0000", "display-name": "TestUser", "subscriber": "1"}


def test_parse_irc_tags_no_at_prefix():
    assert parse_irc_tags("color=#FF0000;subscriber=1") == {"color": "#FF0000", "subscriber": "1"}


def test_parse_irc_tags_escapes():
    assert parse_irc_tags("@msg=hello\\sworld\\:ok")["msg"] == "hello world;ok"


def test_parse_irc_tags_escaped_backslash_before_s():
    # "\\\\s" is an escaped backslash followed by a literal "s"
    assert unescape_tag_value("a\\\\sb") == "a\\sb"


def test_parse_irc_tags_empty_value_and_flag():
    assert parse_irc_tags("@emotes=;flagonly") == {"emotes": "", "flagonly": ""}


def test_parse_irc_tags_value_with_equals():
    assert parse_irc_tags("@key=a=b=c")["key"] == "a=b=c"


# --- parse_irc_message ---


def test_parse_privmsg():
    raw = "@color=#FF0000 :user!user@user.tmi.twitch.tv PRIVMSG #Channel :Hello world"
    msg = parse_irc_message(raw)
    assert msg.command == "PRIVMSG"
    assert msg.trailing == "Hello world"
    assert msg.params == ["#Channel"]
    assert msg.channel == "channel"
    assert msg.nick == "user"
    assert msg.tags["color"] == "#FF0000"


def test_parse_trailing_with_colons():
    msg = parse_irc_message(":u!u@u.tmi.twitch.tv PRIVMSG #c :see: http://x :)")
    assert msg.trailing == "see: http://x :)"


def test_parse_ping():
    msg = parse_irc_message("PING :tmi.twitch.tv")
    assert msg.command == "PING"
    assert msg.trailing == "tmi.twitch.tv"
    assert msg.nick == ""


def test_parse_numeric_welcome():
    msg = parse_irc_message(":tmi.twitch.tv 001 justinfan123 :Welcome, GLHF!\r\n")
    assert msg.command == "001"
    assert msg.params == ["justinfan123"]


def test_parse_join_without_trailing():
    msg = parse_irc_message(":justinfan1!justinfan1@justinfan1.tmi.twitch.tv JOIN #foo")
    assert msg.command == "JOIN"
    assert msg.trailing is None
    assert msg.channel == "foo"


def test_parse_empty_trailing_is_not_none():
    msg = parse_irc_message(":u!u@u PRIVMSG #c :")
    assert msg.trailing == ""


def test_parse_garbage():
    assert parse_irc_message("@only-tags").command == ""
    assert parse_irc_message("").command == ""


# --- Backoff ---


def test_backoff_grows_and_caps():
    backoff = Backoff(initial=1.0, maximum=5.0)
    backoff.next_delay()
    assert backoff.current == 1.0 * RECONNECT_BACKOFF_FACTOR
    for _ in range(10):
        backoff.next_delay()
    assert backoff.current == 5.0


def test_backoff_jitter_range():
    backoff = Backoff(initial=10.0, maximum=10.0)
    for _ in range(50):
        delay = backoff.next_delay()
        assert 10.0 * (1 - RECONNECT_JITTER) <= delay <= 10.0 * (1 + RECONNECT_JITTER)


def test_backoff_reset():
    backoff = Backoff(initial=2.0, maximum=60.0)
    for _ in range(3):
        backoff.next_delay()
    backoff.reset()
    assert backoff.current == 2.0
