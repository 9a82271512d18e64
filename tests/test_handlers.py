from datetime import datetime, timedelta, timezone
from unittest.mock import patch

import pytest

from gator.commands import Command, CommandError, State
from gator.config import Config, read_config
from gator.database import Database
from gator.handlers import (
    handle_add_feed,
    handle_agg,
    handle_browse,
    handle_feeds,
    handle_follow,
    handle_following,
    handle_login,
    handle_register,
    handle_reset,
    handle_unfollow,
    handle_users,
    parse_duration,
    parse_pub_date,
    scrape_feeds,
)


class _Stop(Exception):
    pass


@pytest.fixture
def state(tmp_path):
    db = Database.open(":memory:")
    config = Config(db_url=":memory:", path=tmp_path / "config.json")
    yield State(db=db, config=config)
    db.close()


def _register(state, name):
    handle_register(state, Command("register", [name]))
    return state.db.get_user(name)


def _write_feed(path, items):
    body = "".join(
        f"<item><title>{title}</title><link>{link}</link>"
        f"<description>{title} text</description><pubDate>{date}</pubDate></item>"
        for title, link, date in items
    )
    path.write_text(
        '<?xml version="1.0"?><rss version="2.0"><channel><title>Sample</title>'
        f"<link>https://example.com/</link><description>d</description>{body}</channel></rss>",
        encoding="utf-8",
    )
    return path.as_uri()


@pytest.mark.parametrize(
    "text, expected",
    [
        ("1h30m", timedelta(hours=1, minutes=30)),
        ("1.5s", timedelta(seconds=1.5)),
        ("300ms", timedelta(milliseconds=300)),
        ("-2m", -timedelta(minutes=2)),
        ("+10s", timedelta(seconds=10)),
        ("0", timedelta(0)),
        ("1m.5s", timedelta(minutes=1, seconds=0.5)),
    ],
)
def test_parse_duration(text, expected):
    assert parse_duration(text) == expected


@pytest.mark.parametrize("text", ["", "-", "1", "1x", ".s", "s", "3000000h"])
def test_parse_duration_rejects(text):
    with pytest.raises(ValueError):
        parse_duration(text)


def test_parse_pub_date():
    parsed = parse_pub_date("Mon, 02 Jan 2006 15:04:05 -0700")
    assert parsed == datetime(2006, 1, 2, 15, 4, 5, tzinfo=timezone(timedelta(hours=-7)))


@pytest.mark.parametrize("text", ["", "yesterday", "2006-01-02T15:04:05Z"])
def test_parse_pub_date_invalid(text):
    assert parse_pub_date(text) is None


def test_register_creates_user_and_sets_config(state, capsys):
    user = _register(state, "alice")
    assert user.name == "alice"
    assert state.config.current_user_name == "alice"
    assert read_config(state.config.path).current_user_name == "alice"
    assert "Username was created" in capsys.readouterr().out


def test_register_requires_name_and_rejects_duplicate(state):
    with pytest.raises(CommandError, match="username required"):
        handle_register(state, Command("register"))
    _register(state, "alice")
    with pytest.raises(CommandError, match="already exists"):
        handle_register(state, Command("register", ["alice"]))


def test_login_switches_user(state, capsys):
    _register(state, "alice")
    _register(state, "bob")
    handle_login(state, Command("login", ["alice"]))
    assert read_config(state.config.path).current_user_name == "alice"
    assert "The user has been set." in capsys.readouterr().out


def test_login_errors(state):
    with pytest.raises(CommandError, match="username is required"):
        handle_login(state, Command("login"))
    with pytest.raises(CommandError, match="does not exist"):
        handle_login(state, Command("login", ["ghost"]))


def test_users_marks_current(state, capsys):
    _register(state, "alice")
    _register(state, "bob")
    capsys.readouterr()
    handle_users(state, Command("users"))
    assert capsys.readouterr().out == "* alice\n* bob (current)\n"


def test_reset_removes_users(state, capsys):
    _register(state, "alice")
    handle_reset(state, Command("reset"))
    assert state.db.get_users() == []
    assert "Database reset was successful." in capsys.readouterr().out


def test_add_feed_creates_and_follows(state, capsys):
    user = _register(state, "alice")
    handle_add_feed(state, Command("addfeed", ["Blog", "https://example.com/rss"]), user)
    feed = state.db.get_feed_by_url("https://example.com/rss")
    assert feed.name == "Blog"
    assert feed.user_id == user.id
    assert [f.feed_name for f in state.db.get_feed_follows_for_user("alice")] == ["Blog"]
    assert "Feed was created" in capsys.readouterr().out


def test_add_feed_errors(state):
    user = _register(state, "alice")
    with pytest.raises(CommandError, match="too few arguments"):
        handle_add_feed(state, Command("addfeed", ["Blog"]), user)
    handle_add_feed(state, Command("addfeed", ["Blog", "https://example.com/rss"]), user)
    with pytest.raises(CommandError, match="error creating new feed"):
        handle_add_feed(state, Command("addfeed", ["Other", "https://example.com/rss"]), user)


def test_feeds_lists_owner(state, capsys):
    user = _register(state, "alice")
    handle_add_feed(state, Command("addfeed", ["Blog", "https://example.com/rss"]), user)
    capsys.readouterr()
    handle_feeds(state, Command("feeds"))
    out = capsys.readouterr().out
    assert out.startswith("--- LIST OF ALL FEEDS ---\n")
    assert '-[ FEED 1 ]------------\nname: "Blog"\nurl: "https://example.com/rss"\ncreated_by: "alice"\n' in out


def test_follow_following_and_unfollow(state, capsys):
    alice = _register(state, "alice")
    handle_add_feed(state, Command("addfeed", ["Blog", "https://example.com/rss"]), alice)
    bob = _register(state, "bob")
    capsys.readouterr()
    handle_follow(state, Command("follow", ["https://example.com/rss"]), bob)
    out = capsys.readouterr().out
    assert 'username: "bob"' in out
    assert 'feed name: "Blog"' in out
    handle_following(state, Command("following"))
    assert 'name: "Blog"' in capsys.readouterr().out
    with pytest.raises(CommandError, match="error creating feed follow"):
        handle_follow(state, Command("follow", ["https://example.com/rss"]), bob)
    handle_unfollow(state, Command("unfollow", ["https://example.com/rss"]), bob)
    assert state.db.get_feed_follows_for_user("bob") == []
    assert len(state.db.get_feed_follows_for_user("alice")) == 1


def test_follow_and_unfollow_errors(state):
    user = _register(state, "alice")
    with pytest.raises(CommandError, match="usage: follow"):
        handle_follow(state, Command("follow"), user)
    with pytest.raises(CommandError, match="error getting feeds by url"):
        handle_follow(state, Command("follow", ["https://example.com/none"]), user)
    with pytest.raises(CommandError, match="usage: unfollow"):
        handle_unfollow(state, Command("unfollow"), user)
    with pytest.raises(CommandError, match="error getting feed by url"):
        handle_unfollow(state, Command("unfollow", ["https://example.com/none"]), user)


def _browse_setup(state):
    user = _register(state, "alice")
    handle_add_feed(state, Command("addfeed", ["Blog", "https://example.com/rss"]), user)
    feed = state.db.get_feed_by_url("https://example.com/rss")
    for day in (1, 2, 3):
        state.db.create_post(
            f"Post {day}", f"https://example.com/{day}", "text",
            datetime(2024, 1, day, tzinfo=timezone.utc), feed.id,
        )
    return user


def test_browse_default_limit_newest_first(state, capsys):
    user = _browse_setup(state)
    capsys.readouterr()
    handle_browse(state, Command("browse"), user)
    out = capsys.readouterr().out
    assert out.startswith("Found 2 posts for user alice:\n--- LIST OF ALL POSTS ---\n")
    assert out.index('"Post 3"') < out.index('"Post 2"')
    assert '"Post 1"' not in out
    assert 'Published: "2024-01-03 00:00:00 +0000 UTC"' in out


def test_browse_limit_argument(state, capsys):
    user = _browse_setup(state)
    capsys.readouterr()
    handle_browse(state, Command("browse", ["3"]), user)
    out = capsys.readouterr().out
    assert out.startswith("Found 3 posts for user alice:")
    assert "Link: https://example.com/1" in out


@pytest.mark.parametrize("limit", ["abc", "1.5", "-1"])
def test_browse_rejects_bad_limit(state, limit):
    user = _register(state, "alice")
    with pytest.raises(CommandError):
        handle_browse(state, Command("browse", [limit]), user)


def test_scrape_feeds_stores_posts_and_skips_duplicates(state, tmp_path):
    user = _register(state, "alice")
    uri = _write_feed(
        tmp_path / "feed.xml",
        [
            ("First", "https://example.com/p1", "Mon, 02 Jan 2006 15:04:05 -0700"),
            ("Second", "https://example.com/p2", "not a date"),
        ],
    )
    handle_add_feed(state, Command("addfeed", ["Local", uri]), user)
    assert scrape_feeds(state) == 2
    assert scrape_feeds(state) == 2
    posts = state.db.get_posts_for_user(user.id, 10)
    assert sorted(p.title for p in posts) == ["First", "Second"]
    by_title = {p.title: p for p in posts}
    assert by_title["First"].published_at == datetime(
        2006, 1, 2, 15, 4, 5, tzinfo=timezone(timedelta(hours=-7))
    )
    assert by_title["Second"].published_at is None
    assert by_title["First"].description == "First text"


def test_scrape_feeds_rotates_through_feeds(state, tmp_path):
    user = _register(state, "alice")
    first = _write_feed(tmp_path / "a.xml", [])
    second = _write_feed(tmp_path / "b.xml", [])
    handle_add_feed(state, Command("addfeed", ["A", first]), user)
    handle_add_feed(state, Command("addfeed", ["B", second]), user)
    scrape_feeds(state)
    assert state.db.get_next_feed_to_fetch().url == second
    scrape_feeds(state)
    assert state.db.get_next_feed_to_fetch().url == first


def test_scrape_feeds_without_feeds(state):
    assert scrape_feeds(state) == 0


def test_scrape_feeds_unreachable_feed(state, tmp_path):
    user = _register(state, "alice")
    handle_add_feed(state, Command("addfeed", ["Gone", (tmp_path / "gone.xml").as_uri()]), user)
    assert scrape_feeds(state) == 0
    assert state.db.get_posts_for_user(user.id, 10) == []


def test_agg_scrapes_then_waits(state, tmp_path, capsys):
    user = _register(state, "alice")
    uri = _write_feed(tmp_path / "feed.xml", [("Only", "https://example.com/only", "")])
    handle_add_feed(state, Command("addfeed", ["Local", uri]), user)
    with patch("time.sleep", side_effect=_Stop) as sleep:
        with pytest.raises(_Stop):
            handle_agg(state, Command("agg", ["1m"]))
    assert 0 < sleep.call_args.args[0] <= 60
    assert [p.title for p in state.db.get_posts_for_user(user.id, 10)] == ["Only"]
    assert "collecting feeds every 1m" in capsys.readouterr().out


@pytest.mark.parametrize("args", [[], ["soon"], ["0s"], ["-5s"]])
def test_agg_rejects_bad_interval(state, args):
    with pytest.raises(CommandError):
        handle_agg(state, Command("agg", args))