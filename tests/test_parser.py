from __future__ import annotations

from conftest import read_fixture

from xarchive.parser.following_parser import parse_following_page
from xarchive.parser.tweet_parser import main_thread_length, parse_stats, parse_tweet_page


def test_parse_tweet_page_articles_and_boundary() -> None:
    tweets, boundary_at = parse_tweet_page(read_fixture("tweet_thread.html"))
    assert len(tweets) == 4
    # "Discover more" 标题在第 3 条 article 之后
    assert boundary_at == 3
    assert [t.status_link for t in tweets] == [
        "/alice/status/1001",
        "/alice/status/1002",
        "/bob/status/2001",
        "/carol/status/3001",
    ]


def test_parse_tweet_author_time_stats() -> None:
    tweets, _ = parse_tweet_page(read_fixture("tweet_thread.html"))
    first = tweets[0]
    assert first.author.name == "Alice"
    assert first.author.handle == "@alice"
    assert first.author.avatar == "https://pbs.twimg.com/profile_images/1/alice_normal.jpg"
    assert first.time == "上午4:11 · 2025年8月20日"
    assert first.datetime == "2025-08-20T04:11:00.000Z"
    assert first.stats.replies == "12"
    assert first.stats.retweets == "34"
    assert first.stats.likes == "560"
    assert first.stats.bookmarks == "7"
    assert first.stats.views == "8900"
    assert first.has_more is False
    assert first.media == ()
    assert first.card is None
    assert "Shipping a new release today" in first.text


def test_parse_tweet_media_in_order() -> None:
    tweets, _ = parse_tweet_page(read_fixture("tweet_thread.html"))
    second = tweets[1]
    assert second.has_more is True
    assert [m.type for m in second.media] == ["image", "video"]
    assert second.media[0].url == "https://pbs.twimg.com/media/GxA1.jpg?format=jpg&name=small"
    assert second.media[1].thumbnail == "https://pbs.twimg.com/amplify_video_thumb/99/img/v.jpg"


def test_parse_tweet_card_and_english_stats() -> None:
    tweets, _ = parse_tweet_page(read_fixture("tweet_thread.html"))
    reply = tweets[2]
    assert reply.card is not None
    assert reply.card.url == "https://t.co/card1"
    assert reply.card.domain == "example.com"
    assert reply.card.title == "Release notes 2.0"
    assert reply.card.description == "Everything that changed in this release"
    assert reply.stats.replies == "3"
    assert reply.stats.retweets == "1"
    assert reply.stats.likes == "10"
    assert reply.stats.views == "500"


def test_parse_tweet_page_without_marker() -> None:
    html = '<article><a href="/a/status/1"><time>1h</time></a></article>'
    tweets, boundary_at = parse_tweet_page(html)
    assert len(tweets) == 1
    assert boundary_at is None


def test_marker_inside_article_is_not_boundary() -> None:
    html = (
        '<article><a href="/a/status/1">x</a><h2>发现更多</h2></article>'
        '<article><a href="/a/status/2">y</a></article>'
    )
    _, boundary_at = parse_tweet_page(html)
    assert boundary_at is None


def test_parse_tweet_page_empty() -> None:
    assert parse_tweet_page("") == ([], None)


def test_parse_stats_missing_label() -> None:
    stats = parse_stats("")
    assert stats.replies == "0"
    assert stats.views == "0"


def test_main_thread_length() -> None:
    tweets, _ = parse_tweet_page(read_fixture("tweet_thread.html"))
    dicts = [t.to_dict() for t in tweets]
    assert main_thread_length(dicts) == 2
    assert main_thread_length([]) == 0


def test_parse_following_page() -> None:
    users = parse_following_page(read_fixture("following.html"))
    assert [u.user_id for u in users] == ["1234", "5678", "9012"]

    dave, eve, acme = users
    assert dave.username == "dave"
    assert dave.handle == "@dave"
    assert dave.display_name == "Dave Dev"
    assert dave.bio == "Building developer tools and writing about them."
    assert dave.avatar_url == "https://pbs.twimg.com/profile_images/10/dave_normal.jpg"
    assert dave.is_following is True
    assert dave.is_verified is True
    assert dave.is_organization is False

    assert eve.display_name == "Eve"
    assert eve.is_following is False
    assert eve.is_verified is False
    assert eve.bio == ""

    assert acme.is_verified is True
    assert acme.is_organization is True


def test_parse_following_page_skips_button_without_profile_link() -> None:
    html = '<div><button data-testid="42-follow">关注</button></div>'
    assert parse_following_page(html) == []
