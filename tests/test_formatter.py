from __future__ import annotations

from conftest import make_tweet, read_fixture

from xarchive.formatter import article_markdown, html_to_markdown, join_items, reflow, tweet_to_markdown
from xarchive.parser.tweet_parser import parse_tweet_page


def test_paragraph_then_bullet_list() -> None:
    html = '<p>Hello <a href="https://e.com">example</a></p>\n• item one\n• item two'
    assert html_to_markdown(html) == "Hello [example](https://e.com)\n\n- item one\n- item two"


def test_mentions_and_hashtags_stay_bare() -> None:
    html = 'cc <a href="/bob">@bob</a> <a href="/hashtag/rust">#rust</a>'
    assert html_to_markdown(html) == "cc @bob #rust"


def test_emoji_image_becomes_alt_text() -> None:
    html = 'Launch <img alt="🚀" src="https://abs-0.twimg.com/emoji/v2/svg/1f680.svg"> day'
    assert html_to_markdown(html) == "Launch 🚀 day"


def test_entities_unescaped_and_tags_stripped() -> None:
    html = "<span>a &amp; b &lt;tag&gt; &quot;q&quot; &#39;s&#39;</span>"
    assert html_to_markdown(html) == "a & b <tag> \"q\" 's'"


def test_consecutive_text_lines_get_hard_break() -> None:
    assert reflow("line one\nline two") == "line one  \nline two"


def test_list_then_text_is_new_paragraph() -> None:
    assert reflow("• a\n• b\nafter") == "- a\n- b\n\nafter"


def test_br_and_blank_lines() -> None:
    assert html_to_markdown("one<br>two<br><br>three") == "one  \ntwo\n\nthree"


def test_empty_input() -> None:
    assert html_to_markdown("") == ""


def test_fixture_tweet_text() -> None:
    tweets, _ = parse_tweet_page(read_fixture("tweet_thread.html"))
    md = html_to_markdown(tweets[0].html)
    assert md == (
        "Shipping a new release today 🚀\n\n"
        "- faster builds\n- smaller bundles\n\n"
        "Notes: [example.com/notes](https://t.co/abc) #rust cc @bob"
    )


def test_tweet_with_media_and_card() -> None:
    tweet = make_tweet("alice", 1, "Look")
    tweet["media"] = [
        {"type": "image", "url": "https://pbs.twimg.com/media/a.jpg", "thumbnail": None},
        {"type": "video", "url": "https://pbs.twimg.com/amplify_video_thumb/1.jpg", "thumbnail": "https://pbs.twimg.com/amplify_video_thumb/1.jpg"},
    ]
    tweet["card"] = {"url": "https://t.co/x", "title": "Title", "description": "Desc", "domain": "e.com", "image": ""}
    assert tweet_to_markdown(tweet) == (
        "Look\n\n"
        "![image](https://pbs.twimg.com/media/a.jpg)\n\n"
        "![video](https://pbs.twimg.com/amplify_video_thumb/1.jpg)\n\n"
        "**[Title](https://t.co/x)**\nDesc"
    )


def test_join_items_uses_horizontal_rule() -> None:
    assert join_items(["a", "", "b"]) == "a\n\n---\n\nb"


def test_article_markdown_main_thread(sample_result) -> None:
    article = article_markdown(sample_result)
    assert article is not None
    assert article.tweet_count == 2
    assert article.content == "First part about Rust\n\n---\n\nSecond part"
    assert article.author["handle"] == "@alice"
    assert article.last_tweet_time == sample_result["tweets"][1]["time"]


def test_article_markdown_legacy_record_without_main_thread(sample_result) -> None:
    del sample_result["main_thread"]
    article = article_markdown(sample_result)
    assert article is not None
    assert article.tweet_count == 2


def test_article_markdown_empty() -> None:
    assert article_markdown({"url": "u", "tweets": []}) is None
