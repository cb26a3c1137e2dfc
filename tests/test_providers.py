import pytest

from bookmind.services.errors import ProviderUnavailable
from bookmind.services.providers import (
    DisabledProvider,
    OpenAIProvider,
    build_provider,
    build_system_prompt,
    parse_insight_payload,
    parse_tag_payload,
    user_message_text,
)


def test_parse_tag_payload_accepts_list_or_comma_string():
    assert parse_tag_payload({"tags": ["Web-Dev", "python", "PYTHON"]}) == [
        "web dev",
        "python",
    ]
    assert parse_tag_payload({"Tags": "news, tech"}) == ["news", "tech"]
    assert parse_tag_payload({"tags": 5}) == []


def test_parse_insight_payload_falls_back_and_clamps():
    result = parse_insight_payload(
        {
            "Summary": "Short read",
            "sentiment": "14",
            "relatedLinks": ["https://a.com", "javascript:alert(1)", " http://b.com "],
            "tags": ["ai"],
        }
    )
    assert result.summary == "Short read"
    assert result.sentiment == 10.0
    assert result.related_links == ["https://a.com", "http://b.com"]
    assert result.tags == ["ai"]

    empty = parse_insight_payload({})
    assert empty.summary == "No summary generated"
    assert empty.sentiment == 5.0
    assert empty.related_links == []


def test_user_message_uses_url_for_thin_pages():
    assert user_message_text("https://a.com/x", "tiny") == "https://a.com/x"
    assert user_message_text("https://x.com/someone/status/1", "tiny") == "tiny"
    assert user_message_text("https://mobile.twitter.com/someone", "tiny") == "tiny"
    assert user_message_text("https://box.com/file", "tiny") == "https://box.com/file"
    long_text = "word " * 40
    assert user_message_text("https://a.com/x", long_text) == long_text.strip()


def test_build_system_prompt_mentions_depth_only_above_one():
    prompt = build_system_prompt("Tag it", url="https://a.com", depth=1)
    assert "User Instructions: Tag it" in prompt
    assert "https://a.com" in prompt
    assert "depth level" not in prompt
    assert "depth level: 3" in build_system_prompt("Tag it", depth=3)


def test_build_provider_without_key_is_disabled():
    provider = build_provider({"OPENAI_API_KEY": ""})
    assert isinstance(provider, DisabledProvider)
    with pytest.raises(ProviderUnavailable):
        provider.embed("text")
    with pytest.raises(ProviderUnavailable):
        provider.generate_insights("https://a.com", "text", 1)


def test_build_provider_with_key_uses_openai():
    provider = build_provider({"OPENAI_API_KEY": "sk-test", "OPENAI_CHAT_MODEL": "gpt-4o-mini"})
    assert isinstance(provider, OpenAIProvider)
    assert provider.chat_model == "gpt-4o-mini"
