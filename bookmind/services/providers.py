"""AI collaborators used by the enrichment pipeline.

Only the contract matters to the pipeline: ``embed``, ``generate_tags`` and
``generate_insights``. :class:`OpenAIProvider` talks to the OpenAI API and
asks for JSON responses; :class:`DisabledProvider` is installed when no API
key is configured and makes every enrichment task fail fast.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field

from openai import OpenAI

from bookmind.services.errors import ProviderUnavailable
from bookmind.services.tag_normalizer import process_generated_tags
from bookmind.services.urls import extract_root_domain

BASE_SYSTEM_PROMPT = (
    "You will receive content details about a user submitted bookmark, which may "
    "include text and/or images. Follow the user's instructions precisely and "
    "format your response as JSON to be properly parsed as a reply."
)

TAG_SYSTEM_PROMPT = """Generate 3-7 tags that accurately represent the main topics and themes of the given content.

Rules:
1. Tags should be lowercase
2. Use single words or short 2-3 word phrases
3. Avoid redundant tags (e.g. don't include both "javascript" and "js")
4. Don't use special characters or punctuation
5. Prefer established category names over unusual terms

Respond with a JSON object in the following format:
{"tags": ["tag1", "tag2", "tag3"]}"""

SUMMARY_SYSTEM_PROMPT = """Summarize the bookmarked content and assess it.

Respond with a JSON object in the following format:
{"summary": "...", "sentiment": 0-10, "tags": ["tag1", "tag2"], "relatedLinks": ["https://..."]}"""

MAX_PROMPT_CHARS = 15000
MAX_EMBEDDING_CHARS = 8000
URL_ONLY_THRESHOLD = 100
DEFAULT_SENTIMENT = 5.0
SOCIAL_POST_DOMAINS = frozenset({"twitter.com", "x.com"})


@dataclass
class InsightResult:
    summary: str
    sentiment: float | None = None
    tags: list[str] = field(default_factory=list)
    related_links: list[str] = field(default_factory=list)


class EnrichmentProvider:
    def embed(self, text: str) -> list[float]:
        raise NotImplementedError

    def generate_tags(
        self, text: str, url: str, prompt_override: str | None = None
    ) -> list[str]:
        raise NotImplementedError

    def generate_insights(
        self,
        url: str,
        text: str,
        depth: int,
        prompt_override: str | None = None,
        media_urls: list[str] | None = None,
    ) -> InsightResult:
        raise NotImplementedError


class DisabledProvider(EnrichmentProvider):
    def _unavailable(self):
        raise ProviderUnavailable("AI provider is not configured (OPENAI_API_KEY)")

    def embed(self, text):
        self._unavailable()

    def generate_tags(self, text, url, prompt_override=None):
        self._unavailable()

    def generate_insights(self, url, text, depth, prompt_override=None, media_urls=None):
        self._unavailable()


def build_system_prompt(
    instructions: str, url: str | None = None, depth: int | None = None
) -> str:
    prompt = f"{BASE_SYSTEM_PROMPT}\n\nUser Instructions: {instructions}"
    if url:
        prompt += f"\n\nThe content is from URL: {url}"
    if depth and depth > 1:
        prompt += f"\n\nAnalyze at depth level: {depth} (1-4 scale)"
    return prompt


def is_social_post(url: str | None) -> bool:
    return extract_root_domain(url or "") in SOCIAL_POST_DOMAINS


def user_message_text(url: str, text: str) -> str:
    """Pick what the model sees: the text itself, or the bare URL for thin pages."""
    text = (text or "").strip()
    if not is_social_post(url) and url and len(text) < URL_ONLY_THRESHOLD:
        return url
    return text[:MAX_PROMPT_CHARS] or url or ""


def _first_of(payload: dict, keys: tuple[str, ...], kind):
    for key in keys:
        value = payload.get(key)
        if isinstance(value, kind):
            return value
    return None


def parse_tag_payload(payload: dict) -> list[str]:
    raw = payload.get("tags", payload.get("Tags"))
    if isinstance(raw, str):
        raw = raw.split(",")
    if not isinstance(raw, list):
        return []
    return process_generated_tags(item for item in raw if isinstance(item, str))


def _parse_sentiment(payload: dict) -> float:
    for key in ("sentiment", "Sentiment", "score"):
        value = payload.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, (int, float)):
            return max(0.0, min(10.0, float(value)))
        if isinstance(value, str):
            try:
                return max(0.0, min(10.0, float(value)))
            except ValueError:
                continue
    return DEFAULT_SENTIMENT


def parse_insight_payload(payload: dict) -> InsightResult:
    summary = _first_of(payload, ("summary", "Summary", "content"), str)

    links = _first_of(payload, ("relatedLinks", "related_links", "links"), list)
    if links is None and isinstance(payload.get("relatedLinks"), str):
        links = [payload["relatedLinks"]]
    related_links = [
        link.strip()
        for link in links or []
        if isinstance(link, str) and link.strip().startswith(("http://", "https://"))
    ]

    return InsightResult(
        summary=summary or "No summary generated",
        sentiment=_parse_sentiment(payload),
        tags=parse_tag_payload(payload),
        related_links=related_links,
    )


class OpenAIProvider(EnrichmentProvider):
    def __init__(
        self,
        api_key: str,
        chat_model: str = "gpt-4o",
        embedding_model: str = "text-embedding-ada-002",
        timeout: float = 60.0,
        max_retries: int = 2,
    ):
        if not api_key:
            raise ValueError("OpenAI API key required. Set OPENAI_API_KEY")
        self.chat_model = chat_model
        self.embedding_model = embedding_model
        self._client = OpenAI(api_key=api_key, timeout=timeout, max_retries=max_retries)

    def _chat_json(self, system: str, user_content) -> dict:
        response = self._client.chat.completions.create(
            model=self.chat_model,
            messages=[
                {"role": "system", "content": system},
                {"role": "user", "content": user_content},
            ],
            response_format={"type": "json_object"},
        )
        raw = response.choices[0].message.content if response.choices else None
        payload = json.loads(raw or "{}")
        if not isinstance(payload, dict):
            raise ValueError("model returned a non-object JSON payload")
        return payload

    def embed(self, text: str) -> list[float]:
        response = self._client.embeddings.create(
            model=self.embedding_model,
            input=text[:MAX_EMBEDDING_CHARS],
        )
        return [float(value) for value in response.data[0].embedding]

    def generate_tags(
        self, text: str, url: str, prompt_override: str | None = None
    ) -> list[str]:
        system = build_system_prompt(prompt_override or TAG_SYSTEM_PROMPT, url=url)
        return parse_tag_payload(self._chat_json(system, user_message_text(url, text)))

    def generate_insights(
        self,
        url: str,
        text: str,
        depth: int,
        prompt_override: str | None = None,
        media_urls: list[str] | None = None,
    ) -> InsightResult:
        system = build_system_prompt(
            prompt_override or SUMMARY_SYSTEM_PROMPT, url=url, depth=depth
        )
        message = user_message_text(url, text)
        if media_urls:
            content = [{"type": "text", "text": message}]
            content.extend(
                {"type": "image_url", "image_url": {"url": media_url}}
                for media_url in media_urls
            )
            try:
                payload = self._chat_json(system, content)
            except Exception:
                # retry text-only when the image request is rejected
                payload = self._chat_json(system, message)
        else:
            payload = self._chat_json(system, message)
        return parse_insight_payload(payload)


def build_provider(config) -> EnrichmentProvider:
    api_key = config.get("OPENAI_API_KEY")
    if not api_key:
        return DisabledProvider()
    return OpenAIProvider(
        api_key=api_key,
        chat_model=config.get("OPENAI_CHAT_MODEL", "gpt-4o"),
        embedding_model=config.get("OPENAI_EMBEDDING_MODEL", "text-embedding-ada-002"),
        timeout=float(config.get("PROVIDER_TIMEOUT", 60)),
    )
