import asyncio

import httpx
import pytest

import library_app.services.assistant_service as assistant_module
from library_app.services.assistant_service import (
    CHAT_FALLBACK,
    RECOMMENDATION_FALLBACK,
    AssistantService,
    build_chat_prompt,
    build_recommendation_prompt,
)

BOOKS = [
    {"name": "Dune", "author": "Frank Herbert", "categories": ["Sci-Fi"]},
    {"name": "Emma", "author": "Jane Austen", "categories": ["Romance", "Classic"]},
]


class FakeClient:
    """post_with_retry çağrılarını kaydeden sahte HTTP istemcisi."""

    def __init__(self, response=None, error=None):
        self.response = response
        self.error = error
        self.calls = []

    async def post_with_retry(self, url, **kwargs):
        self.calls.append((url, kwargs))
        if self.error:
            raise self.error
        return self.response


@pytest.fixture
def fake_client(monkeypatch):
    def install(response=None, error=None):
        client = FakeClient(response, error)

        async def get_client():
            return client

        monkeypatch.setattr(assistant_module, "get_http_client", get_client)
        return client
    return install


def _gemini_reply(text):
    return httpx.Response(200, json={"candidates": [{"content": {"parts": [{"text": text}]}}]})


def test_build_chat_prompt():
    messages = [
        {"role": "user", "content": "Any sci-fi?"},
        {"role": "assistant", "content": "Try Dune."},
        {"role": "user", "content": "Something else?"},
    ]
    prompt = build_chat_prompt(messages, BOOKS)

    assert prompt.startswith("You are LibraryBot, a helpful library assistant.")
    assert 'Available books include: "Dune" by Frank Herbert, "Emma" by Jane Austen' in prompt
    assert "User: Any sci-fi?\n\nAssistant: Try Dune.\n\nUser: Something else?" in prompt
    assert prompt.endswith("\n\nAssistant:")


def test_build_chat_prompt_limits_context_books():
    books = [{"name": f"Book {i}", "author": "A", "categories": []} for i in range(60)]
    prompt = build_chat_prompt([{"role": "user", "content": "hi"}], books)
    assert '"Book 49" by A' in prompt
    assert '"Book 50" by A' not in prompt


def test_build_recommendation_prompt():
    prompt = build_recommendation_prompt("something romantic", BOOKS)
    assert '- "Emma" by Jane Austen (Romance, Classic)' in prompt
    assert "User's request: something romantic" in prompt


def test_chat_returns_provider_text(fake_client):
    client = fake_client(response=_gemini_reply("Read Dune!"))
    service = AssistantService(api_key="test-key")

    reply = asyncio.run(service.chat([{"role": "user", "content": "hi"}], BOOKS))

    assert reply == "Read Dune!"
    url, kwargs = client.calls[0]
    assert url.endswith(":generateContent")
    assert kwargs["headers"]["x-goog-api-key"] == "test-key"
    assert "Dune" in kwargs["json"]["contents"][0]["parts"][0]["text"]


@pytest.mark.parametrize("response,error", [
    (httpx.Response(500, json={"error": "boom"}), None),
    (httpx.Response(200, json={"candidates": []}), None),
    (None, httpx.ConnectError("offline")),
])
def test_chat_falls_back_on_provider_failure(fake_client, response, error):
    fake_client(response=response, error=error)
    service = AssistantService(api_key="test-key")

    reply = asyncio.run(service.chat([{"role": "user", "content": "hi"}], BOOKS))

    assert reply == CHAT_FALLBACK


def test_missing_api_key_uses_fallbacks(fake_client, monkeypatch):
    client = fake_client(response=_gemini_reply("unused"))
    monkeypatch.setattr(assistant_module.settings, "gemini_api_key", None)
    service = AssistantService()

    assert service.is_available() is False
    assert asyncio.run(service.chat([], BOOKS)) == CHAT_FALLBACK
    assert asyncio.run(service.recommend("anything", BOOKS)) == RECOMMENDATION_FALLBACK
    assert client.calls == []


def test_empty_provider_text_uses_fallback(fake_client):
    fake_client(response=_gemini_reply(""))
    service = AssistantService(api_key="test-key")
    assert asyncio.run(service.recommend("poetry", BOOKS)) == RECOMMENDATION_FALLBACK
