import logging
from typing import Any, Dict, List, Optional

import httpx

from library_app.config import settings
from library_app.services.http_client import get_http_client

logger = logging.getLogger(__name__)

CHAT_FALLBACK = "I apologize, but I encountered an error. Please try again."
RECOMMENDATION_FALLBACK = "I apologize, but I could not generate recommendations at this time."

SYSTEM_PROMPT = """You are LibraryBot, a helpful library assistant. You help users find and discover books.

Available books include: {book_context}

Guidelines:
- Be friendly and helpful
- Recommend books based on user preferences
- Explain book genres and suggest similar titles
- If asked about library policies, explain that users should contact the library staff
- Keep responses concise but informative"""

RECOMMENDATION_PROMPT = """You are a friendly library assistant chatbot. A user is looking for book recommendations.

Available books in our library:
{book_list}

User's request: {query}

Based on the user's request, recommend books from the available list. If no exact matches, suggest similar options.
Keep your response friendly, concise, and helpful. Format recommendations as a list.
If the user asks something unrelated to books, politely redirect them to book-related topics."""


class AssistantServiceError(Exception):
    """Metin üretim sağlayıcısı için özel hata"""
    pass


def build_chat_prompt(messages: List[Dict[str, Any]], books: List[Dict[str, Any]]) -> str:
    """Konuşma geçmişini ve stoktaki kitap özetini tek bir isteme dönüştür."""
    book_context = ", ".join(
        f"\"{b['name']}\" by {b['author']}" for b in books[:settings.assistant_context_books]
    )
    history = "\n\n".join(
        f"{'User' if m.get('role') == 'user' else 'Assistant'}: {m.get('content', '')}"
        for m in messages if isinstance(m, dict)
    )
    system = SYSTEM_PROMPT.format(book_context=book_context)
    return f"{system}\n\nCurrent Conversation:\n{history}\n\nAssistant:"


def build_recommendation_prompt(query: str, books: List[Dict[str, Any]]) -> str:
    book_list = "\n".join(
        f"- \"{b['name']}\" by {b['author']} ({', '.join(b.get('categories') or [])})" for b in books
    )
    return RECOMMENDATION_PROMPT.format(book_list=book_list, query=query)


class AssistantService:
    """Gemini generateContent REST uç noktası ile sohbet ve öneri servisi"""

    def __init__(self, api_key: Optional[str] = None):
        self.api_key = api_key or settings.gemini_api_key
        self.base_url = settings.gemini_base_url
        self.model = settings.gemini_model

    def is_available(self) -> bool:
        return bool(self.api_key) and settings.enable_ai_features

    async def generate(self, prompt: str) -> str:
        """Sağlayıcıdan ham yanıt metnini al. Hata durumunda AssistantServiceError fırlatır."""
        if not self.is_available():
            raise AssistantServiceError("Assistant is not configured")

        url = f"{self.base_url}/models/{self.model}:generateContent"
        payload = {"contents": [{"parts": [{"text": prompt}]}]}
        client = await get_http_client()
        try:
            response = await client.post_with_retry(
                url, json=payload, headers={"x-goog-api-key": self.api_key}
            )
        except httpx.RequestError as e:
            raise AssistantServiceError(f"Request failed: {e}") from e

        if response.status_code != 200:
            raise AssistantServiceError(f"Provider returned HTTP {response.status_code}")
        try:
            data = response.json()
            parts = data["candidates"][0]["content"]["parts"]
        except (ValueError, KeyError, IndexError, TypeError) as e:
            raise AssistantServiceError("Unexpected provider response") from e
        return "".join(p.get("text", "") for p in parts)

    async def chat(self, messages: List[Dict[str, Any]], books: List[Dict[str, Any]]) -> str:
        """Konuşmaya yanıt ver. Sağlayıcı hatalarında sabit özür metni döner."""
        try:
            text = await self.generate(build_chat_prompt(messages, books))
        except AssistantServiceError as e:
            logger.error(f"Assistant chat failed: {e}")
            return CHAT_FALLBACK
        return text or CHAT_FALLBACK

    async def recommend(self, query: str, books: List[Dict[str, Any]]) -> str:
        try:
            text = await self.generate(build_recommendation_prompt(query, books))
        except AssistantServiceError as e:
            logger.error(f"Assistant recommendations failed: {e}")
            return RECOMMENDATION_FALLBACK
        return text or RECOMMENDATION_FALLBACK


# Global servis örneği
assistant_service = AssistantService()
