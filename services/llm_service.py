# services/llm_service.py
import asyncio
import base64
import logging
import mimetypes
import os
from typing import Any, Dict, List, Optional

import requests

from core.domain import ChatCompletion
from core.exceptions import LLMServiceError
from core.interfaces import IChatModel
from config import settings

logger = logging.getLogger(settings.LOGGER_NAME)

REMOTE_IMAGE_PREFIXES = ("http://", "https://", "data:")


def image_to_url(image_path: str) -> str:
    """Remote URLs pass through; local files become base64 data URLs."""
    if image_path.startswith(REMOTE_IMAGE_PREFIXES):
        return image_path
    mime = mimetypes.guess_type(image_path)[0] or "image/png"
    with open(image_path, "rb") as f:
        encoded = base64.b64encode(f.read()).decode("ascii")
    return f"data:{mime};base64,{encoded}"


class LLMService(IChatModel):
    """A client for an OpenAI-compatible chat-completion API."""

    def __init__(
        self,
        base_url: str = settings.LLM_BASE_URL,
        api_key: str = settings.LLM_API_KEY,
        model: str = settings.LLM_MODEL,
        vision_model: str = settings.LLM_VISION_MODEL,
        timeout: int = settings.REQUEST_TIMEOUT,
        session: Optional[requests.Session] = None,
    ):
        """
        Initializes the LLMService.

        Args:
            base_url: The base URL of the API, e.g. https://api.openai.com/v1.
            api_key: Bearer token for the API.
            model: The chat model used for planning, relevance and answers.
            vision_model: The model used to describe attached images.
            timeout: The request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.vision_model = vision_model
        self.timeout = timeout
        self.session = session or requests.Session()

    def _post_chat(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Sends one chat-completion request and returns the decoded body."""
        if not self.api_key:
            raise LLMServiceError("LLM API key is not configured")
        try:
            logger.info(f"Sending chat request to model '{payload.get('model')}'...")
            response = self.session.post(
                f"{self.base_url}/chat/completions",
                json=payload,
                headers={"Authorization": f"Bearer {self.api_key}"},
                timeout=self.timeout,
            )
            response.raise_for_status()  # Raises an HTTPError for bad responses (4xx or 5xx)
            return response.json()
        except requests.exceptions.Timeout as e:
            logger.error(f"LLM request timed out after {self.timeout} seconds.")
            raise LLMServiceError("LLM request timed out") from e
        except requests.exceptions.ConnectionError as e:
            logger.error(f"Cannot connect to LLM at {self.base_url}.")
            raise LLMServiceError("Cannot connect to LLM service") from e
        except requests.exceptions.HTTPError as e:
            status = e.response.status_code if e.response is not None else "?"
            logger.error(f"LLM service returned an error: {status}")
            raise LLMServiceError(f"LLM error: {status}") from e
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.error(f"Unexpected LLM failure: {e}", exc_info=True)
            raise LLMServiceError(str(e)) from e

    @staticmethod
    def parse_completion(body: Dict[str, Any]) -> ChatCompletion:
        """Reads the first choice; tolerant of missing fields."""
        choices = body.get("choices") if isinstance(body, dict) else None
        if not choices:
            raise LLMServiceError("LLM response had no choices")
        message = choices[0].get("message") or {}
        return ChatCompletion(
            content=(message.get("content") or "").strip(),
            tool_calls=list(message.get("tool_calls") or []),
            function_call=message.get("function_call"),
        )

    async def complete(
        self,
        messages: List[Dict[str, Any]],
        tools: Optional[List[Dict[str, Any]]] = None,
        temperature: Optional[float] = None,
    ) -> ChatCompletion:
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": messages,
            "temperature": settings.LLM_TEMPERATURE if temperature is None else temperature,
        }
        if tools:
            payload["tools"] = tools
            payload["tool_choice"] = "auto"
        body = await asyncio.to_thread(self._post_chat, payload)
        return self.parse_completion(body)

    async def describe_image(self, image_path: str, prompt: str) -> str:
        if not image_path.startswith(REMOTE_IMAGE_PREFIXES) and not os.path.exists(image_path):
            raise LLMServiceError(f"Image not found: {image_path}")
        url = await asyncio.to_thread(image_to_url, image_path)
        payload = {
            "model": self.vision_model,
            "messages": [{
                "role": "user",
                "content": [
                    {"type": "text", "text": prompt},
                    {"type": "image_url", "image_url": {"url": url}},
                ],
            }],
        }
        body = await asyncio.to_thread(self._post_chat, payload)
        return self.parse_completion(body).content
