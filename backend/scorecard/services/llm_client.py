"""
Minimal client for an OpenAI-compatible chat completions endpoint.
Shared by the vision transcription, schema extraction and commentary services.
"""
import logging
from typing import Any, Dict, List, Optional, Tuple

import requests

from scorecard.config import Config

logger = logging.getLogger(__name__)


class ChatCompletionClient:
    """POSTs chat completion requests and returns the first message content."""

    def __init__(
        self,
        api_key: Optional[str] = None,
        api_base: Optional[str] = None,
        model_name: Optional[str] = None,
        timeout: Optional[int] = None,
        session: Optional[requests.Session] = None
    ):
        """
        Initialize the client.

        Args:
            api_key: API key (defaults to Config.LLM_API_KEY)
            api_base: Base URL (defaults to Config.LLM_API_BASE)
            model_name: Model name (defaults to Config.LLM_MODEL)
            timeout: Request timeout in seconds (defaults to Config.LLM_TIMEOUT)
            session: Optional requests session (connection reuse, testing)
        """
        self.api_key = api_key if api_key is not None else Config.LLM_API_KEY
        self.api_base = (api_base or Config.LLM_API_BASE).rstrip('/')
        self.model_name = model_name or Config.LLM_MODEL
        self.timeout = timeout or Config.LLM_TIMEOUT
        self.session = session or requests.Session()

    @property
    def is_available(self) -> bool:
        """Check if an API key is configured."""
        return bool(self.api_key)

    @staticmethod
    def image_part(png_base64: str) -> Dict[str, Any]:
        """Message content part for one base64 PNG page."""
        return {"type": "image_url", "image_url": {"url": f"data:image/png;base64,{png_base64}"}}

    def complete(
        self,
        messages: List[Dict[str, Any]],
        max_tokens: int = 2000,
        temperature: float = 0.0,
        response_format: Optional[Dict[str, Any]] = None
    ) -> Tuple[str, int]:
        """
        Send one chat completion request.

        Returns:
            Tuple of (message content, total tokens used)

        Raises:
            requests.RequestException: On transport or HTTP errors
            ValueError: If the response has no message content
        """
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json"
        }

        payload: Dict[str, Any] = {
            "model": self.model_name,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens
        }
        if response_format:
            payload["response_format"] = response_format

        response = self.session.post(
            f"{self.api_base}/chat/completions",
            headers=headers,
            json=payload,
            timeout=self.timeout
        )
        response.raise_for_status()

        result_data = response.json()
        try:
            content = result_data['choices'][0]['message']['content']
        except (KeyError, IndexError, TypeError) as e:
            raise ValueError(f"Malformed chat completion response: {e}")

        tokens_used = result_data.get('usage', {}).get('total_tokens', 0)
        logger.debug(f"Chat completion: {tokens_used} tokens")
        return (content or "").strip(), tokens_used
