"""
LLM Client Service
Handles communication with an OpenAI-compatible chat completions API (OpenRouter by default)
"""
import httpx
from typing import Dict, Any, Optional, List, Union
import logging

from app.config import get_settings
from app.exceptions import GenerationError

logger = logging.getLogger(__name__)
settings = get_settings()

Message = Dict[str, Any]


class LLMClient:
    """
    Client for chat completions.
    A failed call raises GenerationError and is never retried here; callers
    decide what a failure means for the record they are working on.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        timeout: Optional[int] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        """
        Args:
            api_key: API key (OPENROUTER_KEY from settings if None)
            base_url: API base URL
            model: Model name
            timeout: Request timeout in seconds
            client: Preconfigured httpx client, mainly for tests
        """
        self.api_key = api_key or settings.OPENROUTER_KEY
        self.base_url = (base_url or settings.LLM_BASE_URL).rstrip("/")
        self.model = model or settings.LLM_MODEL

        self.client = client or httpx.AsyncClient(
            timeout=timeout or settings.LLM_TIMEOUT,
            headers={
                "Authorization": f"Bearer {self.api_key}",
                "HTTP-Referer": "https://video-content-studio.local",
                "X-Title": "Video Content Studio",
                "Content-Type": "application/json"
            }
        )

    async def generate(
        self,
        messages: List[Message],
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> Dict[str, Any]:
        """
        Generate a response.

        Args:
            messages: List of {role: "system"/"user"/"assistant", content: str | parts}
            temperature: Sampling temperature (0-1)
            max_tokens: Maximum tokens in response

        Returns:
            {
                "content": str,
                "usage": {"prompt_tokens": int, "completion_tokens": int},
                "model": str
            }
        """
        if not self.api_key:
            raise GenerationError("Text generation is not configured. Set OPENROUTER_KEY.")

        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": temperature,
            "max_tokens": max_tokens
        }

        try:
            response = await self.client.post(f"{self.base_url}/chat/completions", json=payload)
            response.raise_for_status()
        except httpx.HTTPStatusError as e:
            body = e.response.text[:500] if e.response.text else ""
            logger.error(f"LLM request failed ({e.response.status_code}): {body}")
            if e.response.status_code == 429:
                raise GenerationError("Text generation rate limit exceeded. Please retry shortly.", details=body)
            raise GenerationError(f"Text generation failed ({e.response.status_code})", details=body)
        except httpx.TimeoutException:
            logger.error("LLM request timed out")
            raise GenerationError("Text generation timed out")
        except httpx.HTTPError as e:
            logger.error(f"LLM request failed: {e}")
            raise GenerationError(f"Text generation failed: network error {e}")

        try:
            data = response.json()
        except ValueError:
            raise GenerationError("Text generation returned a non-JSON response", details=response.text[:500])
        try:
            content = data["choices"][0]["message"]["content"]
        except (KeyError, IndexError, TypeError):
            raise GenerationError("Text generation returned no choices", details=str(data)[:500])
        usage = data.get("usage", {})

        logger.info(
            f"LLM request successful: "
            f"{usage.get('prompt_tokens', 0)} prompt tokens, "
            f"{usage.get('completion_tokens', 0)} completion tokens"
        )

        return {
            "content": content or "",
            "usage": usage,
            "model": data.get("model", self.model)
        }

    async def generate_text(
        self,
        system_prompt: str,
        user_prompt: Union[str, List[Dict[str, Any]], None] = None,
        messages: Optional[List[Message]] = None,
        temperature: float = 0.7,
        max_tokens: int = 500,
    ) -> str:
        """
        System prompt plus either a single user turn (text or content parts)
        or a prepared list of turns. Returns the reply text.
        """
        turns: List[Message] = [{"role": "system", "content": system_prompt}]
        if messages:
            turns.extend(messages)
        if user_prompt is not None:
            turns.append({"role": "user", "content": user_prompt})

        response = await self.generate(turns, temperature=temperature, max_tokens=max_tokens)
        return response["content"].strip()

    async def close(self):
        """Close HTTP client"""
        await self.client.aclose()
