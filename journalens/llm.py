#!/usr/bin/env python3
"""
Language-model client.

`ModelClient` is the contract the summarizer and report assembler depend
on: a system instruction, role-tagged messages and an output ceiling in,
text plus token usage out. Failures are raised as `ModelCallError`, whose
`retryable` flag tells callers whether backing off and retrying can help.

`OpenRouterClient` implements it against the OpenRouter chat completions
API with httpx.
"""

import json
from abc import ABC, abstractmethod
from typing import Dict, List, Optional

import httpx
from pydantic import BaseModel

from config import NetworkConfig


RETRYABLE_STATUS = {408, 409, 425, 429, 529}


class ModelCallError(Exception):
    """An upstream model call failed."""

    def __init__(self, message: str, retryable: bool = False, status_code: Optional[int] = None):
        super().__init__(message)
        self.retryable = retryable
        self.status_code = status_code


class ModelResponse(BaseModel):
    text: str
    input_tokens: int = 0
    output_tokens: int = 0


class ModelClient(ABC):

    @abstractmethod
    async def complete(
        self,
        model: str,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        timeout: Optional[float] = None,
    ) -> ModelResponse:
        """
        Run one completion.

        Args:
            model: Model identifier
            system: System instruction
            messages: Ordered {"role": "user"|"assistant", "content": ...} turns.
                A trailing assistant turn is a prefill the model continues from.
            max_tokens: Output token ceiling
            timeout: Per-call timeout in seconds (client default if None)

        Returns:
            Generated text (without the prefill) and token usage

        Raises:
            ModelCallError: retryable or terminal failure
        """


def is_retryable_status(status_code: int) -> bool:
    return status_code in RETRYABLE_STATUS or status_code >= 500


def _token_count(usage: Dict, key: str) -> int:
    value = usage.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


class OpenRouterClient(ModelClient):
    """OpenRouter chat completions over a shared httpx.AsyncClient."""

    def __init__(
        self,
        api_key: str,
        network: Optional[NetworkConfig] = None,
        client: Optional[httpx.AsyncClient] = None,
    ):
        self.api_key = api_key
        self.network = network or NetworkConfig()
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(
            limits=httpx.Limits(max_connections=self.network.max_connections)
        )

    async def aclose(self):
        if self._owns_client:
            await self._client.aclose()

    def _headers(self) -> Dict[str, str]:
        return {
            "Authorization": f"Bearer {self.api_key}",
            "HTTP-Referer": self.network.referer,
            "X-Title": self.network.title,
            "Content-Type": "application/json",
        }

    async def complete(
        self,
        model: str,
        system: str,
        messages: List[Dict[str, str]],
        max_tokens: int,
        timeout: Optional[float] = None,
    ) -> ModelResponse:
        request = {
            "model": model,
            "messages": [{"role": "system", "content": system}] + list(messages),
            "max_tokens": max_tokens,
        }

        try:
            response = await self._client.post(
                self.network.base_url,
                headers=self._headers(),
                json=request,
                timeout=timeout if timeout is not None else httpx.USE_CLIENT_DEFAULT,
            )
        except httpx.TimeoutException as e:
            raise ModelCallError(f"Request timed out: {e}", retryable=True) from e
        except httpx.TransportError as e:
            raise ModelCallError(f"Network error: {e}", retryable=True) from e

        if response.status_code >= 400:
            raise ModelCallError(
                f"HTTP {response.status_code}: {response.text[:200]}",
                retryable=is_retryable_status(response.status_code),
                status_code=response.status_code,
            )

        try:
            result = response.json()
        except json.JSONDecodeError as e:
            # OpenRouter sometimes returns HTTP 200 with an empty/whitespace body
            raise ModelCallError(
                f"Invalid JSON from API: {response.text[:200]!r}",
                retryable=True,
                status_code=response.status_code,
            ) from e

        if not isinstance(result, dict):
            raise ModelCallError(
                f"Unexpected response body: {response.text[:200]!r}",
                retryable=True,
                status_code=response.status_code,
            )

        choices = result.get("choices") or []
        if not isinstance(choices, list) or not choices:
            raise ModelCallError("No choices in response")
        choice = choices[0]
        if not isinstance(choice, dict):
            raise ModelCallError(f"Malformed choice in response: {choice!r:.200}")

        # Provider streaming errors (e.g. upstream 502) arrive inside the choice
        if "error" in choice:
            error_info = choice["error"]
            if not isinstance(error_info, dict):
                error_info = {"message": error_info}
            raise ModelCallError(
                f"Provider error: {error_info.get('message')}",
                retryable=True,
                status_code=error_info.get("code") if isinstance(error_info.get("code"), int) else None,
            )

        message = choice.get("message")
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(content, str) or not content:
            raise ModelCallError("No text content in response")

        usage = result.get("usage")
        if not isinstance(usage, dict):
            usage = {}
        return ModelResponse(
            text=content,
            input_tokens=_token_count(usage, "prompt_tokens"),
            output_tokens=_token_count(usage, "completion_tokens"),
        )
