import asyncio
from datetime import datetime, timezone
from typing import List, Optional

import pytest

from config import AppConfig, PromptSet
from journalens.entries import Entry
from journalens.llm import ModelCallError, ModelClient, ModelResponse


NOW = datetime(2024, 6, 30, 12, 0, tzinfo=timezone.utc)


def make_entry(date, text="Went for a walk.", **kwargs) -> Entry:
    if date.tzinfo is None:
        date = date.replace(tzinfo=timezone.utc)
    return Entry(date=date, text=text, **kwargs)


class FakeModelClient(ModelClient):
    """
    Scripted model client.

    `script` items are consumed per call: a string becomes the response
    text, an exception is raised. When the script runs out, `default` is
    returned. `delays` maps a substring of the request to a sleep.
    """

    def __init__(self, script: Optional[list] = None, default: str = "summary text", delays: Optional[dict] = None):
        self.script = list(script or [])
        self.default = default
        self.delays = delays or {}
        self.calls: List[dict] = []
        self.in_flight = 0
        self.max_in_flight = 0

    async def complete(self, model, system, messages, max_tokens, timeout=None):
        self.calls.append(dict(model=model, system=system, messages=messages, max_tokens=max_tokens))
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            content = messages[0]["content"]
            for needle, delay in self.delays.items():
                if needle in content:
                    await asyncio.sleep(delay)
            await asyncio.sleep(0)
            item = self.script.pop(0) if self.script else self.default
            if isinstance(item, Exception):
                raise item
            text = item(content) if callable(item) else item
            return ModelResponse(text=text, input_tokens=100, output_tokens=20)
        finally:
            self.in_flight -= 1


def rate_limited() -> ModelCallError:
    return ModelCallError("HTTP 429: rate limited", retryable=True, status_code=429)


@pytest.fixture
def config() -> AppConfig:
    cfg = AppConfig()
    cfg.summarizer.retry_delays = [0.0, 0.0, 0.0]
    return cfg


@pytest.fixture
def prompts() -> PromptSet:
    return PromptSet.load()


@pytest.fixture
def now() -> datetime:
    return NOW
