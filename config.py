#!/usr/bin/env python3
"""
Configuration management for JournaLens.

Uses YAML for human-readable defaults with Pydantic for validation.
Environment variables can override any setting.

The configuration is built once at process start and handed to the
components that need it; nothing here is loaded at import time.
"""

import os
from pathlib import Path
from typing import List, Optional
from pydantic import BaseModel, Field
import yaml


PROMPTS_DIR = Path(__file__).parent / "journalens" / "prompts"


class SummaryModelConfig(BaseModel):
    """Cheap model used for weekly/monthly batch summaries."""
    name: str = "anthropic/claude-haiku-4.5"
    weekly_max_tokens: int = 600
    monthly_max_tokens: int = 1000
    timeout_seconds: int = 60


class ReportModelConfig(BaseModel):
    """Expensive model used for the final report."""
    name: str = "anthropic/claude-opus-4.5"
    max_tokens: int = 16000
    timeout_seconds: int = 300


class ModelsConfig(BaseModel):
    """All model configurations."""
    summarizer: SummaryModelConfig = Field(default_factory=SummaryModelConfig)
    report: ReportModelConfig = Field(default_factory=ReportModelConfig)


class SummarizerConfig(BaseModel):
    """Batch summarizer settings."""
    max_parallel: int = 3
    retries: int = 3
    retry_delays: List[float] = Field(default_factory=lambda: [1.0, 2.0, 4.0])
    # Fallback placeholder: last N entries, each cut to char limit
    fallback_entries: int = 3
    fallback_char_limit: int = 200


class CacheConfig(BaseModel):
    """Summary cache settings."""
    enabled: bool = True
    write_workers: int = 2
    max_pending_writes: int = 100
    save_batch_size: int = 5


class ReportConfig(BaseModel):
    """Report assembly settings."""
    title: str = "JournaLens Advice"
    context_tokens: int = 200000
    response_reserve_tokens: int = 16000

    @property
    def input_token_budget(self) -> int:
        return self.context_tokens - self.response_reserve_tokens


class StoreConfig(BaseModel):
    """Durable store settings."""
    root: str = ".journalens"
    default_user: str = "local"


class NetworkConfig(BaseModel):
    """Network settings."""
    base_url: str = "https://openrouter.ai/api/v1/chat/completions"
    referer: str = "https://github.com/journalens/journalens"
    title: str = "JournaLens"
    max_connections: int = 10


class AppConfig(BaseModel):
    """Main application configuration."""
    models: ModelsConfig = Field(default_factory=ModelsConfig)
    summarizer: SummarizerConfig = Field(default_factory=SummarizerConfig)
    cache: CacheConfig = Field(default_factory=CacheConfig)
    report: ReportConfig = Field(default_factory=ReportConfig)
    store: StoreConfig = Field(default_factory=StoreConfig)
    network: NetworkConfig = Field(default_factory=NetworkConfig)

    @classmethod
    def load(cls, config_path: Optional[Path] = None) -> "AppConfig":
        """
        Load configuration from YAML file.

        Args:
            config_path: Path to config.yaml (defaults to ./config.yaml)

        Returns:
            Validated AppConfig instance
        """
        if config_path is None:
            # Default to config.yaml in project root
            config_path = Path(__file__).parent / "config.yaml"

        if not config_path.exists():
            raise FileNotFoundError(
                f"Config file not found: {config_path}\n"
                f"Please create config.yaml in the project root."
            )

        with open(config_path) as f:
            data = yaml.safe_load(f) or {}

        # Apply environment variable overrides
        # Format: JL_SUMMARIZER_MAX_PARALLEL=5
        data = cls._apply_env_overrides(data, dict(os.environ))

        return cls(**data)

    @staticmethod
    def _apply_env_overrides(data: dict, environ: dict) -> dict:
        """
        Apply environment variable overrides.

        Environment variable format: JL_SECTION_SUBSECTION_KEY
        Examples:
            JL_MODELS_REPORT_MAX_TOKENS=20000
            JL_SUMMARIZER_MAX_PARALLEL=5

        Path segments are matched greedily, so keys that contain
        underscores (max_parallel) resolve as one segment. List values
        are comma-separated: JL_SUMMARIZER_RETRY_DELAYS=0.5,1,2
        """
        for key, value in environ.items():
            if not key.startswith("JL_"):
                continue

            parts = key[3:].lower().split("_")
            if len(parts) < 2:
                continue

            # Navigate nested dict, joining parts until a key matches
            current = data
            i = 0
            while i < len(parts):
                for j in range(len(parts), i, -1):
                    candidate = "_".join(parts[i:j])
                    if isinstance(current, dict) and candidate in current:
                        break
                else:
                    current = None
                    break

                if j == len(parts):
                    original_value = current[candidate]
                    # Preserve type from config
                    if isinstance(original_value, bool):
                        current[candidate] = value.lower() in ("true", "1", "yes")
                    elif isinstance(original_value, int):
                        current[candidate] = int(value)
                    elif isinstance(original_value, float):
                        current[candidate] = float(value)
                    elif isinstance(original_value, str):
                        current[candidate] = value
                    elif isinstance(original_value, list):
                        # Comma-separated; pydantic coerces the items
                        current[candidate] = [item.strip() for item in value.split(",") if item.strip()]
                    break

                current = current[candidate]
                i = j

        return data


class PromptSet(BaseModel):
    """Prompt texts, read once and passed to the summarizer and assembler."""
    role: str
    create_report: str
    summarize_batch: str

    @classmethod
    def load(cls, prompts_dir: Optional[Path] = None) -> "PromptSet":
        prompts_dir = Path(prompts_dir) if prompts_dir else PROMPTS_DIR
        texts = {}
        for field in ("role", "create_report", "summarize_batch"):
            with open(prompts_dir / f"{field}.txt", encoding="utf-8") as f:
                texts[field] = f.read()
        return cls(**texts)
