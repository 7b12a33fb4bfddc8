import pytest

from config import AppConfig, PromptSet


def test_load_project_config():
    config = AppConfig.load()
    assert config.models.summarizer.weekly_max_tokens == 600
    assert config.models.summarizer.monthly_max_tokens == 1000
    assert config.summarizer.max_parallel == 3
    assert config.summarizer.retry_delays == [1.0, 2.0, 4.0]
    assert config.report.input_token_budget == 200000 - 16000


def test_missing_config_file(tmp_path):
    with pytest.raises(FileNotFoundError):
        AppConfig.load(tmp_path / "nope.yaml")


def test_env_overrides_preserve_types():
    data = {
        "summarizer": {"max_parallel": 3, "retry_delays": [1.0]},
        "cache": {"enabled": True},
        "models": {"report": {"name": "a", "max_tokens": 16000}},
    }
    environ = {
        "JL_SUMMARIZER_MAX_PARALLEL": "5",
        "JL_CACHE_ENABLED": "false",
        "JL_MODELS_REPORT_MAX_TOKENS": "20000",
        "JL_MODELS_REPORT_NAME": "other/model",
        "JL_UNKNOWN_KEY": "ignored",
        "HOME": "/root",
    }
    result = AppConfig._apply_env_overrides(data, environ)

    assert result["summarizer"]["max_parallel"] == 5
    assert result["cache"]["enabled"] is False
    assert result["models"]["report"] == {"name": "other/model", "max_tokens": 20000}
    assert "unknown" not in result


def test_env_override_applied_on_load(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("summarizer:\n  retries: 3\n")
    monkeypatch.setenv("JL_SUMMARIZER_RETRIES", "1")

    config = AppConfig.load(path)

    assert config.summarizer.retries == 1
    assert config.cache.enabled


def test_prompt_set_load(tmp_path):
    prompts = PromptSet.load()
    assert "Context for JournaLens" in prompts.create_report
    assert prompts.role and prompts.summarize_batch

    for name in ("role", "create_report", "summarize_batch"):
        (tmp_path / f"{name}.txt").write_text(name.upper())
    assert PromptSet.load(tmp_path).create_report == "CREATE_REPORT"


def test_env_override_list_values():
    data = {"summarizer": {"retry_delays": [1.0, 2.0, 4.0]}}
    result = AppConfig._apply_env_overrides(data, {"JL_SUMMARIZER_RETRY_DELAYS": "0.5, 1,,2"})

    assert result["summarizer"]["retry_delays"] == ["0.5", "1", "2"]
    assert AppConfig(**result).summarizer.retry_delays == [0.5, 1.0, 2.0]


def test_env_override_list_applied_on_load(tmp_path, monkeypatch):
    path = tmp_path / "config.yaml"
    path.write_text("summarizer:\n  retry_delays: [1.0, 2.0]\n")
    monkeypatch.setenv("JL_SUMMARIZER_RETRY_DELAYS", "0,0")
    assert AppConfig.load(path).summarizer.retry_delays == [0.0, 0.0]
