"""Configuration management with environment variables and CLI overrides."""

from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict
from rich.console import Console
from rich.table import Table

# ---------------------------------------------------------------------------
# Sub-config models
# ---------------------------------------------------------------------------


class LLMConfig(BaseSettings):
    """LLM/OpenAI configuration."""

    model_config = SettingsConfigDict(env_prefix="OPENAI_")

    api_key: str = Field(default="", description="OpenAI API key")
    base_url: str = Field(default="https://api.openai.com/v1", description="API base URL")
    model: str = Field(default="gpt-4.1", description="Model name")
    max_tokens: int = Field(default=8192, description="Max tokens per request")
    temperature: float = Field(default=0.7, description="Temperature for generation")
    timeout_seconds: float = Field(default=120.0, description="HTTP timeout per request")


class TaskLLMConfig(BaseSettings):
    """Base class for task-specific LLM overrides.

    Empty fields fall back to the default LLM config.
    """

    api_key: str = Field(default="", description="API key")
    base_url: str = Field(default="", description="API base URL")
    model: str = Field(default="", description="Model name")
    max_tokens: int = Field(default=0, description="Max tokens per request")
    temperature: float = Field(default=0.0, description="Temperature")


class ExtractorLLMConfig(TaskLLMConfig):
    """LLM configuration for candidate term extraction."""

    model_config = SettingsConfigDict(env_prefix="EXTRACTOR_LLM_")


class TermLLMConfig(TaskLLMConfig):
    """LLM configuration for single-term translation."""

    model_config = SettingsConfigDict(env_prefix="TERM_LLM_")


class TranslatorLLMConfig(TaskLLMConfig):
    """LLM configuration for document translation."""

    model_config = SettingsConfigDict(env_prefix="TRANSLATOR_LLM_")


class TranslationConfig(BaseSettings):
    """Translation language settings."""

    model_config = SettingsConfigDict(env_prefix="TRANSLATION_")

    target_language: str = Field(default="Arabic", description="Target language name")
    source_description: str = Field(
        default="webnovel", description="What kind of text is translated (used in prompts)"
    )


class ScanConfig(BaseSettings):
    """Deep scan (glossary extraction) configuration."""

    model_config = SettingsConfigDict(env_prefix="SCAN_")

    head_count: int = Field(default=3, description="Documents sampled from the start")
    tail_count: int = Field(default=3, description="Documents sampled from the end")
    max_chars: int = Field(
        default=30000, description="Character budget sent to the extractor (truncated)"
    )
    context_window: int = Field(
        default=100, description="Characters of context sent with each term"
    )
    separator: str = Field(default="\n\n", description="Separator between sampled documents")


class BatchConfig(BaseSettings):
    """Batch translation scheduler configuration."""

    model_config = SettingsConfigDict(env_prefix="BATCH_")

    cooldown_ms: int = Field(
        default=1000, description="Delay between documents in ms (rate limiting)"
    )
    poll_interval_ms: int = Field(
        default=500, description="Pause polling interval in ms (stop is re-checked each poll)"
    )
    request_timeout_seconds: float = Field(
        default=300.0, description="Upper bound for one document translation call"
    )


# ---------------------------------------------------------------------------
# Main AppConfig
# ---------------------------------------------------------------------------


class AppConfig(BaseSettings):
    """Main application configuration."""

    model_config = SettingsConfigDict(env_prefix="")

    log_level: str = Field(default="INFO", description="Logging level")
    data_dir: Path = Field(default=Path("data"), description="Directory holding library.json")

    # Sub-configs
    llm: LLMConfig = Field(default_factory=LLMConfig)
    translation: TranslationConfig = Field(default_factory=TranslationConfig)
    scan: ScanConfig = Field(default_factory=ScanConfig)
    batch: BatchConfig = Field(default_factory=BatchConfig)

    # Task-specific LLM configs (fallback to llm if not set)
    extractor_llm: ExtractorLLMConfig = Field(default_factory=ExtractorLLMConfig)
    term_llm: TermLLMConfig = Field(default_factory=TermLLMConfig)
    translator_llm: TranslatorLLMConfig = Field(default_factory=TranslatorLLMConfig)

    @classmethod
    def load(cls, env_file: Optional[Path] = None) -> "AppConfig":
        """Load configuration from environment and .env file."""
        from dotenv import load_dotenv

        if env_file and env_file.exists():
            load_dotenv(env_file)
        else:
            # Try to find .env in current directory or parent directories
            load_dotenv()

        return cls(
            llm=LLMConfig(),
            translation=TranslationConfig(),
            scan=ScanConfig(),
            batch=BatchConfig(),
            extractor_llm=ExtractorLLMConfig(),
            term_llm=TermLLMConfig(),
            translator_llm=TranslatorLLMConfig(),
        )


# ---------------------------------------------------------------------------
# Global config singleton
# ---------------------------------------------------------------------------

_config: Optional[AppConfig] = None


def get_config() -> AppConfig:
    """Get the global configuration instance."""
    global _config
    if _config is None:
        _config = AppConfig.load()
    return _config


def set_config(config: AppConfig) -> None:
    """Set the global configuration instance."""
    global _config
    _config = config


# ---------------------------------------------------------------------------
# LLM config helpers
# ---------------------------------------------------------------------------


def get_effective_llm_config(specific: TaskLLMConfig, fallback: LLMConfig) -> LLMConfig:
    """Merge specific LLM config with fallback for unset values.

    Task-specific configs (extractor_llm, term_llm, translator_llm) override
    only the values they set; everything else comes from the default llm config.

    Args:
        specific: Task-specific config
        fallback: Default LLMConfig to use for unset values

    Returns:
        LLMConfig with merged values
    """
    return LLMConfig(
        api_key=specific.api_key or fallback.api_key,
        base_url=specific.base_url or fallback.base_url,
        model=specific.model or fallback.model,
        max_tokens=specific.max_tokens or fallback.max_tokens,
        temperature=specific.temperature if specific.temperature > 0 else fallback.temperature,
        timeout_seconds=fallback.timeout_seconds,
    )


def log_llm_config_summary() -> None:
    """Print a summary table of all LLM configurations.

    Shows default config and any task-specific overrides.
    """
    console = Console(stderr=True)
    app_config = get_config()

    table = Table(title="LLM Configuration", show_header=True, header_style="bold blue")
    table.add_column("Task", style="cyan", width=12)
    table.add_column("Model", style="green")
    table.add_column("Base URL", style="yellow")
    table.add_column("Max Tokens", style="magenta", justify="right")
    table.add_column("Temperature", style="magenta", justify="right")
    table.add_column("Source", style="dim")

    table.add_row(
        "Default",
        app_config.llm.model,
        app_config.llm.base_url,
        str(app_config.llm.max_tokens),
        str(app_config.llm.temperature),
        "OPENAI_*",
    )

    task_configs: list[tuple[str, str, TaskLLMConfig]] = [
        ("Extractor", "EXTRACTOR_LLM_*", app_config.extractor_llm),
        ("Term", "TERM_LLM_*", app_config.term_llm),
        ("Translator", "TRANSLATOR_LLM_*", app_config.translator_llm),
    ]

    for task_name, prefix, task_cfg in task_configs:
        effective = get_effective_llm_config(task_cfg, app_config.llm)
        source = prefix if (task_cfg.model or task_cfg.api_key) else "OPENAI_* (fallback)"
        table.add_row(
            task_name,
            effective.model,
            effective.base_url,
            str(effective.max_tokens),
            str(effective.temperature),
            source,
        )

    console.print(table)
