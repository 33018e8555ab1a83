"""
Configuration management for pagelens.
Loads and validates settings from YAML files and environment variables.
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, ConfigDict, Field


class GeneralConfig(BaseModel):
    """General configuration."""

    project_name: str = "pagelens"
    version: str = "0.1.0"
    log_level: str = "INFO"
    log_format: str = "json"  # json | console
    log_to_file: bool = True
    data_dir: str = "data"
    logs_dir: str = "logs"


class CrawlerConfig(BaseModel):
    """Default per-job crawl options.

    These values seed CrawlOptions when a job is created without overriding them.
    """

    rate_limit_ms: int = 2000
    max_scrolls: int = 10
    scroll_timeout_ms: int = 30000
    scroll_wait_ms: int = 1000
    navigation_timeout_ms: int = 30000
    handle_infinite_scroll: bool = True
    ocr_enabled: bool = True
    advisory_enabled: bool = True
    default_depth: int = 2


class BrowserConfig(BaseModel):
    """Browser configuration."""

    headless: bool = True
    viewport_width: int = 1280
    viewport_height: int = 800
    user_agent: str | None = None
    wait_until: str = "networkidle"
    full_page_screenshot: bool = True
    launch_args: list[str] = Field(
        default_factory=lambda: [
            "--no-sandbox",
            "--disable-setuid-sandbox",
            "--disable-dev-shm-usage",
        ]
    )


class OCRConfig(BaseModel):
    """OCR engine configuration."""

    language: str = "eng"
    tesseract_config: str = "--oem 1 --psm 3"
    timeout_seconds: float = 120.0
    grayscale: bool = True
    keyword_limit: int = 20


class AdvisoryConfig(BaseModel):
    """Advisory AI service configuration (Gemini generateContent API)."""

    api_key: str | None = None
    api_url: str = "https://generativelanguage.googleapis.com/v1beta/models"
    model: str = "gemini-2.0-flash"
    timeout_seconds: float = 30.0
    temperature: float = 0.3
    max_output_tokens: int = 1024


class StorageConfig(BaseModel):
    """Storage configuration."""

    database_path: str = "data/pagelens.db"
    screenshots_dir: str = "data/screenshots"


class RegistryConfig(BaseModel):
    """Job registry configuration."""

    max_active_jobs: int = 0  # 0 = unlimited
    retain_finished: int = 100


class EventsConfig(BaseModel):
    """Event channel configuration."""

    subscriber_queue_size: int = 0  # 0 = unbounded


class APIConfig(BaseModel):
    """Command surface configuration."""

    model_config = ConfigDict(extra="forbid")

    host: str = "0.0.0.0"
    port: int = 8080
    default_log_limit: int = 100


class Settings(BaseModel):
    """Main settings container."""

    general: GeneralConfig = Field(default_factory=GeneralConfig)
    crawler: CrawlerConfig = Field(default_factory=CrawlerConfig)
    browser: BrowserConfig = Field(default_factory=BrowserConfig)
    ocr: OCRConfig = Field(default_factory=OCRConfig)
    advisory: AdvisoryConfig = Field(default_factory=AdvisoryConfig)
    storage: StorageConfig = Field(default_factory=StorageConfig)
    registry: RegistryConfig = Field(default_factory=RegistryConfig)
    events: EventsConfig = Field(default_factory=EventsConfig)
    api: APIConfig = Field(default_factory=APIConfig)


def _deep_merge(base: dict, override: dict) -> dict:
    """Recursively merge override into base (override wins)."""
    result = base.copy()
    for key, value in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(value, dict):
            result[key] = _deep_merge(result[key], value)
        else:
            result[key] = value
    return result


def _load_yaml_config(config_dir: Path) -> dict[str, Any]:
    """Load settings.yaml, then local.yaml on top of it when present.

    Args:
        config_dir: Configuration directory path.

    Returns:
        Merged configuration dictionary.
    """
    config: dict[str, Any] = {}

    settings_path = config_dir / "settings.yaml"
    if settings_path.exists():
        with open(settings_path, encoding="utf-8") as f:
            config = yaml.safe_load(f) or {}

    local_path = config_dir / "local.yaml"
    if local_path.exists():
        with open(local_path, encoding="utf-8") as f:
            config = _deep_merge(config, yaml.safe_load(f) or {})

    return config


def _apply_env_overrides(config: dict[str, Any]) -> dict[str, Any]:
    """Apply environment variable overrides.

    Environment variables should be prefixed with PAGELENS_ and use
    double underscores for nested keys.

    Example:
        PAGELENS_CRAWLER__RATE_LIMIT_MS=500

    Args:
        config: Configuration dictionary.

    Returns:
        Configuration with environment overrides.
    """
    prefix = "PAGELENS_"

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        key_path = key[len(prefix) :].lower().split("__")
        if key_path == ["config_dir"]:
            continue

        current = config
        for part in key_path[:-1]:
            if not isinstance(current.get(part), dict):
                current[part] = {}
            current = current[part]

        final_key = key_path[-1]
        try:
            if value.lower() in ("true", "false"):
                current[final_key] = value.lower() == "true"
            elif "." in value:
                current[final_key] = float(value)
            else:
                current[final_key] = int(value)
        except ValueError:
            current[final_key] = value

    return config


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Get application settings.

    Settings are loaded from:
    1. Default values
    2. YAML configuration files
    3. Environment variables (highest priority)

    Returns:
        Settings instance.
    """
    config_dir = Path(os.environ.get("PAGELENS_CONFIG_DIR", "config"))

    config = _load_yaml_config(config_dir)
    config = _apply_env_overrides(config)

    settings = Settings(**config)

    # Conventional variable name used by Gemini tooling
    if settings.advisory.api_key is None and os.environ.get("GEMINI_API_KEY"):
        settings.advisory.api_key = os.environ["GEMINI_API_KEY"]

    return settings


def ensure_directories() -> None:
    """Ensure all required directories exist.

    Relative paths resolve against the working directory of the process.
    """
    settings = get_settings()

    dirs = [
        Path(settings.general.data_dir),
        Path(settings.general.logs_dir),
        Path(settings.storage.screenshots_dir),
        Path(settings.storage.database_path).parent,
    ]

    for dir_path in dirs:
        dir_path.mkdir(parents=True, exist_ok=True)
