import os
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml
from pydantic import BaseModel, field_validator, model_validator

try:
    from dotenv import load_dotenv
    load_dotenv()
except ImportError:
    pass


BROWSER_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 "
    "(KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)


class ScraperConfig(BaseModel):
    trending_url: str = "https://github.com/trending?spoken_language_code=en"
    user_agent: str = BROWSER_USER_AGENT
    timeout: int = 30
    jitter_min_seconds: float = 1.0
    jitter_max_seconds: float = 3.0

    @model_validator(mode='after')
    def check_jitter_range(self):
        if self.jitter_min_seconds < 0 or self.jitter_max_seconds < self.jitter_min_seconds:
            raise ValueError("jitter range must satisfy 0 <= min <= max")
        return self


class TopicsConfig(BaseModel):
    enabled: bool = True
    api_base_url: str = "https://api.github.com/repos"
    token: str = ""
    concurrency: int = 4
    timeout: int = 10
    user_agent: str = "trend-archive/1.0 (+https://github.com/trending)"


class RetryConfig(BaseModel):
    max_attempts: int = 2
    ttl_hours: int = 48
    key_prefix: str = "scrape_retry:"

    @property
    def ttl_seconds(self) -> int:
        return self.ttl_hours * 60 * 60


class AggregationConfig(BaseModel):
    streak_lookback_days: int = 60
    star_history_lookback_days: int = 365
    unknown_language: str = "Unknown"
    unknown_language_color: str = "#8b949e"
    search_min_query_length: int = 2
    search_max_query_length: int = 100
    search_row_limit: int = 750
    search_max_results: int = 50


class CacheConfig(BaseModel):
    enabled: bool = True
    current_ttl_seconds: int = 3600
    search_ttl_seconds: int = 60


class DatabaseConfig(BaseModel):
    url: str = "sqlite:///data/trending.db"
    echo: bool = False


class TelegramConfig(BaseModel):
    enabled: bool = False
    bot_token: str = ""
    chat_id: str = ""
    thread_id: Optional[int] = None
    api_base_url: str = "https://api.telegram.org"
    timeout: int = 15

    @field_validator('thread_id', mode='before')
    @classmethod
    def blank_thread_id(cls, value):
        # Unset env substitutions arrive as ""
        if value == "":
            return None
        return value

    @property
    def is_configured(self) -> bool:
        return self.enabled and bool(self.bot_token) and bool(self.chat_id)


class SchedulerConfig(BaseModel):
    enabled: bool = True
    times: List[str] = ["06:00", "18:00"]
    timezone: str = "UTC"

    @field_validator('times')
    @classmethod
    def check_times(cls, value: List[str]) -> List[str]:
        for item in value:
            hour, _, minute = item.partition(":")
            if not (hour.isdigit() and minute.isdigit()) or int(hour) > 23 or int(minute) > 59:
                raise ValueError(f"Invalid schedule time: {item!r} (expected HH:MM)")
        return value


class LoggingConfig(BaseModel):
    level: str = "INFO"
    dir: str = "logs"
    max_bytes: int = 10 * 1024 * 1024  # 10MB
    backup_count: int = 5
    quiet_loggers: List[str] = ["httpx", "apscheduler", "urllib3"]


class Config(BaseModel):
    logging: LoggingConfig = LoggingConfig()
    scraper: ScraperConfig = ScraperConfig()
    topics: TopicsConfig = TopicsConfig()
    retry: RetryConfig = RetryConfig()
    aggregation: AggregationConfig = AggregationConfig()
    cache: CacheConfig = CacheConfig()
    database: DatabaseConfig = DatabaseConfig()
    telegram: TelegramConfig = TelegramConfig()
    scheduler: SchedulerConfig = SchedulerConfig()


def _replace_env_vars(value: Any) -> Any:
    if isinstance(value, str) and value.startswith("${") and value.endswith("}"):
        env_spec = value[2:-1]  # Remove ${ and }

        # KEY:-default and KEY:=default both fall back to the default
        for separator in (":-", ":="):
            if separator in env_spec:
                env_key, default_value = env_spec.split(separator, 1)
                default_value = default_value.strip().strip('"').strip("'")
                return os.getenv(env_key, default_value)
        return os.getenv(env_spec, "")
    elif isinstance(value, dict):
        return {k: _replace_env_vars(v) for k, v in value.items()}
    elif isinstance(value, list):
        return [_replace_env_vars(item) for item in value]
    return value


def load_yaml_config(config_path: str) -> Dict[str, Any]:
    with open(config_path, 'r', encoding='utf-8') as f:
        config_data = yaml.safe_load(f)

    if not config_data:
        return {}

    config_data = _replace_env_vars(config_data)

    # 'max_retries' is accepted as an alias for retry.max_attempts
    retry_section = config_data.get('retry')
    if isinstance(retry_section, dict) and 'max_retries' in retry_section:
        retry_section.setdefault('max_attempts', retry_section.pop('max_retries'))

    return config_data


def get_config(config_path: Optional[str] = None) -> Config:
    if config_path is None:
        config_path = os.getenv('CONFIG_PATH', 'config.yaml')

    config_file = Path(config_path)
    if config_file.exists():
        config_data = load_yaml_config(str(config_file))
        return Config(**config_data)
    else:
        return Config()


def save_config(config: Config, config_path: str = 'config.yaml') -> None:
    config_dict = config.model_dump()
    with open(config_path, 'w', encoding='utf-8') as f:
        yaml.dump(config_dict, f, allow_unicode=True, default_flow_style=False)
