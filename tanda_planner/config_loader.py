"""
Configuration Loader - Manages YAML configuration and environment variables
"""
import os
from typing import Any, Dict, List, Optional

import yaml

from tanda_planner.logging_utils import redact
from tanda_planner.planning.models import DEFAULT_PATTERN, DEFAULT_SIZES, STYLES

DEFAULT_FILLER_GENRES = ["jazz", "swing", "country", "rock", "pop", "electro", "lounge", "blues"]


class Config:
    """Configuration manager for the tanda planner"""

    def __init__(self, config_path: str = "config.yaml"):
        self.config_path = config_path
        self.config = self._load_config()
        self._validate_config()

    def _load_config(self) -> dict:
        """Load configuration from YAML file"""
        if not os.path.exists(self.config_path):
            raise FileNotFoundError(f"Configuration file not found: {self.config_path}")

        with open(self.config_path, 'r', encoding='utf-8') as f:
            return yaml.safe_load(f) or {}

    def _validate_config(self):
        """Validate section shapes and planning values"""
        if not isinstance(self.config, dict):
            raise ValueError(f"{self.config_path} must contain a mapping at the top level")

        for section in ('openai', 'oracle', 'planning', 'fillers', 'logging'):
            value = self.config.get(section)
            if value is not None and not isinstance(value, dict):
                raise ValueError(f"Configuration section '{section}' must be a mapping")

        for style in self.pattern:
            if style not in STYLES:
                raise ValueError(f"Unknown style in planning.pattern: {style} (expected one of {', '.join(STYLES)})")
        if self.minutes <= 0:
            raise ValueError("planning.minutes must be positive")

    def get(self, section: str, key: str, default: Any = None) -> Any:
        """
        Get configuration value

        Args:
            section: Configuration section
            key: Configuration key
            default: Default value if not found

        Returns:
            Configuration value or default
        """
        if section not in self.config or self.config[section] is None:
            return default
        return self.config[section].get(key, default)

    def require_api_key(self) -> str:
        """API key for oracle-backed commands; raises when it is unset or a placeholder"""
        key = self.openai_api_key
        if not key or str(key).startswith('YOUR_'):
            raise ValueError(f"Please set openai.api_key in {self.config_path} or OPENAI_API_KEY")
        return key

    @property
    def openai_api_key(self) -> str:
        """Get OpenAI API key (with environment variable override)"""
        return os.getenv('OPENAI_API_KEY') or self.get('openai', 'api_key', '') or ''

    @property
    def openai_model(self) -> str:
        return self.get('openai', 'model', 'gpt-4o-mini')

    @property
    def openai_temperature(self) -> float:
        return float(self.get('openai', 'temperature', 0.7))

    # Oracle call bounds
    @property
    def oracle_timeout_seconds(self) -> float:
        return float(self.get('oracle', 'timeout_seconds', 30))

    @property
    def oracle_max_retries(self) -> int:
        """Retries for transient transport errors (rate limit, 5xx, connection)"""
        return int(self.get('oracle', 'max_retries', 2))

    @property
    def oracle_candidate_limit(self) -> int:
        """Maximum candidates sent in one tanda request"""
        return int(self.get('oracle', 'candidate_limit', 80))

    # Planning
    @property
    def minutes(self) -> int:
        return int(self.get('planning', 'minutes', 180))

    @property
    def pattern(self) -> List[str]:
        return list(self.get('planning', 'pattern', None) or DEFAULT_PATTERN)

    @property
    def sizes(self) -> Dict[str, int]:
        sizes = dict(DEFAULT_SIZES)
        sizes.update({k: int(v) for k, v in (self.get('planning', 'sizes', None) or {}).items()})
        return sizes

    @property
    def filler_seconds(self) -> int:
        """Length of one cortina, also the budget stop threshold"""
        return int(self.get('planning', 'filler_seconds', 60))

    @property
    def overshoot_seconds(self) -> int:
        """How far a tanda may exceed the remaining budget and still be accepted"""
        return int(self.get('planning', 'overshoot_seconds', 30))

    @property
    def retry_alternatives(self) -> int:
        return int(self.get('planning', 'retry_alternatives', 3))

    @property
    def random_seed(self) -> Optional[int]:
        seed = self.get('planning', 'random_seed', None)
        return int(seed) if seed is not None else None

    # Fillers
    @property
    def filler_genres(self) -> List[str]:
        return list(self.get('fillers', 'genres', None) or DEFAULT_FILLER_GENRES)

    # Logging
    @property
    def log_level(self) -> str:
        return str(self.get('logging', 'level', 'INFO')).upper()

    @property
    def log_file(self) -> Optional[str]:
        return self.get('logging', 'file', None)

    def __repr__(self) -> str:
        """String representation (hides sensitive data)"""
        return redact(
            f"Config(path={self.config_path}, model={self.openai_model}, "
            f"api_key={self.openai_api_key or '-'}, minutes={self.minutes})"
        )
