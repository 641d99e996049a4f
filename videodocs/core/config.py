"""
Application configuration manager.
Stores settings in a JSON file under the app support directory; API keys
and model overrides come from the environment (.env is honoured).
"""

import json
import logging
import os
from pathlib import Path

from dotenv import load_dotenv

from videodocs.core.constants import (
    CONFIG_PATH, DEFAULT_CHUNK_MAX_TOKENS, POLL_INTERVAL_SEC,
    DEFAULT_MAX_ATTEMPTS, DEFAULT_INITIAL_DELAY_SEC,
    OPENAI_DEFAULT_MODEL, OPENAI_DEFAULT_MAX_TOKENS,
    OPENAI_DEFAULT_TEMPERATURE, OPENAI_DEFAULT_TIMEOUT_SEC,
    ASSEMBLYAI_API_KEY_ENV, OPENAI_API_KEY_ENV,
)

logger = logging.getLogger(__name__)

load_dotenv()

# Validation bounds: key -> (type, min, max)
_BOUNDS = {
    'chunk_max_tokens': (int, 250, 32000),
    'poll_interval_sec': (float, 0.5, 60.0),
    'retry_max_attempts': (int, 1, 10),
    'retry_initial_delay_sec': (float, 0.0, 30.0),
    'openai_max_tokens': (int, 256, 32000),
    'openai_temperature': (float, 0.0, 2.0),
    'openai_timeout_sec': (int, 5, 600),
    'extraction_concurrency': (int, 1, 8),
}

_DEFAULTS = {
    'chunk_max_tokens': DEFAULT_CHUNK_MAX_TOKENS,
    'poll_interval_sec': POLL_INTERVAL_SEC,
    'retry_max_attempts': DEFAULT_MAX_ATTEMPTS,
    'retry_initial_delay_sec': DEFAULT_INITIAL_DELAY_SEC,
    'openai_model': OPENAI_DEFAULT_MODEL,
    'openai_max_tokens': OPENAI_DEFAULT_MAX_TOKENS,
    'openai_temperature': OPENAI_DEFAULT_TEMPERATURE,
    'openai_timeout_sec': OPENAI_DEFAULT_TIMEOUT_SEC,
    'extraction_concurrency': 1,
    'speaker_labels': False,
    'keep_audio': False,
}

# Environment overrides applied on top of the file
_ENV_OVERRIDES = {
    'OPENAI_MODEL': 'openai_model',
    'OPENAI_MAX_TOKENS': 'openai_max_tokens',
    'OPENAI_TEMPERATURE': 'openai_temperature',
}


class AppConfig:
    """Manages application configuration stored as JSON."""

    def __init__(self, config_path: Path | None = None, use_env: bool = True):
        self.path = config_path or CONFIG_PATH
        self.use_env = use_env
        self._data: dict = {}
        self.load()

    def load(self):
        """Load config from disk, merging with defaults."""
        self._data = dict(_DEFAULTS)
        if self.path.exists():
            try:
                with open(self.path, 'r') as f:
                    saved = json.load(f)
                for key, value in saved.items():
                    self._data[key] = self._validate(key, value)
            except (OSError, ValueError, AttributeError) as e:
                logger.warning("Failed to load config: %s", e)

        if self.use_env:
            for env_name, key in _ENV_OVERRIDES.items():
                raw = os.environ.get(env_name)
                if raw:
                    self._data[key] = self._validate(key, raw)

    def save(self):
        """Persist config to disk."""
        self.path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.path, 'w') as f:
            json.dump(self._data, f, indent=2)

    def get(self, key: str, default=None):
        return self._data.get(key, default)

    def set(self, key: str, value):
        value = self._validate(key, value)
        self._data[key] = value
        self.save()

    def _validate(self, key: str, value):
        """Validate and coerce config values to safe ranges."""
        if key in _BOUNDS:
            cast, low, high = _BOUNDS[key]
            try:
                value = cast(value)
            except (TypeError, ValueError):
                logger.warning("Invalid %s %r; using default", key, value)
                return _DEFAULTS[key]
            return max(low, min(high, value))

        if key in ('speaker_labels', 'keep_audio'):
            if isinstance(value, str):
                return value.strip().lower() in ('1', 'true', 'yes', 'on')
            return bool(value)

        if key == 'openai_model':
            if not isinstance(value, str) or not value.strip():
                logger.warning("Invalid openai_model %r; using default", value)
                return OPENAI_DEFAULT_MODEL
            return value.strip()

        return value

    def as_dict(self) -> dict:
        return dict(self._data)

    @property
    def assemblyai_api_key(self) -> str | None:
        return os.environ.get(ASSEMBLYAI_API_KEY_ENV) or None

    @property
    def openai_api_key(self) -> str | None:
        return os.environ.get(OPENAI_API_KEY_ENV) or None

    @property
    def chunk_max_tokens(self) -> int:
        return self._data['chunk_max_tokens']

    @property
    def keep_audio(self) -> bool:
        return self._data.get('keep_audio', False)
