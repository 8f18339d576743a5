"""Configuration management for Colmillo."""

import copy
from pathlib import Path
from typing import Any, Optional

import yaml  # type: ignore[import-untyped]
from jsonschema import ValidationError, validate  # type: ignore[import-untyped]


class ConfigManager:
    """Manage application configuration."""

    DEFAULT_CONFIG = {
        "version": "1.0",
        "general": {
            "data_dir": "~/.colmillo/data",
            "default_user": "A",
        },
        "users": {
            "A": "User A",
            "B": "User B",
        },
        "persistence": {
            "backend": "csv",
            "retry_attempts": 3,
            "retry_delay": 0.1,
        },
        "display": {
            "show_seconds": True,
        },
        "advanced": {
            "log_level": "WARNING",
        },
    }

    CONFIG_SCHEMA = {
        "type": "object",
        "properties": {
            "version": {"type": "string"},
            "general": {
                "type": "object",
                "properties": {
                    "data_dir": {"type": "string"},
                    "default_user": {"type": "string", "enum": ["A", "B"]},
                },
            },
            "users": {
                "type": "object",
                "properties": {
                    "A": {"type": "string", "minLength": 1},
                    "B": {"type": "string", "minLength": 1},
                },
                "additionalProperties": False,
            },
            "persistence": {
                "type": "object",
                "properties": {
                    "backend": {"type": "string", "enum": ["csv", "memory"]},
                    "retry_attempts": {"type": "integer", "minimum": 1, "maximum": 10},
                    "retry_delay": {"type": "number", "minimum": 0, "maximum": 10},
                },
            },
            "display": {
                "type": "object",
                "properties": {
                    "show_seconds": {"type": "boolean"},
                },
            },
            "advanced": {
                "type": "object",
                "properties": {
                    "log_level": {
                        "type": "string",
                        "enum": ["DEBUG", "INFO", "WARNING", "ERROR"],
                    },
                },
            },
        },
        "required": ["version"],
    }

    def __init__(self, config_path: Optional[Path] = None):
        """Initialize configuration manager.

        Args:
            config_path: Path to config file. Defaults to ~/.colmillo/config.yml
        """
        if config_path is None:
            config_path = Path.home() / ".colmillo" / "config.yml"
        self.config_path = Path(config_path)
        self._config: dict[str, Any] = {}
        self._load_or_create()

    def _load_or_create(self) -> None:
        """Load existing config or create default."""
        if self.config_path.exists():
            with open(self.config_path, encoding="utf-8") as f:
                loaded_config = yaml.safe_load(f) or {}
            self._config = self._merge_with_defaults(loaded_config)
            try:
                self.validate()
            except ValueError as e:
                backup_path = self.config_path.with_suffix(".yml.backup")
                self.config_path.rename(backup_path)
                self._config = copy.deepcopy(self.DEFAULT_CONFIG)
                self.save()
                raise ValueError(
                    f"Config validation failed, backed up to {backup_path}. "
                    f"Using defaults. Error: {e}"
                )
        else:
            self._config = copy.deepcopy(self.DEFAULT_CONFIG)
            self.save()

    def _merge_with_defaults(self, config: dict[str, Any]) -> dict[str, Any]:
        """Merge config with defaults to ensure all keys exist."""
        result = copy.deepcopy(self.DEFAULT_CONFIG)
        self._deep_merge(result, config)
        return result

    def _deep_merge(self, base: dict[str, Any], override: dict[str, Any]) -> None:
        """Deep merge override into base dictionary (in-place)."""
        for key, value in override.items():
            if key in base and isinstance(base[key], dict) and isinstance(value, dict):
                self._deep_merge(base[key], value)
            else:
                base[key] = value

    def get(self, key: str, default: Any = None) -> Any:
        """Get configuration value using dot notation.

        Args:
            key: Configuration key in dot notation (e.g., 'persistence.backend')
            default: Default value if key not found

        Returns:
            Configuration value or default

        Example:
            >>> config.get('persistence.backend')
            'csv'
            >>> config.get('nonexistent.key', 'default')
            'default'
        """
        keys = key.split(".")
        value: Any = self._config
        for k in keys:
            if isinstance(value, dict):
                value = value.get(k)
            else:
                return default
            if value is None:
                return default
        return value

    def set(self, key: str, value: Any) -> None:
        """Set configuration value using dot notation.

        Raises:
            ValueError: If configuration is invalid after setting

        Example:
            >>> config.set('persistence.retry_attempts', 5)
        """
        keys = key.split(".")
        candidate = copy.deepcopy(self._config)
        node = candidate
        for k in keys[:-1]:
            if not isinstance(node.get(k), dict):
                node[k] = {}
            node = node[k]
        node[keys[-1]] = value

        previous, self._config = self._config, candidate
        try:
            self.validate()
        except ValueError:
            self._config = previous
            raise
        self.save()

    def validate(self) -> bool:
        """Validate configuration against schema.

        Returns:
            True if valid

        Raises:
            ValueError: If configuration is invalid
        """
        try:
            validate(instance=self._config, schema=self.CONFIG_SCHEMA)
            return True
        except ValidationError as e:
            raise ValueError(f"Invalid configuration: {e.message}")

    def save(self) -> None:
        """Save configuration to file."""
        self.config_path.parent.mkdir(parents=True, exist_ok=True)
        with open(self.config_path, "w", encoding="utf-8") as f:
            yaml.dump(
                self._config, f, default_flow_style=False, sort_keys=False, allow_unicode=True
            )

    def reset(self) -> None:
        """Reset to default configuration."""
        self._config = copy.deepcopy(self.DEFAULT_CONFIG)
        self.save()

    def to_dict(self) -> dict[str, Any]:
        """Get a copy of the full configuration."""
        return copy.deepcopy(self._config)

    def get_all_keys(self, prefix: str = "") -> list[str]:
        """Get all configuration keys in dot notation.

        Example:
            >>> config.get_all_keys()
            ['version', 'general.data_dir', 'general.default_user', ...]
        """
        keys = []
        config = self._config if not prefix else self.get(prefix, {})

        if isinstance(config, dict):
            for key, value in config.items():
                full_key = f"{prefix}.{key}" if prefix else key
                if isinstance(value, dict):
                    keys.extend(self.get_all_keys(full_key))
                else:
                    keys.append(full_key)
        return keys

    @property
    def data_dir(self) -> Path:
        """Configured data directory with ~ expanded."""
        return Path(self.get("general.data_dir", "~/.colmillo/data")).expanduser()

    def user_name(self, user: str) -> str:
        """Display name configured for a user tag."""
        return str(self.get(f"users.{user}", f"User {user}"))
