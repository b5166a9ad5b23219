"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from typing import Any, Dict, Mapping, Optional
from urllib.parse import urlparse

import yaml

PROFILES = ('flarum', 'csv_dump', 'json_export')

DEFAULT_CONFIG: Dict[str, Any] = {
    'source': {
        'profile': None,
        'database_url': None,
        'files': {}
    },
    'target': {
        'base_url': None,
        'api_key': None,
        'api_username': 'system',
        'fallback_user_id': -1,
        'fallback_category_id': None
    },
    'migration': {
        'import_prefix': '',
        'batch_size': 1000,
        'read_ahead': 1,
        'dry_run': False,
        'inspection_directory': './inspection',
        'strict_placeholders': False
    },
    'identity_map': {
        'path': './identity_map.sqlite3'
    },
    'transcoder': {
        'fallback_title': 'Untitled'
    },
    'advanced': {
        'request_timeout': 30,
        'max_retries': 3,
        'retry_backoff_factor': 0.5,
        'rate_limit': 0.0,
        'verify_ssl': True,
        'progress_bars': True
    },
    'logging': {
        'level': None,
        'file': None
    }
}

# Environment variable -> (config path, type)
ENV_OVERRIDES = {
    'IMPORT_PREFIX': ('migration.import_prefix', str),
    'BATCH_SIZE': ('migration.batch_size', int),
    'DRY_RUN': ('migration.dry_run', bool),
    'FLARUM_POSTS_DRY_RUN': ('migration.dry_run', bool),
    'INSPECTION_DIR': ('migration.inspection_directory', str),
    'IDENTITY_MAP_PATH': ('identity_map.path', str),
    'SOURCE_PROFILE': ('source.profile', str),
    'SOURCE_DATABASE_URL': ('source.database_url', str),
    'JSON_FILE': ('source.files.users', str),
    'CSV_USER_FILE': ('source.files.users', str),
    'CSV_EMAILS': ('source.files.emails', str),
    'CSV_CATEGORIES': ('source.files.categories', str),
    'CSV_TOPICS': ('source.files.topics', str),
    'TARGET_BASE_URL': ('target.base_url', str),
    'TARGET_API_KEY': ('target.api_key', str),
    'TARGET_API_USERNAME': ('target.api_username', str),
}

_FALSE_VALUES = {'', '0', 'false', 'no', 'off'}


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Args:
            config_path: Path to YAML configuration file

        Returns:
            Parsed configuration dictionary

        Raises:
            FileNotFoundError: If config file doesn't exist
            yaml.YAMLError: If YAML parsing fails
        """
        if not os.path.exists(config_path):
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r', encoding='utf-8') as f:
            config_data = yaml.safe_load(f)

        if config_data is None:
            config_data = {}
        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        return cls._substitute_env_vars_recursive(config_data)

    @classmethod
    def resolve(
        cls,
        config_path: Optional[str] = None,
        args=None,
        environ: Optional[Mapping[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Build the effective configuration.

        Precedence (lowest first): defaults, YAML file, environment
        overrides, CLI arguments.
        """
        config = cls.load(config_path) if config_path else {}
        config = cls.apply_env_overrides(config, environ)
        if args is not None:
            config = cls.merge_with_args(config, args)
        return cls.with_defaults(config)

    @classmethod
    def with_defaults(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        """Deep-merge a configuration over DEFAULT_CONFIG."""
        return _deep_merge(copy.deepcopy(DEFAULT_CONFIG), config)

    @classmethod
    def apply_env_overrides(
        cls,
        config: Dict[str, Any],
        environ: Optional[Mapping[str, str]] = None
    ) -> Dict[str, Any]:
        """
        Apply the environment variables listed in ENV_OVERRIDES.

        Raises:
            ValueError: If a numeric override is not a number
        """
        environ = os.environ if environ is None else environ
        merged = copy.deepcopy(config)

        for var_name, (path, value_type) in ENV_OVERRIDES.items():
            if var_name not in environ:
                continue
            raw = environ[var_name]

            if value_type is bool:
                value = raw.strip().lower() not in _FALSE_VALUES
            elif value_type is int:
                try:
                    value = int(raw)
                except ValueError:
                    raise ValueError(f"{var_name} must be an integer, got '{raw}'")
            else:
                value = raw

            set_nested(merged, path, value)

        return merged

    @classmethod
    def validate(cls, config: Dict[str, Any]) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate

        Raises:
            ValueError: If validation fails
        """
        profile = get_nested(config, 'source.profile')
        if profile not in PROFILES:
            raise ValueError(f"source.profile must be one of: {list(PROFILES)}")

        if profile == 'flarum':
            cls._validate_required_field(config, 'source.database_url')
        elif profile == 'csv_dump':
            cls._validate_required_field(config, 'source.files.users')
            cls._validate_required_field(config, 'source.files.topics')
        elif profile == 'json_export':
            cls._validate_required_field(config, 'source.files.users')

        dry_run = get_nested(config, 'migration.dry_run', False)
        if not isinstance(dry_run, bool):
            raise ValueError("migration.dry_run must be a boolean")

        # A dry run never talks to the target
        if not dry_run:
            cls._validate_required_field(config, 'target.base_url')
            cls._validate_required_field(config, 'target.api_key')
            cls._validate_url(get_nested(config, 'target.base_url'), 'target.base_url')
        else:
            cls._validate_required_field(config, 'migration.inspection_directory')

        batch_size = get_nested(config, 'migration.batch_size', 1000)
        if not isinstance(batch_size, int) or isinstance(batch_size, bool) or batch_size < 1:
            raise ValueError("migration.batch_size must be a positive integer")

        read_ahead = get_nested(config, 'migration.read_ahead', 1)
        if not isinstance(read_ahead, int) or isinstance(read_ahead, bool) or read_ahead < 0:
            raise ValueError("migration.read_ahead must be a non-negative integer")

        import_prefix = get_nested(config, 'migration.import_prefix', '')
        if import_prefix is not None and not isinstance(import_prefix, str):
            raise ValueError("migration.import_prefix must be a string")

        cls._validate_required_field(config, 'identity_map.path')

        timeout = get_nested(config, 'advanced.request_timeout', 30)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("advanced.request_timeout must be a positive number")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: CLI arguments with attributes matching config keys

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        if getattr(args, 'profile', None):
            set_nested(merged, 'source.profile', args.profile)

        if getattr(args, 'database_url', None):
            set_nested(merged, 'source.database_url', args.database_url)

        if getattr(args, 'dry_run', False):
            set_nested(merged, 'migration.dry_run', True)

        if getattr(args, 'batch_size', None):
            set_nested(merged, 'migration.batch_size', args.batch_size)

        if getattr(args, 'import_prefix', None) is not None:
            set_nested(merged, 'migration.import_prefix', args.import_prefix)

        if getattr(args, 'identity_map', None):
            set_nested(merged, 'identity_map.path', args.identity_map)

        if getattr(args, 'inspection_dir', None):
            set_nested(merged, 'migration.inspection_directory', args.inspection_dir)

        if getattr(args, 'strict', False):
            set_nested(merged, 'migration.strict_placeholders', True)

        if getattr(args, 'no_progress', False):
            set_nested(merged, 'advanced.progress_bars', False)

        if getattr(args, 'log_file', None):
            set_nested(merged, 'logging.file', args.log_file)

        return merged

    @classmethod
    def _substitute_env_vars_recursive(cls, data: Any) -> Any:
        """Recursively substitute environment variables in data structure."""
        if isinstance(data, dict):
            return {key: cls._substitute_env_vars_recursive(value) for key, value in data.items()}
        elif isinstance(data, list):
            return [cls._substitute_env_vars_recursive(item) for item in data]
        elif isinstance(data, str):
            return cls._substitute_env_vars(data)
        else:
            return data

    @classmethod
    def _substitute_env_vars(cls, value: str) -> str:
        """Substitute environment variables in a string value."""
        def replace_match(match):
            var_name = match.group(1)
            env_value = os.getenv(var_name)
            return env_value if env_value is not None else match.group(0)

        return cls.ENV_VAR_PATTERN.sub(replace_match, value)

    @staticmethod
    def _validate_required_field(config_section: dict, field: str) -> None:
        """Validate that a required field exists and has a value."""
        value = get_nested(config_section, field)
        if value is None or value == '':
            raise ValueError(f"Missing required configuration: {field}")

        if isinstance(value, str) and '${' in value:
            match = ConfigLoader.ENV_VAR_PATTERN.search(value)
            var_name = match.group(1) if match else value
            raise ValueError(
                f"Configuration field '{field}' contains unsubstituted environment variable: {value}. "
                f"Please set the {var_name} environment variable or provide a value in config file."
            )

    @staticmethod
    def _validate_url(url: str, field_name: str) -> None:
        """Validate URL format."""
        parsed = urlparse(url)
        if not parsed.scheme or parsed.scheme not in ['http', 'https']:
            raise ValueError(f"{field_name} must use http or https scheme: {url}")
        if not parsed.netloc:
            raise ValueError(f"{field_name} missing hostname: {url}")


def get_nested(config: dict, path: str, default: Any = None) -> Any:
    """Safely retrieve nested configuration values using dot notation.

    Args:
        config: Configuration dictionary
        path: Dot-separated path (e.g., "target.base_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    keys = path.split('.')
    value = config

    for key in keys:
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def set_nested(config: dict, path: str, value: Any) -> None:
    """Set a nested configuration value, creating intermediate sections."""
    keys = path.split('.')
    section = config
    for key in keys[:-1]:
        if not isinstance(section.get(key), dict):
            section[key] = {}
        section = section[key]
    section[keys[-1]] = value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(base.get(key), dict):
            base[key] = _deep_merge(base[key], value)
        else:
            base[key] = copy.deepcopy(value)
    return base


__all__ = ['ConfigLoader', 'DEFAULT_CONFIG', 'ENV_OVERRIDES', 'PROFILES', 'get_nested', 'set_nested']
