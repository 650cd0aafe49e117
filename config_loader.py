"""Configuration loader with YAML support and environment variable substitution."""

import copy
import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union
from urllib.parse import urlparse

import yaml

DEFAULT_CONFIG: Dict[str, Any] = {
    'confluence': {
        'base_url': None,
        'context_path': '/wiki',
        'auth_type': 'basic',
        'username': None,
        'api_token': None,
        'space_key': None,
        'parent_page_id': None,
        'verify_ssl': True,
    },
    'wiki': {
        'root_dir': None,
        'attachments_dir': None,
        'exclude': [],
    },
    'project': {
        'name': None,
    },
    'migration': {
        'state_file': '.validation-state.json',
        'fixes_file': '.page-name-fixes.json',
        'report_path': None,
        'upload_workers': 3,
        'prefer_blob_urls': False,
        'ignore_owned_pages': True,
        'backoff': {
            'retries': 3,
            'delay': 1.0,
        },
    },
    'local': {
        'output_directory': './local-output',
    },
    'advanced': {
        'request_timeout': 30,
        'max_retries': 3,
        'retry_backoff_factor': 2.0,
        'rate_limit': 0.0,
    },
    'logging': {
        'level': None,
        'file': None,
    },
    'export': {
        'progress_bars': True,
    },
}

# Environment variable -> configuration key; used when the key is left empty
ENV_VARS = {
    'CONFLUENCE_BASE_URL': 'confluence.base_url',
    'CONFLUENCE_USERNAME': 'confluence.username',
    'CONFLUENCE_API_TOKEN': 'confluence.api_token',
    'CONFLUENCE_SPACE_KEY': 'confluence.space_key',
    'CONFLUENCE_PARENT_PAGE_ID': 'confluence.parent_page_id',
    'WIKI_ROOT_DIR': 'wiki.root_dir',
    'ATTACHMENTS_PATH': 'wiki.attachments_dir',
    'PROJECT_NAME': 'project.name',
    'OUTPUT_PATH': 'local.output_directory',
}

# Used only when neither wiki.root_dir nor WIKI_ROOT_DIR nor project detection gives a root
FALLBACK_WIKI_ENV_VAR = 'AZURE_WIKI_PATH'


class ConfigLoader:
    """Handles loading and validation of configuration files."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([A-Za-z_][A-Za-z0-9_]*)\}')

    @classmethod
    def load(cls, config_path: str) -> Dict[str, Any]:
        """
        Load configuration from YAML file with environment variable substitution.

        Keys the file leaves empty are filled from the environment, then
        from the built-in defaults.

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
            config_data = yaml.safe_load(f) or {}

        if not isinstance(config_data, dict):
            raise ValueError("Configuration file must contain a dictionary")

        config_data = cls._substitute_env_vars_recursive(config_data)
        config_data = cls._apply_environment(config_data)

        return _deep_merge(DEFAULT_CONFIG, config_data)

    @classmethod
    def from_environment(cls) -> Dict[str, Any]:
        """Build a configuration from defaults and environment variables alone."""
        return _deep_merge(DEFAULT_CONFIG, cls._apply_environment({}))

    @classmethod
    def resolve_paths(cls, config: Dict[str, Any], cwd: Optional[Union[str, Path]] = None) -> Dict[str, Any]:
        """
        Fill in the wiki root and attachments directory when they are not set.

        The wiki root is detected next to the working directory from the
        project name (``../{name}.wiki``, ``../{name}``, ``../../{name}.wiki``,
        ``{name}.wiki``), then taken from ``AZURE_WIKI_PATH``. The attachments
        directory defaults to ``{root}/.attachments``, then to the
        ``.attachments`` folder next to the root.

        Args:
            config: Configuration dictionary
            cwd: Directory detection is relative to (defaults to the working directory)

        Returns:
            Configuration copy with ``wiki.root_dir`` and ``wiki.attachments_dir`` resolved
        """
        resolved = copy.deepcopy(config)
        wiki = resolved.setdefault('wiki', {})
        base = Path(cwd) if cwd else Path.cwd()

        if not wiki.get('root_dir'):
            project_name = get_nested(resolved, 'project.name')
            if project_name:
                for candidate in (
                    base.parent / f"{project_name}.wiki",
                    base.parent / project_name,
                    base.parent.parent / f"{project_name}.wiki",
                    base / f"{project_name}.wiki",
                ):
                    if candidate.is_dir():
                        wiki['root_dir'] = str(candidate)
                        break

        if not wiki.get('root_dir') and os.getenv(FALLBACK_WIKI_ENV_VAR):
            wiki['root_dir'] = os.getenv(FALLBACK_WIKI_ENV_VAR)

        root_dir = wiki.get('root_dir')
        if root_dir and not wiki.get('attachments_dir'):
            root = Path(root_dir)
            for candidate in (root / '.attachments', root.parent / '.attachments'):
                if candidate.is_dir():
                    wiki['attachments_dir'] = str(candidate)
                    break
            else:
                wiki['attachments_dir'] = str(root / '.attachments')

        return resolved

    @classmethod
    def validate(cls, config: Dict[str, Any], require_confluence: bool = True) -> None:
        """
        Validate configuration for required fields and correct values.

        Args:
            config: Configuration dictionary to validate
            require_confluence: Whether Confluence credentials and target are needed

        Raises:
            ValueError: If validation fails
        """
        cls._validate_required_field(config, 'wiki.root_dir')

        if require_confluence:
            cls._validate_required_field(config, 'confluence.base_url')
            cls._validate_required_field(config, 'confluence.api_token')
            cls._validate_required_field(config, 'confluence.space_key')
            cls._validate_required_field(config, 'confluence.parent_page_id')

            auth_type = get_nested(config, 'confluence.auth_type', 'basic')
            if auth_type == 'basic':
                cls._validate_required_field(config, 'confluence.username')
            elif auth_type != 'bearer':
                raise ValueError("confluence.auth_type must be 'basic' or 'bearer'")

            cls._validate_url(get_nested(config, 'confluence.base_url'), 'confluence.base_url')

        workers = get_nested(config, 'migration.upload_workers', 3)
        if not isinstance(workers, int) or isinstance(workers, bool) or workers < 1:
            raise ValueError("migration.upload_workers must be a positive integer")

        retries = get_nested(config, 'migration.backoff.retries', 3)
        if not isinstance(retries, int) or isinstance(retries, bool) or retries < 1:
            raise ValueError("migration.backoff.retries must be a positive integer")

        delay = get_nested(config, 'migration.backoff.delay', 1.0)
        if not isinstance(delay, (int, float)) or delay < 0:
            raise ValueError("migration.backoff.delay must be a non-negative number")

        timeout = get_nested(config, 'advanced.request_timeout', 30)
        if not isinstance(timeout, (int, float)) or timeout <= 0:
            raise ValueError("advanced.request_timeout must be a positive number")

        exclude = get_nested(config, 'wiki.exclude', [])
        if not isinstance(exclude, list):
            raise ValueError("wiki.exclude must be a list of names")

    @classmethod
    def merge_with_args(cls, config: Dict[str, Any], args) -> Dict[str, Any]:
        """
        Merge configuration file with CLI arguments.
        CLI arguments take precedence over config file values.

        Args:
            config: Base configuration dictionary
            args: Parsed CLI arguments

        Returns:
            Merged configuration dictionary
        """
        merged = copy.deepcopy(config)

        for section in ('confluence', 'wiki', 'local', 'logging'):
            merged.setdefault(section, {})

        if getattr(args, 'parent', None):
            merged['confluence']['parent_page_id'] = args.parent

        if getattr(args, 'wiki_path', None):
            merged['wiki']['root_dir'] = args.wiki_path
            merged['wiki']['attachments_dir'] = None

        if getattr(args, 'output', None):
            merged['local']['output_directory'] = args.output

        if getattr(args, 'debug', False):
            merged['logging']['level'] = 'DEBUG'
        elif getattr(args, 'verbose', 0) and not merged['logging'].get('level'):
            merged['logging']['level'] = 'DEBUG' if args.verbose >= 2 else 'INFO'

        return merged

    @classmethod
    def _apply_environment(cls, config: Dict[str, Any]) -> Dict[str, Any]:
        filled = copy.deepcopy(config)
        for var_name, path in ENV_VARS.items():
            value = os.getenv(var_name)
            if value and get_nested(filled, path) in (None, ''):
                _set_nested(filled, path, value)
        return filled

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
            env_value = os.getenv(match.group(1))
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
        path: Dot-separated path (e.g., "confluence.base_url")
        default: Default value if path doesn't exist

    Returns:
        Value at the nested path or default
    """
    value = config

    for key in path.split('.'):
        if isinstance(value, dict) and key in value:
            value = value[key]
        else:
            return default

    return value


def _set_nested(config: dict, path: str, value: Any) -> None:
    keys = path.split('.')
    target = config
    for key in keys[:-1]:
        if not isinstance(target.get(key), dict):
            target[key] = {}
        target = target[key]
    target[keys[-1]] = value


def _deep_merge(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    """Copy of ``base`` with ``override`` applied; ``None`` in override keeps the base value."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        elif value is not None or key not in merged:
            merged[key] = copy.deepcopy(value)
    return merged


__all__ = ['ConfigLoader', 'DEFAULT_CONFIG', 'ENV_VARS', 'get_nested']
