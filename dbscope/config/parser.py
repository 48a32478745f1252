"""Configuration parser for DBScope."""

import os
import re
from pathlib import Path
from typing import Any, Dict, Optional, Union

import yaml
from pydantic import ValidationError

from dbscope.config.models import DBScopeConfig, EnvironmentSettings
from dbscope.exceptions import ConfigurationError


class ConfigParser:
    """Configuration parser with environment variable interpolation."""

    ENV_VAR_PATTERN = re.compile(r'\$\{([^}]+)\}')

    DEFAULT_FILENAMES = (
        Path("dbscope.yaml"),
        Path("dbscope.yml"),
        Path("config") / "dbscope.yaml",
    )

    def __init__(self) -> None:
        """Initialize the configuration parser."""
        self.env_settings = EnvironmentSettings()

    def load_config(
        self,
        config_path: Optional[Union[str, Path]] = None,
        required: bool = False,
    ) -> DBScopeConfig:
        """Load and validate configuration from a YAML file.

        Args:
            config_path: Path to configuration file. If None, looks for default locations.
            required: Fail when no file is found instead of falling back to defaults.

        Returns:
            Validated DBScopeConfig instance.

        Raises:
            ConfigurationError: If configuration is invalid or file not found.
        """
        config_file = self._find_config_file(config_path)
        if config_file is None:
            if required:
                raise ConfigurationError(
                    f"No configuration file found in default locations: "
                    f"{[str(Path.cwd() / name) for name in self.DEFAULT_FILENAMES]}"
                )
            return DBScopeConfig()

        try:
            with open(config_file, 'r', encoding='utf-8') as file:
                raw_config = yaml.safe_load(file)

            if not raw_config:
                raise ConfigurationError(f"Configuration file '{config_file}' is empty")

            processed_config = self._process_env_vars(raw_config)

            if 'include' in processed_config:
                processed_config = self._process_includes(processed_config, config_file)

            return DBScopeConfig(**processed_config)

        except ConfigurationError:
            raise
        except FileNotFoundError:
            raise ConfigurationError(f"Configuration file '{config_file}' not found")
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid YAML in '{config_file}': {e}")
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}")
        except Exception as e:
            raise ConfigurationError(f"Error loading configuration: {e}")

    def _find_config_file(self, config_path: Optional[Union[str, Path]]) -> Optional[Path]:
        """Find configuration file in default locations.

        Args:
            config_path: Explicit path to configuration file.

        Returns:
            Path to configuration file, or None when nothing is found.

        Raises:
            ConfigurationError: If an explicit path does not exist.
        """
        if config_path:
            path = Path(config_path)
            if path.exists():
                return path
            raise ConfigurationError(f"Configuration file '{config_path}' not found")

        if self.env_settings.config_file:
            path = Path(self.env_settings.config_file)
            if path.exists():
                return path
            raise ConfigurationError(
                f"Configuration file '{self.env_settings.config_file}' from DBSCOPE_CONFIG_FILE not found"
            )

        for name in self.DEFAULT_FILENAMES:
            location = Path.cwd() / name
            if location.exists():
                return location

        return None

    def _process_env_vars(self, config: Any) -> Any:
        """Recursively process environment variables in configuration."""
        if isinstance(config, dict):
            return {key: self._process_env_vars(value) for key, value in config.items()}
        elif isinstance(config, list):
            return [self._process_env_vars(item) for item in config]
        elif isinstance(config, str):
            return self._substitute_env_vars(config)
        else:
            return config

    def _substitute_env_vars(self, value: str) -> str:
        """Substitute environment variables in a string.

        Supports ``${VAR}`` (required) and ``${VAR:-default}``.

        Raises:
            ConfigurationError: If a required environment variable is not set.
        """
        def replace_var(match):
            var_expr = match.group(1)

            if ':-' in var_expr:
                var_name, default = var_expr.split(':-', 1)
                return os.getenv(var_name.strip(), default.strip())

            var_name = var_expr.strip()
            env_value = os.getenv(var_name)
            if env_value is None:
                raise ConfigurationError(f"Required environment variable '{var_name}' is not set")
            return env_value

        return self.ENV_VAR_PATTERN.sub(replace_var, value)

    def _process_includes(self, config: Dict[str, Any], base_path: Union[str, Path]) -> Dict[str, Any]:
        """Merge ``include:`` files into the configuration.

        Included files have lower priority than the including file.
        """
        base_dir = Path(base_path).parent
        includes = config.pop('include')

        if not isinstance(includes, list):
            includes = [includes]

        for include_file in includes:
            include_path = base_dir / include_file

            try:
                with open(include_path, 'r', encoding='utf-8') as file:
                    included_config = yaml.safe_load(file)

                if included_config:
                    included_config = self._process_env_vars(included_config)
                    config = self._merge_configs(included_config, config)

            except FileNotFoundError:
                raise ConfigurationError(f"Included file '{include_path}' not found")
            except yaml.YAMLError as e:
                raise ConfigurationError(f"Invalid YAML in included file '{include_path}': {e}")

        return config

    def _merge_configs(self, base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
        """Merge two configuration dictionaries, ``override`` winning."""
        result = base.copy()

        for key, value in override.items():
            if key in result and isinstance(result[key], dict) and isinstance(value, dict):
                result[key] = self._merge_configs(result[key], value)
            else:
                result[key] = value

        return result

    def create_sample_config(self, output_path: Union[str, Path]) -> None:
        """Create a sample configuration file.

        Args:
            output_path: Path where to create the sample configuration.
        """
        sample_config = {
            'profiles': {
                'local': {
                    'type': 'cassandra',
                    'host': 'localhost',
                    'port': 9042,
                    'local_data_center': 'datacenter1',
                    'description': 'Local single-node Cassandra',
                },
                'staging': {
                    'type': 'scylladb',
                    'host': 'scylla.staging.internal',
                    'port': 9042,
                    'username': 'readonly',
                    'password': '${SCYLLA_PASSWORD:-changeme}',
                    'keyspace': 'app',
                },
            },
            'default_profile': 'local',
            'sessions': {
                'idle_timeout': 1800,
                'sweep_interval': 60,
            },
            'queries': {
                'default_page_size': 100,
                'max_page_size': 5000,
                'read_only': True,
                'connect_timeout': 10,
                'request_timeout': 10,
            },
            'history': {
                'enabled': True,
                'backend': 'sql',
                'url': 'sqlite:///data/dbscope.db',
                'retry_attempts': 3,
                'retry_delay': 0.5,
            },
        }

        with open(output_path, 'w', encoding='utf-8') as file:
            yaml.safe_dump(sample_config, file, default_flow_style=False, sort_keys=False)


_config_parser = ConfigParser()


def load_config(config_path: Optional[Union[str, Path]] = None, required: bool = False) -> DBScopeConfig:
    """Load configuration from ``config_path`` or the default locations."""
    return _config_parser.load_config(config_path, required=required)


def validate_config_file(config_path: Union[str, Path]) -> bool:
    """Validate a configuration file.

    Raises:
        ConfigurationError: If configuration is invalid.
    """
    _config_parser.load_config(config_path, required=True)
    return True


def create_sample_config(output_path: Union[str, Path]) -> None:
    """Create a sample configuration file."""
    _config_parser.create_sample_config(output_path)
