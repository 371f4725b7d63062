"""
Manages loading, validation, and migration of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from strudel_samples.exceptions import ConfigurationError
from strudel_samples.models.config import SamplesConfig

log = logging.getLogger(__name__)

SAMPLES_SECTION = "samples"


class ConfigManager:
    """Handles all operations related to the application's INI config file."""

    def __init__(self, config_file_path: Path):
        self.config_file_path = config_file_path
        self._parser = configparser.ConfigParser(interpolation=None)
        self._loaded = False

    def load_config(self, cli_options: dict[str, Any] | None = None) -> SamplesConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        A missing file is not an error: the defaults are used.

        Args:
            cli_options: A dictionary of options provided via the command line.

        Returns:
            A validated SamplesConfig object.

        Raises:
            ConfigurationError: If the config file cannot be parsed or validation
            fails.
        """
        self._read()

        if self.config_file_path.is_file() and self._migrate_if_needed():
            log.info(
                "[yellow]Configuration file was updated with new default values."
                "[/yellow]"
            )

        config_from_file = self._get_config_as_dict()

        if cli_options:
            config_from_file.update(
                {k: v for k, v in cli_options.items() if v is not None}
            )

        try:
            return SamplesConfig(**config_from_file)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def get(self, key: str) -> Any:
        """
        Reads a single setting by dotted key, e.g. 'samples.cache_size_mb'.

        Returns:
            The validated value, or None if the key is unknown.
        """
        section, _, option = key.partition(".")
        if section != SAMPLES_SECTION or not option:
            return None
        config = self.load_config()
        return getattr(config, option, None)

    def save_config(self, settings: dict[str, Any]) -> None:
        """
        Creates and saves a complete configuration file.

        Args:
            settings: A dictionary of settings to save. Missing keys get defaults.
        """
        try:
            config = SamplesConfig(**settings)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

        parser = configparser.ConfigParser(interpolation=None)
        parser[SAMPLES_SECTION] = {}
        for key in sorted(SamplesConfig.get_ini_keys()):
            value = getattr(config, key)
            if isinstance(value, bool):
                parser[SAMPLES_SECTION][key] = "true" if value else "false"
            elif value is None:
                parser[SAMPLES_SECTION][key] = ""
            else:
                parser[SAMPLES_SECTION][key] = str(value)

        try:
            self.config_file_path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.config_file_path, "w", encoding="utf-8") as configfile:
                parser.write(configfile)
        except OSError as e:
            raise ConfigurationError(f"Failed to save configuration file: {e}") from e
        self._loaded = False

    def _read(self) -> None:
        if self._loaded:
            return
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(
                    f"Error parsing configuration file: {e}"
                ) from e
        if not self._parser.has_section(SAMPLES_SECTION):
            self._parser.add_section(SAMPLES_SECTION)
        self._loaded = True

    def _get_config_as_dict(self) -> dict[str, Any]:
        """Reads the [samples] section of the INI file into a dictionary."""
        section = self._parser[SAMPLES_SECTION]
        try:
            timeout = section.get("request_timeout", "").strip()
            return {
                "cache_size_mb": section.getfloat("cache_size_mb", 1000),
                "cache_dir": section.get("cache_dir", "").strip() or None,
                "auto_download": section.getboolean("auto_download", False),
                "request_timeout": float(timeout) if timeout else None,
            }
        except ValueError as e:
            raise ConfigurationError(f"Invalid value in configuration file: {e}") from e

    def _migrate_if_needed(self) -> bool:
        """Adds missing default values to an existing config file."""
        defaults = SamplesConfig()
        section = self._parser[SAMPLES_SECTION]
        needs_saving = False

        for key in sorted(SamplesConfig.get_ini_keys()):
            if key in section:
                continue
            default_value = getattr(defaults, key)
            if isinstance(default_value, bool):
                section[key] = "true" if default_value else "false"
            elif default_value is None:
                section[key] = ""
            else:
                section[key] = str(default_value)
            needs_saving = True
            log.debug(
                f"Migrating config: added missing key '{key}' with "
                f"value '{section[key]}'."
            )

        if needs_saving:
            try:
                with open(self.config_file_path, "w", encoding="utf-8") as f:
                    self._parser.write(f)
            except OSError as e:
                log.error(f"Could not save migrated configuration file: {e}")
                return False

        return needs_saving
