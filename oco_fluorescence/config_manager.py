"""
Unified Configuration System for OCO-2 Fluorescence Acquisition

This module provides centralized configuration management with clear hierarchy:
1. Built-in defaults (lowest priority)
2. Configuration files (YAML/JSON)
3. Environment variables
4. Command-line arguments (highest priority)
"""

import os
import json
from datetime import date
from pathlib import Path
from typing import Dict, Any, Optional

import yaml

from .logging_utils import ConfigurationError


class OCOConfig:
    """
    Unified configuration for the OCO-2 download pipeline.

    Sections:
        processing: working directory and logging
        archive: remote archive location and HTTP behaviour
        bounding_box: region of interest
        pipeline: date range, skip checks, ledger and output file names
    """

    def __init__(self, config_file: Optional[str] = None, cli_args: Optional[Dict] = None):
        """
        Initialize configuration system with proper precedence order.

        Args:
            config_file: Path to YAML or JSON configuration file
            cli_args: Dictionary of command-line arguments (highest priority)
        """
        self.config_file = config_file
        self.cli_args = cli_args or {}
        self._config = {}
        self._load_configuration()

    def _load_configuration(self):
        """Load configuration with proper precedence order"""
        self._config = self._get_default_config()

        if self.config_file:
            file_config = self._load_config_file(self.config_file)
            self._merge_config(self._config, file_config)

        env_config = self._load_environment_config()
        self._merge_config(self._config, env_config)

        if self.cli_args:
            self._merge_config(self._config, self.cli_args)

        self._validate_configuration()

    @staticmethod
    def _get_default_config() -> Dict[str, Any]:
        """Built-in default configuration"""
        return {
            'processing': {
                'working_directory': "./oco-download",
                'log_level': 'INFO',
                'log_file': None
            },
            'archive': {
                'base_url': 'http://oco2.gesdisc.eosdis.nasa.gov/opendap',
                'product': 'OCO2_L2_IMAPDOAS.7r',
                'day_of_year_offset': 1,
                'filename_prefix': 'oco',
                'request_timeout': 120,
                'retry_attempts': 0,
                'retry_delay': 5,
                'chunk_size': 1048576
            },
            'bounding_box': {
                'lat_min': 45,
                'lat_max': 47,
                'lon_min': -91,
                'lon_max': -89
            },
            'pipeline': {
                'start_date': '2014-09-07',
                'end_date': None,  # today (UTC)
                'write': True,
                'check_date': True,
                'check_url': True,
                'check_file': True,
                'date_ledger': 'checked.dates',
                'url_ledger': 'checked.urls',
                'file_ledger': 'checked.files',
                'output_table': 'fluorescence.csv',
                'scratch_file': 'current.h5'
            }
        }

    def _load_config_file(self, config_path: str) -> Dict[str, Any]:
        """Load configuration from YAML or JSON file"""
        config_path = Path(config_path)
        if not config_path.exists():
            raise FileNotFoundError(f"Configuration file not found: {config_path}")

        with open(config_path, 'r') as f:
            if config_path.suffix.lower() in ['.yaml', '.yml']:
                return yaml.safe_load(f) or {}
            elif config_path.suffix.lower() == '.json':
                return json.load(f)
            else:
                raise ConfigurationError(f"Unsupported config file format: {config_path.suffix}")

    def _load_environment_config(self) -> Dict[str, Any]:
        """Load configuration from environment variables"""
        env_config = {}

        env_mappings = {
            'OCO_WORKING_DIR': 'processing.working_directory',
            'OCO_LOG_LEVEL': 'processing.log_level',
            'OCO_LOG_FILE': 'processing.log_file',
            'OCO_ARCHIVE_URL': 'archive.base_url',
            'OCO_PRODUCT': 'archive.product',
            'OCO_REQUEST_TIMEOUT': 'archive.request_timeout',
            'OCO_START_DATE': 'pipeline.start_date',
            'OCO_END_DATE': 'pipeline.end_date'
        }

        for env_var, config_path in env_mappings.items():
            value = os.getenv(env_var)
            if value is not None:
                self._set_nested_config(env_config, config_path, value)

        return env_config

    def _set_nested_config(self, config_dict: Dict, path: str, value: Any):
        """Set nested configuration value using dot notation path"""
        keys = path.split('.')
        current = config_dict

        for key in keys[:-1]:
            if key not in current:
                current[key] = {}
            current = current[key]

        # Convert string values to appropriate types
        if isinstance(value, str):
            if value.lower() in ['true', 'false']:
                value = value.lower() == 'true'
            elif value.isdigit():
                value = int(value)
            elif value.replace('.', '', 1).isdigit():
                value = float(value)

        current[keys[-1]] = value

    def _merge_config(self, base_config: Dict, override_config: Dict):
        """Deep merge configuration dictionaries"""
        for key, value in override_config.items():
            if key in base_config and isinstance(base_config[key], dict) and isinstance(value, dict):
                self._merge_config(base_config[key], value)
            else:
                base_config[key] = value

    def _validate_configuration(self):
        """Validate final configuration"""
        required_sections = ['processing', 'archive', 'bounding_box', 'pipeline']

        for section in required_sections:
            if section not in self._config:
                raise ConfigurationError(f"Required configuration section missing: {section}")

        self._validate_processing_config()
        self._validate_archive_config()
        self._validate_bounding_box_config()
        self._validate_pipeline_config()

    def _validate_processing_config(self):
        processing = self._config['processing']

        valid_log_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        if str(processing.get('log_level', 'INFO')).upper() not in valid_log_levels:
            raise ConfigurationError(f"log_level must be one of: {valid_log_levels}")

        if not processing.get('working_directory'):
            raise ConfigurationError("working_directory must be set")

    def _validate_archive_config(self):
        archive = self._config['archive']

        if not archive.get('base_url'):
            raise ConfigurationError("archive base_url must be set")
        if not archive.get('product'):
            raise ConfigurationError("archive product must be set")

        if archive.get('request_timeout', 0) <= 0:
            raise ConfigurationError("request_timeout must be positive")
        if archive.get('retry_attempts', 0) < 0:
            raise ConfigurationError("retry_attempts must be non-negative")
        if archive.get('retry_delay', 0) < 0:
            raise ConfigurationError("retry_delay must be non-negative")
        if archive.get('chunk_size', 0) <= 0:
            raise ConfigurationError("chunk_size must be positive")
        if not isinstance(archive.get('day_of_year_offset'), int):
            raise ConfigurationError("day_of_year_offset must be an integer")

    def _validate_bounding_box_config(self):
        bbox = self._config['bounding_box']

        for key in ['lat_min', 'lat_max', 'lon_min', 'lon_max']:
            if not isinstance(bbox.get(key), (int, float)) or isinstance(bbox.get(key), bool):
                raise ConfigurationError(f"Bounding box '{key}' must be a number")

        if not (-90 <= bbox['lat_min'] < bbox['lat_max'] <= 90):
            raise ConfigurationError("Invalid latitude bounds. Must be -90 <= lat_min < lat_max <= 90")
        if not (-180 <= bbox['lon_min'] < bbox['lon_max'] <= 180):
            raise ConfigurationError("Invalid longitude bounds. Must be -180 <= lon_min < lon_max <= 180")

    def _validate_pipeline_config(self):
        pipeline = self._config['pipeline']

        boolean_params = ['write', 'check_date', 'check_url', 'check_file']
        for param in boolean_params:
            if param in pipeline and not isinstance(pipeline[param], bool):
                raise ConfigurationError(f"Pipeline parameter '{param}' must be boolean")

        parsed = {}
        for param in ['start_date', 'end_date']:
            value = pipeline.get(param)
            if value is None:
                continue
            if isinstance(value, date):
                # YAML loads unquoted ISO dates as date objects
                pipeline[param] = value.isoformat()
                value = pipeline[param]
            try:
                parsed[param] = date.fromisoformat(str(value))
            except ValueError:
                raise ConfigurationError(f"Pipeline parameter '{param}' must be an ISO date (YYYY-MM-DD)")

        if 'start_date' not in parsed:
            raise ConfigurationError("Pipeline start_date must be set")

        if 'end_date' in parsed and parsed['start_date'] > parsed['end_date']:
            raise ConfigurationError("start_date must be <= end_date")

    # Public interface methods
    def get(self, path: str, default: Any = None) -> Any:
        """
        Get configuration value using dot notation path.

        Args:
            path: Dot-separated path to configuration value (e.g., 'archive.product')
            default: Default value if path not found

        Returns:
            Configuration value or default if not found
        """
        keys = path.split('.')
        current = self._config

        try:
            for key in keys:
                current = current[key]
            return current
        except (KeyError, TypeError):
            return default

    def get_processing_config(self) -> Dict[str, Any]:
        return self._config['processing']

    def get_archive_config(self) -> Dict[str, Any]:
        return self._config['archive']

    def get_bounding_box_config(self) -> Dict[str, Any]:
        return self._config['bounding_box']

    def get_pipeline_config(self) -> Dict[str, Any]:
        return self._config['pipeline']

    def to_dict(self) -> Dict[str, Any]:
        """Return complete configuration as dictionary"""
        return self._config.copy()

    def save_config(self, output_path: str):
        """
        Save current configuration to file.

        Args:
            output_path: Path where to save configuration file
        """
        output_path = Path(output_path)

        if output_path.suffix.lower() in ['.yaml', '.yml']:
            with open(output_path, 'w') as f:
                yaml.dump(self._config, f, default_flow_style=False, indent=2, sort_keys=False)
        elif output_path.suffix.lower() == '.json':
            with open(output_path, 'w') as f:
                json.dump(self._config, f, indent=2)
        else:
            raise ConfigurationError(f"Unsupported output format: {output_path.suffix}")

    @classmethod
    def create_template_config(cls, output_path: Optional[str] = None) -> str:
        """
        Write a commented YAML template with all options and their defaults.

        Args:
            output_path: Optional path to save template (default: oco_config.yaml)

        Returns:
            Path of the written template
        """
        template = cls._get_default_config()
        template_content = cls._format_template_with_comments(template)

        output_file = Path(output_path) if output_path else Path("oco_config.yaml")
        with open(output_file, 'w') as f:
            f.write(template_content)

        return str(output_file)

    @classmethod
    def _format_template_with_comments(cls, template_dict: Dict[str, Any]) -> str:
        """Format template dictionary as YAML with section comments"""
        header = """# OCO-2 Fluorescence Downloader - Configuration Template
# All available options with their defaults.
#
# Environment variables can override settings:
#   OCO_WORKING_DIR, OCO_LOG_LEVEL, OCO_LOG_FILE, OCO_ARCHIVE_URL,
#   OCO_PRODUCT, OCO_REQUEST_TIMEOUT, OCO_START_DATE, OCO_END_DATE

"""
        section_comments = {
            'processing:': '# Working directory for ledgers, output table and scratch file; logging',
            'archive:': '\n# Remote OPeNDAP archive and HTTP settings',
            'bounding_box:': '\n# Region of interest in decimal degrees (open interval)',
            'pipeline:': '\n# Date range, skip checks, ledger and output file names',
        }

        yaml_content = yaml.dump(template_dict, default_flow_style=False, indent=2, sort_keys=False)

        commented_lines = []
        for line in yaml_content.split('\n'):
            if line in section_comments:
                commented_lines.append(section_comments[line])
            commented_lines.append(line)

        return header + '\n'.join(commented_lines)
