"""
Configuration Management

Unified configuration for the report engine with environment variable
support and centralized path management for logs and the report
store database.

Author: Waqqas Hanafi
Copyright: © 2025 Calaveras County Health and Human Services Agency
"""

import os
import json
import logging
import logging.handlers
from datetime import datetime
from pathlib import Path
from typing import Dict, List, Optional, Any
from dataclasses import dataclass, field
from enum import Enum


class Environment(Enum):
    """Supported environments"""
    DEVELOPMENT = "development"
    TESTING = "testing"
    PRODUCTION = "production"


class LogLevel(Enum):
    """Supported log levels"""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


@dataclass
class DatabaseConfig:
    """Report store database settings"""
    path: Path = field(default_factory=lambda: Path("data/database/reports.db"))
    connection_timeout: int = 30


@dataclass
class DirectoryConfig:
    """Directory structure configuration"""
    logs_dir: Path = field(default_factory=lambda: Path("data/logs"))


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: LogLevel = LogLevel.INFO
    format: str = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    date_format: str = "%Y-%m-%d %H:%M:%S"
    file_rotation_size: int = 10 * 1024 * 1024  # 10MB
    file_retention_count: int = 5
    enable_console: bool = True
    enable_file: bool = False


@dataclass
class ReportingConfig:
    """Report engine settings"""
    # Macro reference syntax used when the macro table does not override it
    macro_prefix: str = "$"
    macro_suffix: str = ""
    # Renderer ids registered at startup, see RENDERER_FACTORIES
    renderers: List[str] = field(default_factory=lambda: ["csv", "tsv", "json", "text"])
    # Population source: a CSV file, or a table inside the report database
    population_file: Optional[Path] = None
    population_table: str = "subjects"
    subject_id_column: str = "subject_id"


@dataclass
class WebConfig:
    """Web interface configuration"""
    host: str = "0.0.0.0"
    port: int = 8000
    reload: bool = False
    log_level: str = "info"
    cors_origins: List[str] = field(default_factory=lambda: ["*"])


class UnifiedConfig:
    """
    Central configuration management system
    Implements singleton pattern and environment-aware configuration
    Loads from .config.json file with environment variable overrides
    """

    _instance: Optional['UnifiedConfig'] = None
    _initialized: bool = False
    _config_file = Path(".config.json")
    _json_config: Optional[Dict[str, Any]] = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __init__(self):
        if self._initialized:
            return
        self.load()
        self._initialized = True

    def load(self):
        """(Re)load every section from the JSON file and environment"""
        self._load_json_config()

        env_mode = os.getenv('REPORT_ENVIRONMENT') or self._get_config_value('environment', 'mode', default='development')
        try:
            self.environment = Environment(env_mode)
        except ValueError:
            logging.getLogger(__name__).warning(f"Unknown environment '{env_mode}', using development")
            self.environment = Environment.DEVELOPMENT

        self.database = self._load_database_config()
        self.directories = self._load_directory_config()
        self.logging = self._load_logging_config()
        self.reporting = self._load_reporting_config()
        self.web = self._load_web_config()

    def _load_json_config(self):
        """Load configuration from .config.json file"""
        config_file = Path(os.getenv('REPORT_CONFIG_FILE', str(self._config_file)))
        if config_file.exists():
            try:
                with open(config_file, 'r', encoding='utf-8') as f:
                    self._json_config = json.load(f)
                logging.getLogger(__name__).info(f"Loaded configuration from {config_file}")
            except (json.JSONDecodeError, IOError) as e:
                logging.getLogger(__name__).warning(f"Error loading {config_file}: {e}. Using defaults.")
                self._json_config = None
        else:
            logging.getLogger(__name__).debug(f"Config file {config_file} not found. Using defaults.")
            self._json_config = None

    def _get_config_value(self, *keys, default=None):
        """
        Get a value from JSON config using nested keys
        Example: _get_config_value('reporting', 'macro_prefix', default='$')
        """
        if not self._json_config:
            return default

        value = self._json_config
        for key in keys:
            if isinstance(value, dict) and key in value:
                value = value[key]
            else:
                return default

        # Skip documentation keys (keys starting with _)
        if isinstance(value, dict):
            return {k: v for k, v in value.items() if not k.startswith('_')} if value else default

        return value if value is not None else default

    def _load_database_config(self) -> DatabaseConfig:
        """Load database configuration from JSON and environment overrides"""
        db_config = self._get_config_value('database', default={})
        config = DatabaseConfig()
        config.path = Path(os.getenv('REPORT_DATABASE_PATH', db_config.get('path', str(config.path))))
        config.connection_timeout = int(os.getenv('REPORT_DATABASE_TIMEOUT',
                                                  str(db_config.get('connection_timeout', 30))))
        return config

    def _load_directory_config(self) -> DirectoryConfig:
        """Load directory configuration from JSON and environment overrides"""
        dirs_config = self._get_config_value('directories', default={})
        config = DirectoryConfig()
        config.logs_dir = Path(os.getenv('REPORT_LOGS_DIR', dirs_config.get('logs_dir', 'data/logs')))
        return config

    def _load_logging_config(self) -> LoggingConfig:
        """Load logging configuration from JSON and environment overrides"""
        log_config = self._get_config_value('logging', default={})
        config = LoggingConfig()

        log_level = os.getenv('REPORT_LOG_LEVEL', log_config.get('level', 'INFO'))
        try:
            config.level = LogLevel(log_level.upper())
        except ValueError:
            config.level = LogLevel.INFO

        config.format = os.getenv('REPORT_LOG_FORMAT', log_config.get('format', config.format))
        config.date_format = log_config.get('date_format', config.date_format)
        rotation_mb = log_config.get('file_rotation_size_mb', 10)
        config.file_rotation_size = rotation_mb * 1024 * 1024
        config.file_retention_count = log_config.get('file_retention_count', 5)
        config.enable_console = log_config.get('enable_console', True)
        config.enable_file = log_config.get('enable_file', False)

        # Adjust for environment
        if self.environment == Environment.DEVELOPMENT and 'REPORT_LOG_LEVEL' not in os.environ:
            config.level = LogLevel.DEBUG
        elif self.environment == Environment.PRODUCTION:
            config.enable_console = False
            config.enable_file = True

        return config

    def _load_reporting_config(self) -> ReportingConfig:
        """Load report engine configuration from JSON and environment overrides"""
        rep_config = self._get_config_value('reporting', default={})
        config = ReportingConfig()

        config.macro_prefix = os.getenv('REPORT_MACRO_PREFIX', rep_config.get('macro_prefix', config.macro_prefix))
        config.macro_suffix = os.getenv('REPORT_MACRO_SUFFIX', rep_config.get('macro_suffix', config.macro_suffix))

        renderers_env = os.getenv('REPORT_RENDERERS')
        if renderers_env:
            config.renderers = [r.strip() for r in renderers_env.split(',') if r.strip()]
        else:
            config.renderers = list(rep_config.get('renderers', config.renderers))

        population_file = os.getenv('REPORT_POPULATION_FILE', rep_config.get('population_file'))
        config.population_file = Path(population_file) if population_file else None
        config.population_table = rep_config.get('population_table', config.population_table)
        config.subject_id_column = rep_config.get('subject_id_column', config.subject_id_column)
        return config

    def _load_web_config(self) -> WebConfig:
        """Load web configuration from JSON and environment overrides"""
        web_config = self._get_config_value('web', default={})
        config = WebConfig()
        config.host = os.getenv('REPORT_WEB_HOST', web_config.get('host', config.host))
        config.port = int(os.getenv('REPORT_WEB_PORT', str(web_config.get('port', config.port))))
        config.reload = web_config.get('reload', self.environment == Environment.DEVELOPMENT)
        config.log_level = web_config.get('log_level', config.log_level)
        config.cors_origins = web_config.get('cors_origins', config.cors_origins)
        return config

    def is_development(self) -> bool:
        """Check if running in development mode"""
        return self.environment == Environment.DEVELOPMENT

    def is_production(self) -> bool:
        """Check if running in production mode"""
        return self.environment == Environment.PRODUCTION

    def to_dict(self) -> Dict[str, Any]:
        """Convert configuration to dictionary for serialization"""
        return {
            'environment': self.environment.value,
            'database': {
                'path': str(self.database.path),
                'connection_timeout': self.database.connection_timeout
            },
            'directories': {
                'logs_dir': str(self.directories.logs_dir)
            },
            'reporting': {
                'macro_prefix': self.reporting.macro_prefix,
                'macro_suffix': self.reporting.macro_suffix,
                'renderers': list(self.reporting.renderers),
                'population_file': str(self.reporting.population_file) if self.reporting.population_file else None,
                'population_table': self.reporting.population_table
            },
            'web': {
                'host': self.web.host,
                'port': self.web.port,
                'reload': self.web.reload
            }
        }


# Global configuration instance (singleton)
config = UnifiedConfig()


def get_config() -> UnifiedConfig:
    """Get the global configuration instance"""
    return config


def setup_logging():
    """Setup logging configuration based on current config"""
    log_config = config.logging
    root_logger = logging.getLogger()

    logging.basicConfig(
        level=getattr(logging, log_config.level.value),
        format=log_config.format,
        datefmt=log_config.date_format,
        force=True
    )

    if log_config.enable_file:
        config.directories.logs_dir.mkdir(parents=True, exist_ok=True)
        log_file = config.directories.logs_dir / f"reports_{datetime.now().strftime('%Y%m%d')}.log"

        # Only add handler if it doesn't already exist
        existing = any(
            isinstance(handler, logging.handlers.RotatingFileHandler)
            and handler.baseFilename == str(log_file.resolve())
            for handler in root_logger.handlers
        )
        if not existing:
            file_handler = logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=log_config.file_rotation_size,
                backupCount=log_config.file_retention_count
            )
            file_handler.setFormatter(logging.Formatter(log_config.format, log_config.date_format))
            root_logger.addHandler(file_handler)

    if not log_config.enable_console:
        root_logger.handlers = [h for h in root_logger.handlers
                                if isinstance(h, logging.handlers.RotatingFileHandler)]
