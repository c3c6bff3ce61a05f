"""
Configuration System

Resolves the gate configuration once per process from:
1. Default values
2. Configuration file (~/.claude/workflow-config.yaml, JSON is accepted too)
3. Environment variables (highest priority)
"""

from typing import Any, Dict, List, Optional
from pathlib import Path
import os
import logging
import yaml
from dataclasses import dataclass, field

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_CONFIG_FILE = "~/.claude/workflow-config.yaml"

CODE_EXTENSIONS = [
    '.ts', '.tsx', '.js', '.jsx', '.mjs', '.cjs',
    '.py', '.pyw',
    '.go', '.rs',
    '.java', '.kt', '.kts',
    '.swift', '.m', '.mm',
    '.c', '.cpp', '.cc', '.cxx', '.h', '.hpp',
    '.rb', '.php',
    '.sh', '.bash', '.zsh',
    '.sql',
    '.vue', '.svelte',
]


def _env_flag(value: str) -> bool:
    return value.strip().lower() in ("1", "true", "yes", "on")


@dataclass
class MainAgentLimitsConfig:
    """Restriction on the orchestrating agent editing code directly"""
    enabled: bool = False
    test_mode: bool = False
    # Set when the hook runs inside a delegated sub-agent
    in_subagent: bool = False


@dataclass
class EventLogConfig:
    """Event log / violation tracker configuration"""
    warning_threshold_edits: int = 1
    stale_timeout_seconds: int = 3600  # 1 hour
    max_log_size_bytes: int = 1024 * 1024
    max_events_to_keep: int = 500


@dataclass
class PathsConfig:
    """Well-known per-user file locations"""
    state_file: str = "~/.claude/workflow-state/current.json"
    events_file: str = "~/.claude/tests/workflow/results/workflow-events.jsonl"
    violations_file: str = "~/.claude/tests/workflow/results/workflow-violations.jsonl"
    changes_dir: str = "~/.claude/openspec/changes"

    def resolve(self, name: str) -> Path:
        """Expand a configured path by attribute name"""
        return Path(getattr(self, name)).expanduser()


@dataclass
class TaskSyncConfig:
    """Checklist document discovery"""
    filename: str = "tasks.md"
    search_dirs: List[str] = field(default_factory=lambda: ["openspec", ".claude", "."])


@dataclass
class CompletionConfig:
    """Closing checklist configuration"""
    auto_open_deliverable: bool = False
    command_timeout_seconds: float = 5.0


@dataclass
class NotificationConfig:
    """Desktop notification configuration"""
    enabled: bool = True
    title: str = "Workflow"


@dataclass
class LoggingConfig:
    """Logging configuration"""
    level: str = "WARNING"
    debug: bool = False


@dataclass
class GateConfig:
    """Complete workflow-gate configuration"""
    main_agent_limits: MainAgentLimitsConfig = field(default_factory=MainAgentLimitsConfig)
    code_extensions: List[str] = field(default_factory=lambda: list(CODE_EXTENSIONS))
    event_log: EventLogConfig = field(default_factory=EventLogConfig)
    paths: PathsConfig = field(default_factory=PathsConfig)
    task_sync: TaskSyncConfig = field(default_factory=TaskSyncConfig)
    completion: CompletionConfig = field(default_factory=CompletionConfig)
    notification: NotificationConfig = field(default_factory=NotificationConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
    stdin_timeout_seconds: float = 1.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "GateConfig":
        """
        Create configuration from dictionary

        Raises:
            ConfigurationError: If the data is not a mapping or a section
                contains unknown keys
        """
        if not isinstance(data, dict):
            raise ConfigurationError(
                f"Configuration must be a mapping, got {type(data).__name__}"
            )
        config = cls()

        # camelCase section written by the earlier JSON config format
        legacy = data.get("mainAgentLimits")
        if isinstance(legacy, dict) and "main_agent_limits" not in data:
            data = dict(data)
            data["main_agent_limits"] = {
                "enabled": bool(legacy.get("enabled", False)),
                "test_mode": bool(legacy.get("testMode", False)),
            }

        try:
            if "main_agent_limits" in data:
                config.main_agent_limits = MainAgentLimitsConfig(**data["main_agent_limits"])
            if "code_extensions" in data:
                config.code_extensions = [ext.lower() for ext in data["code_extensions"]]
            if "event_log" in data:
                config.event_log = EventLogConfig(**data["event_log"])
            if "paths" in data:
                config.paths = PathsConfig(**data["paths"])
            if "task_sync" in data:
                config.task_sync = TaskSyncConfig(**data["task_sync"])
            if "completion" in data:
                config.completion = CompletionConfig(**data["completion"])
            if "notification" in data:
                config.notification = NotificationConfig(**data["notification"])
            if "logging" in data:
                config.logging = LoggingConfig(**data["logging"])
        except TypeError as e:
            raise ConfigurationError(f"Invalid configuration: {e}") from e

        if "stdin_timeout_seconds" in data:
            config.stdin_timeout_seconds = float(data["stdin_timeout_seconds"])

        return config

    def is_code_file(self, file_path: Optional[str]) -> bool:
        """Whether the path has an extension in the code-file set"""
        if not file_path:
            return False
        return Path(file_path).suffix.lower() in self.code_extensions


class ConfigManager:
    """
    Configuration manager with multiple source support

    Load priority (highest to lowest):
    1. Environment variables
    2. Configuration file
    3. Defaults
    """

    def __init__(self, config_file: Optional[Path] = None, environ: Optional[Dict[str, str]] = None):
        """
        Initialize configuration manager

        Args:
            config_file: Optional path to configuration file
            environ: Environment mapping (defaults to os.environ)
        """
        self.environ = os.environ if environ is None else environ
        default_file = self.environ.get("WORKFLOW_GATE_CONFIG", DEFAULT_CONFIG_FILE)
        self.config_file = Path(config_file or default_file).expanduser()
        self._config = self._load_config()

    def _load_config(self) -> GateConfig:
        """Load configuration from all sources"""
        config = GateConfig()

        if self.config_file.exists():
            try:
                with open(self.config_file, 'r') as f:
                    file_data = yaml.safe_load(f)
                if file_data is not None:
                    config = GateConfig.from_dict(file_data)
            except (OSError, yaml.YAMLError, ConfigurationError, ValueError) as e:
                logger.warning("Failed to load config file %s: %s", self.config_file, e)

        return self._apply_env_overrides(config)

    def _apply_env_overrides(self, config: GateConfig) -> GateConfig:
        """
        Apply environment variable overrides

        Args:
            config: Base configuration

        Returns:
            Configuration with environment overrides applied
        """
        env = self.environ

        if state_file := env.get("WORKFLOW_GATE_STATE_FILE"):
            config.paths.state_file = state_file
        if events_file := env.get("WORKFLOW_GATE_EVENTS_FILE"):
            config.paths.events_file = events_file
        if violations_file := env.get("WORKFLOW_GATE_VIOLATIONS_FILE"):
            config.paths.violations_file = violations_file
        if changes_dir := env.get("WORKFLOW_GATE_CHANGES_DIR"):
            config.paths.changes_dir = changes_dir

        if enabled := env.get("WORKFLOW_GATE_MAIN_AGENT_LIMITS"):
            config.main_agent_limits.enabled = _env_flag(enabled)
        if test_mode := env.get("WORKFLOW_GATE_TEST_MODE"):
            config.main_agent_limits.test_mode = _env_flag(test_mode)
        if env.get("CLAUDE_IN_SUBAGENT") == "true":
            config.main_agent_limits.in_subagent = True

        if log_level := env.get("WORKFLOW_GATE_LOG_LEVEL"):
            config.logging.level = log_level
        if env.get("DEBUG_HOOKS"):
            config.logging.debug = True
            config.logging.level = "DEBUG"

        return config

    def get(self) -> GateConfig:
        """Get the resolved configuration"""
        return self._config

    def validate(self) -> tuple[bool, list[str]]:
        """
        Validate configuration

        Returns:
            Tuple of (is_valid, errors)
        """
        errors = []
        cfg = self._config

        if cfg.event_log.warning_threshold_edits < 0:
            errors.append("Warning threshold must be non-negative")
        if cfg.event_log.stale_timeout_seconds < 1:
            errors.append("Stale timeout must be at least 1 second")
        if cfg.event_log.max_events_to_keep < 1:
            errors.append("Max events to keep must be at least 1")
        if cfg.event_log.max_log_size_bytes < 1:
            errors.append("Max log size must be positive")
        if cfg.stdin_timeout_seconds <= 0:
            errors.append("Stdin timeout must be positive")

        for ext in cfg.code_extensions:
            if not ext.startswith("."):
                errors.append(f"Code extension must start with '.': {ext}")

        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if cfg.logging.level.upper() not in valid_levels:
            errors.append(f"Logging level must be one of: {', '.join(valid_levels)}")

        return len(errors) == 0, errors


def load_config(config_file: Optional[Path] = None) -> GateConfig:
    """Resolve the configuration for this process"""
    return ConfigManager(config_file).get()
