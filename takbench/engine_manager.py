"""
Engine Manager
Engine configurations, command-line engine specs and a JSON engine registry
"""

import json
import logging
import shlex
import shutil
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence

from .schedule import ConfigurationError, TimeControl

logger = logging.getLogger(__name__)


@dataclass
class EngineConfig:
    """Engine configuration"""
    name: str
    path: str
    args: List[str] = None
    enabled: bool = True
    time_control: Optional[str] = None  # Overrides the tournament time control, e.g. "60+0.6"
    options: Dict = None

    def __post_init__(self):
        if self.args is None:
            self.args = []
        if self.options is None:
            self.options = {}
        if self.time_control is not None:
            TimeControl.parse(self.time_control)

    @property
    def command(self) -> List[str]:
        return [self.path] + list(self.args)

    def get_time_control(self) -> Optional[TimeControl]:
        return TimeControl.parse(self.time_control) if self.time_control else None


def parse_engine_spec(tokens: Sequence[str], defaults: Sequence[str] = ()) -> EngineConfig:
    """
    Build an engine configuration from `key=value` tokens

    Recognized keys: path, name, arg, tc and option.<Name>. Tokens in
    `defaults` (from --all-engines) apply unless the engine overrides them.

    Raises:
        ConfigurationError: unknown key, bad value or missing path
    """
    settings: Dict[str, str] = {}
    options: Dict[str, str] = {}
    for token in list(defaults) + list(tokens):
        key, sep, value = token.partition("=")
        if not sep:
            raise ConfigurationError(f"Engine setting must be key=value, got {token!r}")
        if key.startswith("option."):
            option_name = key[len("option."):]
            if not option_name:
                raise ConfigurationError(f"Empty option name in {token!r}")
            options[option_name] = value
        elif key in ("path", "name", "arg", "tc"):
            settings[key] = value
        else:
            raise ConfigurationError(f"Unknown engine setting {key!r}")

    if not settings.get("path"):
        raise ConfigurationError(f"Engine spec without a path: {' '.join(tokens)}")

    path = settings["path"]
    return EngineConfig(
        name=settings.get("name") or Path(path).stem,
        path=path,
        args=shlex.split(settings.get("arg", "")),
        time_control=settings.get("tc"),
        options=options,
    )


def resolve_engine_path(path: str) -> Optional[str]:
    """Existing file path, or the executable found on PATH"""
    if Path(path).exists():
        return path
    return shutil.which(path)


class EngineManager:
    """
    Manages engine registry and configurations

    Features:
    - JSON configuration persistence
    - Enable/disable and option updates
    - Engine identification via the TEI handshake
    """

    def __init__(self, config_file: str = "config/engines.json"):
        """
        Initialize Engine Manager

        Args:
            config_file: Path to engine configuration file
        """
        self.config_file = Path(config_file)
        self.engines: Dict[str, EngineConfig] = {}
        self.load_config()

    def load_config(self):
        """Load engine configurations from file"""
        if not self.config_file.exists():
            logger.info(f"No engine config at {self.config_file}, starting empty")
            self.engines = {}
            return

        try:
            with open(self.config_file, 'r') as f:
                data = json.load(f)
            self.engines = {
                name: EngineConfig(**config)
                for name, config in data.items()
            }
        except (OSError, ValueError, TypeError) as e:
            raise ConfigurationError(f"Failed to load engine config {self.config_file}: {e}")

        logger.info(f"Loaded {len(self.engines)} engine configurations")

    def save_config(self):
        """Save engine configurations to file"""
        self.config_file.parent.mkdir(parents=True, exist_ok=True)
        data = {
            name: asdict(config)
            for name, config in self.engines.items()
        }
        with open(self.config_file, 'w') as f:
            json.dump(data, f, indent=2)
        logger.info(f"Saved {len(self.engines)} engine configurations")

    def add_engine(self, config: EngineConfig, save: bool = True) -> bool:
        """
        Add or update engine configuration

        Args:
            config: Engine configuration
            save: Save config after adding

        Returns:
            True if the engine executable was found and the engine added
        """
        if resolve_engine_path(config.path) is None:
            logger.error(f"Engine path does not exist: {config.path}")
            return False

        self.engines[config.name] = config
        if save:
            self.save_config()

        logger.info(f"Added engine: {config.name} at {config.path}")
        return True

    def remove_engine(self, name: str) -> bool:
        """Remove engine from registry"""
        if name in self.engines:
            del self.engines[name]
            self.save_config()
            logger.info(f"Removed engine: {name}")
            return True
        return False

    def get_engine(self, name: str) -> Optional[EngineConfig]:
        """Get engine configuration by name"""
        return self.engines.get(name)

    def list_engines(self, enabled_only: bool = False) -> List[EngineConfig]:
        """
        Get list of engine configurations

        Args:
            enabled_only: Only return enabled engines

        Returns:
            List of engine configurations
        """
        engines = list(self.engines.values())

        if enabled_only:
            engines = [e for e in engines if e.enabled]

        return engines

    def enable_engine(self, name: str, enabled: bool = True):
        """Enable or disable engine"""
        if name in self.engines:
            self.engines[name].enabled = enabled
            self.save_config()
            logger.info(f"Engine {name} {'enabled' if enabled else 'disabled'}")

    def update_engine_options(self, name: str, options: Dict):
        """Update TEI options for engine"""
        if name in self.engines:
            self.engines[name].options.update(options)
            self.save_config()
            logger.info(f"Updated options for {name}")

    def get_engine_info(self, name: str, startup_timeout: float = 10.0) -> Optional[Dict]:
        """
        Start the engine, run the handshake and report what it declared

        Args:
            name: Engine name
            startup_timeout: Seconds allowed for the handshake

        Returns:
            Dict with engine info, or None if the engine is unknown
        """
        from .tei_interface import TEIEngine

        config = self.get_engine(name)
        if not config:
            return None

        with TEIEngine(config, startup_timeout=startup_timeout) as engine:
            return {
                "name": engine.engine_name,
                "author": engine.author,
                "path": config.path,
                "options": {
                    option_name: {"type": option.type.value, "default": option.default}
                    for option_name, option in engine.options.items()
                },
            }
