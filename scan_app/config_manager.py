# scan_app/config_manager.py

import os
import logging
import argparse
from pathlib import Path
from typing import Optional, List, Dict, Any

import platformdirs
import pytomlpp
from dotenv import load_dotenv, find_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from .enums import CollectionType
from .exceptions import ConfigError
from .models import Collection

log = logging.getLogger(__name__)
APP_NAME = "mediascan"
DEFAULT_CONFIG_FILENAME = "config.toml"
CONFIG_ENV_VAR = "MEDIASCAN_CONFIG"

class CollectionSettings(BaseModel):
    name: str = Field(description="Display name of the collection.")
    type: CollectionType = Field(description="'movies' or 'shows' ('tvshows' and 'tvseries' are accepted too).")
    collection_id: int = Field(ge=0, description="Stable numeric id, used in served image paths.")
    directory: str = Field(description="Root directory holding one subdirectory per movie or show.")

    @field_validator('type', mode='before')
    @classmethod
    def check_type(cls, v: Any) -> CollectionType:
        if isinstance(v, CollectionType):
            return v
        if not isinstance(v, str):
            raise ValueError("type must be a string")
        return CollectionType.from_config(v)

    @field_validator('directory', mode='before')
    @classmethod
    def check_directory(cls, v: Any) -> str:
        if not isinstance(v, str) or not v.strip():
            raise ValueError("directory must be a non-empty string")
        return str(Path(v.strip()).expanduser())


class ScanSettings(BaseModel):
    max_concurrent_scans: int = Field(default=4, ge=1, description="Number of item directories scanned concurrently.")
    probe_video: bool = Field(default=True, description="Read audio/video/subtitle track info from new or changed video files (requires libmediainfo).")
    only_nfo: bool = Field(default=False, description="Only re-read NFO files, leave videos, images and subtitles as stored.")
    skip_unchanged: bool = Field(default=True, description="Skip directories with nothing newer than the stored item.")


class StoreSettings(BaseModel):
    backend: str = Field(default='diskcache', description="Item store backend: 'diskcache' or 'memory'.")
    directory: Optional[str] = Field(default=None, description="Item store directory (default: user cache dir).")

    @field_validator('backend', mode='before')
    @classmethod
    def check_backend(cls, v: Any) -> str:
        if v is None:
            return 'diskcache'
        if not isinstance(v, str) or v.lower() not in ('diskcache', 'memory'):
            raise ValueError("backend must be 'diskcache' or 'memory'")
        return v.lower()


class RootConfigModel(BaseModel):
    log_level: Optional[str] = Field(default='INFO', description="Logging level: DEBUG, INFO, WARNING, ERROR.")
    log_file: Optional[str] = Field(default=None, description="Log file. A bare or relative name (e.g., mediascan.log) goes in the user log directory.")
    scan: ScanSettings = Field(default_factory=ScanSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    collections: List[CollectionSettings] = Field(default_factory=list)

    @field_validator('log_level', mode='before')
    @classmethod
    def check_log_level(cls, v: Any) -> Optional[str]:
        if v is not None and isinstance(v, str) and v.upper() not in ['DEBUG', 'INFO', 'WARNING', 'ERROR']:
            raise ValueError("log_level must be one of DEBUG, INFO, WARNING, ERROR")
        return v.upper() if isinstance(v, str) else None

    @model_validator(mode='after')
    def check_unique_collections(self) -> 'RootConfigModel':
        ids = [c.collection_id for c in self.collections]
        if len(ids) != len(set(ids)):
            raise ValueError("collection_id values must be unique")
        names = [c.name.lower() for c in self.collections]
        if len(names) != len(set(names)):
            raise ValueError("collection names must be unique")
        return self


def _toml_value(value: Any) -> str:
    if isinstance(value, bool):
        return str(value).lower()
    if isinstance(value, str):
        escaped = value.replace('\\', '\\\\').replace('"', '\\"')
        return f'"{escaped}"'
    return str(value)

def _section_lines(model: BaseModel, indent: str = "") -> List[str]:
    lines = []
    for key, field_info in type(model).model_fields.items():
        if isinstance(getattr(model, key), (BaseModel, list)):
            continue
        if field_info.description:
            lines.append(f"{indent}# {field_info.description}")
        value = getattr(model, key)
        if value is None:
            lines.append(f"{indent}# {key} = (not set)")
        else:
            lines.append(f"{indent}{key} = {_toml_value(value)}")
    return lines

def generate_default_toml_content() -> str:
    defaults = RootConfigModel()
    content_lines = ["# mediascan Default Configuration File", ""]
    content_lines.extend(_section_lines(defaults))
    content_lines.append("\n[scan]")
    content_lines.extend(_section_lines(defaults.scan, "  "))
    content_lines.append("\n[store]")
    content_lines.extend(_section_lines(defaults.store, "  "))
    content_lines.append("\n# One [[collections]] table per library root, e.g.:")
    content_lines.append("# [[collections]]")
    content_lines.append("# name = \"Movies\"")
    content_lines.append("# type = \"movies\"")
    content_lines.append("# collection_id = 1")
    content_lines.append("# directory = \"/srv/media/movies\"")
    return "\n".join(content_lines) + "\n"


def user_config_path() -> Path:
    return Path(platformdirs.user_config_dir(APP_NAME, ensure_exists=False)) / DEFAULT_CONFIG_FILENAME

def default_store_directory() -> Path:
    return Path(platformdirs.user_cache_dir(APP_NAME)) / "items"

def default_log_directory() -> Path:
    return Path(platformdirs.user_log_dir(APP_NAME))


class ConfigManager:
    def __init__(self, config_path_override: Optional[Path] = None):
        self._load_env()
        self.config_path = self._resolve_config_path(config_path_override)
        self._raw_toml_content_str: Optional[str] = None
        self.model = self._load_config()
        log.debug(f"Config path used: {self.config_path}")

    def _load_env(self):
        env_path = find_dotenv(usecwd=True)
        if env_path:
            log.debug(f"Loading environment variables from: {env_path}")
            load_dotenv(dotenv_path=env_path)

    def _resolve_config_path(self, config_path_override: Optional[Path]) -> Path:
        if config_path_override:
            p = Path(config_path_override).expanduser().resolve()
            log.debug(f"Using explicit config path target: {p}")
            return p

        env_value = os.getenv(CONFIG_ENV_VAR)
        if env_value:
            p = Path(env_value).expanduser().resolve()
            log.debug(f"Using config path from {CONFIG_ENV_VAR}: {p}")
            return p

        user_path = user_config_path()
        if user_path.is_file():
            log.debug(f"Found config file in user config directory: {user_path}")
            return user_path.resolve()

        cwd_path = Path.cwd() / DEFAULT_CONFIG_FILENAME
        log.debug(f"Using config path in current directory: {cwd_path}")
        return cwd_path.resolve()

    def _load_config(self) -> RootConfigModel:
        if not self.config_path.is_file():
            log.warning(f"Config file not found at '{self.config_path}'. Using internal defaults.")
            self._raw_toml_content_str = "# Config file not found.\n"
            return RootConfigModel()
        try:
            self._raw_toml_content_str = self.config_path.read_text(encoding='utf-8')
            cfg_dict = pytomlpp.loads(self._raw_toml_content_str)
            log.info(f"Loaded configuration from '{self.config_path}'")
        except pytomlpp.DecodeError as e_toml:
            raise ConfigError(f"Failed to parse TOML config '{self.config_path}': {e_toml}") from e_toml
        except OSError as e_os:
            raise ConfigError(f"Failed to read config file '{self.config_path}': {e_os}") from e_os

        try:
            validated = RootConfigModel.model_validate(cfg_dict)
            log.debug("Config validation successful.")
            return validated
        except ValidationError as e_val:
            error_msgs = [f"  - Field `{' -> '.join(map(str, err['loc']))}`: {err['msg']}" for err in e_val.errors()]
            error_summary = f"Config file '{self.config_path}' validation failed:\n" + "\n".join(error_msgs)
            log.error(error_summary)
            raise ConfigError(error_summary) from e_val

    def get_raw_toml_content(self) -> Optional[str]:
        return self._raw_toml_content_str

    def get_value(self, key: str, command_line_value: Any = None, default_value: Any = None) -> Any:
        """Command line beats the [scan] section, which beats top-level keys, which beat default_value."""
        if command_line_value is not None:
            return command_line_value
        if key in ScanSettings.model_fields:
            return getattr(self.model.scan, key)
        if key in RootConfigModel.model_fields:
            value = getattr(self.model, key)
            if value is not None:
                return value
        return default_value

    def get_collections(self) -> List[Collection]:
        return [
            Collection(name=c.name, type=c.type, collection_id=c.collection_id, directory=Path(c.directory))
            for c in self.model.collections
        ]

    def store_directory(self) -> Path:
        if self.model.store.directory:
            return Path(self.model.store.directory).expanduser().resolve()
        return default_store_directory()

    def log_file_path(self) -> Optional[Path]:
        if not self.model.log_file:
            return None
        path = Path(self.model.log_file).expanduser()
        return path if path.is_absolute() else default_log_directory() / path

    def as_dict(self) -> Dict[str, Any]:
        return self.model.model_dump(mode='json', exclude_none=True)


class ConfigHelper:
    def __init__(self, config_manager: ConfigManager, args_ns: argparse.Namespace):
        self.manager = config_manager
        self.args = args_ns

    def __call__(self, key: str, default_value: Any = None, arg_value: Any = None) -> Any:
        cmd_line_val = arg_value if arg_value is not None else getattr(self.args, key, None)
        return self.manager.get_value(key, cmd_line_val, default_value)
