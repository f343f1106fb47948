"""Configuration: table and column names, database location, delete mode.

Settings come from (lowest to highest precedence) the model defaults, an
optional YAML file, and CLOSURETREE_* environment variables. A .env file is
loaded first so secrets and paths can stay out of the shell profile.
"""

import os
import re
from pathlib import Path
from typing import Any

import yaml
from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, field_validator

_IDENTIFIER = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")

_ENV_PREFIX = "CLOSURETREE_"

# env var suffix -> settings field
_ENV_FIELDS = {
    "DATABASE_PATH": "database_path",
    "ENTITY_TABLE": "entity_table",
    "CLOSURE_TABLE": "closure_table",
    "CLOSURE_SUFFIX": "closure_suffix",
    "POSITION_COLUMN": "position_column",
    "SOFT_DELETE": "soft_delete",
}


def _check_identifier(value: str) -> str:
    if not _IDENTIFIER.match(value):
        raise ValueError(f"not a valid SQL identifier: {value!r}")
    return value


class ClosureColumns(BaseModel):
    """Column names of the closure table. Semantics are fixed, names are not."""

    ancestor: str = "ancestor"
    descendant: str = "descendant"
    depth: str = "depth"

    @field_validator("ancestor", "descendant", "depth")
    @classmethod
    def _identifier(cls, value: str) -> str:
        return _check_identifier(value)


class Settings(BaseModel):
    database_path: str = "closuretree.db"
    entity_table: str = "entities"
    closure_table: str | None = None
    closure_suffix: str = "_closure"
    position_column: str = "position"
    columns: ClosureColumns = Field(default_factory=ClosureColumns)
    soft_delete: bool = True

    @field_validator("entity_table", "position_column")
    @classmethod
    def _identifier(cls, value: str) -> str:
        return _check_identifier(value)

    @field_validator("closure_table")
    @classmethod
    def _optional_identifier(cls, value: str | None) -> str | None:
        return None if value is None else _check_identifier(value)

    @field_validator("closure_suffix")
    @classmethod
    def _suffix(cls, value: str) -> str:
        if value and not re.match(r"^[A-Za-z0-9_]+$", value):
            raise ValueError(f"not a valid table-name suffix: {value!r}")
        return value

    @property
    def closure_table_name(self) -> str:
        """Explicit closure_table if configured, else entity table + suffix."""
        return self.closure_table or f"{self.entity_table}{self.closure_suffix}"


def load_settings(
    path: str | Path | None = None, env_file: str | Path | None = None
) -> Settings:
    """Build Settings from an optional YAML file and the environment.

    Raises SettingsError if the file is unreadable or any value is invalid.
    """
    load_dotenv(env_file)

    data: dict[str, Any] = {}
    if path is not None:
        try:
            with open(path, encoding="utf-8") as fh:
                loaded = yaml.safe_load(fh)
        except (OSError, yaml.YAMLError) as e:
            raise SettingsError(f"Cannot read settings file {path}: {e}") from e
        if loaded is not None and not isinstance(loaded, dict):
            raise SettingsError(f"Settings file {path} must contain a mapping")
        data.update(loaded or {})

    for suffix, field_name in _ENV_FIELDS.items():
        value = os.environ.get(_ENV_PREFIX + suffix)
        if value is not None:
            data[field_name] = value

    try:
        return Settings.model_validate(data)
    except ValidationError as e:
        raise SettingsError(str(e)) from e


class SettingsError(Exception):
    pass
