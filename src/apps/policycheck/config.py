"""Utilities for loading policycheck configuration profiles."""

from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping

try:  # Python 3.11+
    import tomllib
except ModuleNotFoundError:  # pragma: no cover - fallback for older runtimes.
    import tomli as tomllib  # type: ignore[no-redef]

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from apps.policycheck.utils.errors import PolicyCheckConfigError
from libraries.reconcile.comparator import MatchOptions, ProductMode, UnmatchedPolicy
from libraries.reconcile.headers import DEFAULT_MAX_HEADER_ROWS
from libraries.reconcile.rules import JsonFileStore, RuleRepository

CONFIG_FILENAME = "policycheck.toml"
PROFILE_ENV = "POLICYCHECK_PROFILE"
PROJECT_ROOT_ENV = "POLICYCHECK_PROJECT_ROOT"


@dataclass(frozen=True)
class ProfileContext:
    """Container describing a resolved configuration profile."""

    name: str
    data: Mapping[str, Any]
    sources: tuple[Path, ...]


class ReconcileSettings(BaseModel):
    """Validated settings taken from a profile table."""

    model_config = ConfigDict(extra="ignore")

    on_unmatched: UnmatchedPolicy = UnmatchedPolicy.SKIP
    product_mode: ProductMode = ProductMode.EXACT_THEN_RULES
    status_case_sensitive: bool = True
    header_scan_limit: int = Field(default=DEFAULT_MAX_HEADER_ROWS, ge=1)
    rules_path: Path | None = None

    def match_options(self) -> MatchOptions:
        return MatchOptions(
            on_unmatched=self.on_unmatched,
            product_mode=self.product_mode,
            status_case_sensitive=self.status_case_sensitive,
        )

    def rule_repository(self, override: Path | None = None) -> RuleRepository:
        """Return a repository backed by *override*, the profile path or the default."""

        path = override or self.rules_path
        return RuleRepository(JsonFileStore(path.expanduser() if path else None))


def load_profile(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
) -> ProfileContext:
    """Load and merge policycheck configuration before selecting *profile*.

    Configuration is read from user, project, then workspace locations; later
    files deep-merge over earlier ones.  When *profile* is ``None`` the
    ``POLICYCHECK_PROFILE`` environment variable is consulted, then the
    highest precedence ``default_profile`` value, and finally ``"default"``.
    """

    merged: Dict[str, Any] = {}
    sources = _iter_config_paths(workspace=workspace, project_root=project_root)
    for path in sources:
        merged = _deep_merge(merged, _load_toml(path))

    profiles = merged.get("profiles", {})
    if not isinstance(profiles, Mapping):
        raise PolicyCheckConfigError(
            "The 'profiles' table must contain mappings of settings"
        )

    name = profile or os.environ.get(PROFILE_ENV) or merged.get("default_profile")
    if not isinstance(name, str) or not name:
        name = "default"

    data = profiles.get(name, {} if name == "default" else None)
    if data is None:
        available = ", ".join(sorted(str(key) for key in profiles)) or "<none>"
        raise PolicyCheckConfigError(
            f"Profile '{name}' was not found. Available profiles: {available}."
        )
    if not isinstance(data, Mapping):
        raise PolicyCheckConfigError(
            f"Profile '{name}' must be a mapping of configuration values"
        )
    return ProfileContext(name=name, data=dict(data), sources=tuple(sources))


def load_settings(
    *,
    profile: str | None = None,
    workspace: Path | None = None,
    project_root: Path | None = None,
) -> ReconcileSettings:
    """Resolve *profile* and validate it into :class:`ReconcileSettings`."""

    context = load_profile(
        profile=profile, workspace=workspace, project_root=project_root
    )
    try:
        return ReconcileSettings.model_validate(dict(context.data))
    except ValidationError as exc:
        raise PolicyCheckConfigError(
            f"Profile '{context.name}' has invalid settings: {exc}"
        ) from exc


def _iter_config_paths(
    *, workspace: Path | None, project_root: Path | None
) -> list[Path]:
    """Return existing configuration files in precedence order."""

    home = Path(os.path.expanduser("~"))
    candidates: list[Path] = []
    xdg_config = os.environ.get("XDG_CONFIG_HOME")
    if xdg_config:
        candidates.append(Path(xdg_config) / "policycheck" / CONFIG_FILENAME)
    candidates += [
        home / ".config" / "policycheck" / CONFIG_FILENAME,
        home / CONFIG_FILENAME,
    ]

    root = project_root or Path(os.environ.get(PROJECT_ROOT_ENV) or Path.cwd())
    candidates += [root / CONFIG_FILENAME, root / ".policycheck" / CONFIG_FILENAME]
    if workspace is not None:
        candidates.append(workspace / CONFIG_FILENAME)

    return [path for path in dict.fromkeys(candidates) if path.exists()]


def _load_toml(path: Path) -> Dict[str, Any]:
    try:
        with path.open("rb") as handle:
            return tomllib.load(handle)
    except OSError as exc:  # pragma: no cover - filesystem errors are rare.
        raise PolicyCheckConfigError(
            f"Unable to read configuration file '{path}': {exc}"
        ) from exc
    except tomllib.TOMLDecodeError as exc:
        raise PolicyCheckConfigError(
            f"Configuration file '{path}' is not valid TOML: {exc}"
        ) from exc


def _deep_merge(base: Dict[str, Any], new: Mapping[str, Any]) -> Dict[str, Any]:
    merged: Dict[str, Any] = {**base}
    for key, value in new.items():
        if isinstance(merged.get(key), Mapping) and isinstance(value, Mapping):
            merged[key] = _deep_merge(dict(merged[key]), value)
        else:
            merged[key] = value
    return merged
