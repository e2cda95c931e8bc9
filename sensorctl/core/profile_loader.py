"""Profile loading and validation for YAML-based deployment profiles."""

from __future__ import annotations

import json
import logging
import os
from dataclasses import dataclass
from importlib import resources
from importlib.resources.abc import Traversable
from pathlib import Path
from typing import Any

import yaml
from jsonschema import ValidationError, validators

from sensorctl.core.errors import ProfileLoadError, ProfileSelectionError, ProfileValidationError
from sensorctl.core.model import Profile, RetryPolicy, TimeoutPolicy, TransportSpec

DEFAULT_PROFILE_ID = "esp32_serial"
PROFILE_ENV_VAR = "SENSORCTL_PROFILE"
LOGGER = logging.getLogger(__name__)


class UniqueKeyLoader(yaml.SafeLoader):
    """YAML loader that rejects duplicate mapping keys."""


def _construct_mapping(loader: UniqueKeyLoader, node: yaml.Node, deep: bool = False) -> dict[str, Any]:
    mapping: dict[str, Any] = {}
    for key_node, value_node in node.value:
        key = loader.construct_object(key_node, deep=deep)
        if key in mapping:
            raise ProfileValidationError(f"Duplicate key '{key}' in YAML document")
        mapping[key] = loader.construct_object(value_node, deep=deep)
    return mapping


UniqueKeyLoader.add_constructor(
    yaml.resolver.BaseResolver.DEFAULT_MAPPING_TAG,
    _construct_mapping,
)


@dataclass(frozen=True)
class LoadedProfiles:
    profiles: dict[str, Profile]
    warnings: tuple[str, ...]


def _load_schema_validator() -> Any:
    schema_text = resources.files("sensorctl.schemas").joinpath("profile.schema.json").read_text(
        encoding="utf-8"
    )
    schema = json.loads(schema_text)
    validator_cls = validators.validator_for(schema)
    validator_cls.check_schema(schema)
    return validator_cls(schema)


def _profile_dirs() -> tuple[Path, Path]:
    xdg_config = Path(os.environ.get("XDG_CONFIG_HOME", Path.home() / ".config"))
    xdg_data = Path(os.environ.get("XDG_DATA_HOME", Path.home() / ".local/share"))
    return xdg_config / "sensorctl/profiles", xdg_data / "sensorctl/profiles"


def _read_yaml(path: Path | Traversable) -> dict[str, Any]:
    try:
        content = path.read_text(encoding="utf-8")
    except OSError as exc:
        raise ProfileLoadError(f"Could not read profile file {path}: {exc}") from exc

    try:
        loaded = yaml.load(content, Loader=UniqueKeyLoader)
    except yaml.YAMLError as exc:
        raise ProfileValidationError(f"Invalid YAML in {path}: {exc}") from exc

    if not isinstance(loaded, dict):
        raise ProfileValidationError(f"Profile file {path} must contain a mapping at root")
    return loaded


def _build_profile(doc: dict[str, Any], source: Path | Traversable) -> Profile:
    validator = _load_schema_validator()
    try:
        validator.validate(doc)
    except ValidationError as exc:
        path = ".".join(str(p) for p in exc.path)
        where = f" ({path})" if path else ""
        raise ProfileValidationError(f"Schema validation failed for {source}{where}: {exc.message}") from exc

    transport_doc = doc["transport"]
    transport_type = transport_doc["type"]
    if transport_type == "serial":
        if not transport_doc.get("port"):
            raise ProfileValidationError(f"{doc['id']}.transport.port is required for serial transport")
        transport = TransportSpec(
            type="serial",
            port=str(transport_doc["port"]),
            baudrate=int(transport_doc.get("baudrate", 9600)),
        )
    elif transport_type == "http":
        if not transport_doc.get("base_url"):
            raise ProfileValidationError(f"{doc['id']}.transport.base_url is required for http transport")
        transport = TransportSpec(
            type="http",
            base_url=str(transport_doc["base_url"]).rstrip("/"),
            connect_timeout_s=float(transport_doc.get("connect_timeout_s", 5.0)),
        )
    else:
        raise ProfileValidationError(
            f"Unsupported transport type '{transport_type}' in {source}"
        )

    defaults = TimeoutPolicy()
    timeouts_doc = doc.get("timeouts", {})
    timeouts = TimeoutPolicy(
        handshake_s=float(timeouts_doc.get("handshake_s", defaults.handshake_s)),
        quick_s=float(timeouts_doc.get("quick_s", defaults.quick_s)),
        progressive_s=float(timeouts_doc.get("progressive_s", defaults.progressive_s)),
        idle_gap_s=float(timeouts_doc.get("idle_gap_s", defaults.idle_gap_s)),
    )
    if timeouts.quick_s > timeouts.progressive_s:
        raise ProfileValidationError(f"{doc['id']}.timeouts.quick_s must not exceed progressive_s")
    if timeouts.idle_gap_s > timeouts.progressive_s:
        raise ProfileValidationError(f"{doc['id']}.timeouts.idle_gap_s must not exceed progressive_s")

    retry_defaults = RetryPolicy()
    retry_doc = doc.get("retry", {})
    retry = RetryPolicy(
        max_retries=int(retry_doc.get("max_retries", retry_defaults.max_retries)),
        delay_s=float(retry_doc.get("delay_s", retry_defaults.delay_s)),
    )

    return Profile(
        id=doc["id"],
        name=doc["name"],
        dialect=doc["dialect"],
        transport=transport,
        timeouts=timeouts,
        retry=retry,
        match_threshold=int(doc.get("match_threshold", 65)),
    )


def _iter_packaged_profile_paths() -> list[Traversable]:
    profile_root = resources.files("sensorctl.profiles")
    return [item for item in profile_root.iterdir() if item.name.endswith((".yml", ".yaml"))]


def _iter_user_profile_paths() -> list[Path]:
    paths: list[Path] = []
    for directory in _profile_dirs():
        if not directory.exists() or not directory.is_dir():
            continue
        paths.extend(sorted(p for p in directory.iterdir() if p.suffix in {".yml", ".yaml"}))
    return paths


def load_profiles() -> LoadedProfiles:
    profiles: dict[str, Profile] = {}
    warnings: list[str] = []

    for path in sorted(_iter_packaged_profile_paths(), key=lambda p: p.name):
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        profiles[profile.id] = profile

    for path in _iter_user_profile_paths():
        doc = _read_yaml(path)
        profile = _build_profile(doc, path)
        if profile.id in profiles:
            warning = f"User profile '{profile.id}' overrides packaged profile"
            LOGGER.warning(warning)
            warnings.append(warning)
        profiles[profile.id] = profile

    return LoadedProfiles(profiles=profiles, warnings=tuple(warnings))


def select_profile(loaded: LoadedProfiles, profile_id: str | None = None) -> Profile:
    wanted = profile_id or os.environ.get(PROFILE_ENV_VAR) or DEFAULT_PROFILE_ID
    profile = loaded.profiles.get(wanted)
    if profile is None:
        available = ", ".join(sorted(loaded.profiles)) or "<none>"
        raise ProfileSelectionError(
            f"Unknown profile '{wanted}'. Available: {available}. Use 'sensorctl profiles' to inspect them."
        )
    return profile
