"""Parser for goal configuration.

Converts dict/YAML input to strongly-typed GoalConfig objects.
"""
import hashlib
import json
from pathlib import Path
from typing import Any, Optional

import yaml

from .errors import ConfigurationError
from .schema import (
    Address,
    ExecutionPhase,
    ExistingResourcePolicy,
    GoalConfig,
    ResourceSpec,
)


class ParseError(ConfigurationError):
    """Error parsing goal configuration."""
    pass


# Phase names accepted in resource specs
PHASE_ALIASES = {
    "configuration": ExecutionPhase.AT_CONFIGURATION,
    "config": ExecutionPhase.AT_CONFIGURATION,
    "at-configuration": ExecutionPhase.AT_CONFIGURATION,
    "execution": ExecutionPhase.AT_EXECUTION,
    "at-execution": ExecutionPhase.AT_EXECUTION,
}


def _get(config: dict[str, Any], *names: str, default: Any = None) -> Any:
    """Look up the first present key, accepting dash and underscore spellings."""
    for name in names:
        for key in (name, name.replace("-", "_")):
            if key in config:
                return config[key]
    return default


class ConfigParser:
    """Parse goal configuration from dict/YAML format."""

    def parse(self, config: dict[str, Any], base_dir: Optional[Path] = None) -> GoalConfig:
        """
        Parse a configuration dict into a GoalConfig object.

        Args:
            config: Dict with resources, commands, scripts, etc.
            base_dir: Directory relative script and properties file paths resolve against

        Returns:
            GoalConfig object

        Raises:
            ParseError: If config is invalid
        """
        if not isinstance(config, dict):
            raise ParseError(f"Goal configuration must be a mapping, got {type(config).__name__}")

        address = self._parse_address(_get(config, "address"), "goal")

        resources_config = _get(config, "resources", default=[])
        single = _get(config, "resource")
        if single is not None:
            resources_config = [single, *(resources_config or [])]
        elif _get(config, "properties") is not None and not resources_config:
            # Legacy form: just an address and properties on the goal itself
            resources_config = [{"properties": _get(config, "properties")}]
        if not isinstance(resources_config or [], list):
            raise ParseError("Resources must be a list of mappings")

        resources = [
            self._parse_resource(r, f"resources[{i}]")
            for i, r in enumerate(resources_config or [])
        ]

        commands = _get(config, "commands", default=[]) or []
        if isinstance(commands, str):
            commands = [commands]
        if not all(isinstance(c, str) for c in commands):
            raise ParseError("Commands must be a list of strings")

        script_paths = self._parse_paths(_get(config, "scripts"), base_dir)
        properties_files = self._parse_paths(_get(config, "properties-files"), base_dir)

        system_properties = _get(config, "system-properties", default={}) or {}
        if not isinstance(system_properties, dict):
            raise ParseError("System properties must be a mapping")

        profiles = _get(config, "profiles", default=[]) or []
        if isinstance(profiles, str):
            profiles = [profiles]

        return GoalConfig(
            server_id=_get(config, "server", "server-id"),
            address=address,
            resources=resources,
            commands=[c.strip() for c in commands],
            scripts=script_paths,
            fail_on_error=self._parse_bool(
                _get(config, "fail-on-error", default=True), "fail-on-error"
            ),
            batch=self._parse_bool(_get(config, "batch", default=False), "batch"),
            profiles=[str(p) for p in profiles],
            properties_files=properties_files,
            system_properties={
                str(k): _property_value(v) for k, v in system_properties.items()
            },
            skip=self._parse_bool(_get(config, "skip", default=False), "skip"),
        )

    def parse_file(self, path: str | Path) -> GoalConfig:
        """Load a YAML goal config; scripts resolve relative to its directory."""
        path = Path(path)
        try:
            with open(path, encoding="utf-8") as f:
                data = yaml.safe_load(f) or {}
        except OSError as e:
            raise ParseError(f"Cannot read goal config {path}: {e}")
        except yaml.YAMLError as e:
            raise ParseError(f"Invalid YAML in {path}: {e}")
        return self.parse(data, base_dir=path.parent)

    def _parse_resource(self, config: Any, where: str) -> ResourceSpec:
        """Parse a single resource spec (recursively for children)."""
        if not isinstance(config, dict):
            raise ParseError(f"{where}: resource must be a mapping")

        address = self._parse_address(_get(config, "address"), where)

        attributes = _get(config, "attributes", "properties", default={}) or {}
        if not isinstance(attributes, dict):
            raise ParseError(f"{where}: attributes must be a mapping")

        phase_str = str(_get(config, "phase", default="configuration")).lower()
        if phase_str not in PHASE_ALIASES:
            raise ParseError(
                f"{where}: invalid phase {phase_str!r}. "
                f"Must be 'configuration' or 'execution'"
            )

        children = [
            self._parse_resource(child, f"{where}.resources[{i}]")
            for i, child in enumerate(_get(config, "resources", default=[]) or [])
        ]

        return ResourceSpec(
            address=address,
            attributes=dict(attributes),
            phase=PHASE_ALIASES[phase_str],
            children=children,
            if_exists=self._parse_policy(config, where),
            enable=self._parse_bool(
                _get(config, "enable", "enable-resource", default=False), f"{where}.enable"
            ),
        )

    def _parse_policy(self, config: dict[str, Any], where: str) -> ExistingResourcePolicy:
        """Resolve the existing-resource policy, honoring the legacy flags."""
        policy = _get(config, "if-exists")
        if policy is not None:
            try:
                return ExistingResourcePolicy(str(policy).lower())
            except ValueError:
                raise ParseError(
                    f"{where}: invalid if-exists {policy!r}. "
                    f"Must be one of: {', '.join(p.value for p in ExistingResourcePolicy)}"
                )
        if self._parse_bool(_get(config, "add-if-absent", default=False), f"{where}.add-if-absent"):
            return ExistingResourcePolicy.SKIP
        if self._parse_bool(_get(config, "force", default=False), f"{where}.force"):
            return ExistingResourcePolicy.REPLACE
        return ExistingResourcePolicy.ADD

    def _parse_address(self, value: Any, where: str) -> Address:
        """Accept ``a=b,c=d``, ``/a=b/c=d``, a list of pairs or a mapping."""
        if value is None:
            return Address()
        try:
            if isinstance(value, str):
                return Address.parse(value)
            if isinstance(value, dict):
                return Address(tuple(value.items()))
            if isinstance(value, list):
                return Address.from_dmr(value)
        except ConfigurationError as e:
            raise ParseError(f"{where}: {e}")
        raise ParseError(f"{where}: invalid address {value!r}")

    def _parse_paths(self, value: Any, base_dir: Optional[Path]) -> list[Path]:
        """Accept one path or a list; relative paths resolve against base_dir."""
        entries = value or []
        if isinstance(entries, (str, Path)):
            entries = [entries]
        paths = []
        for entry in entries:
            path = Path(entry).expanduser()
            if base_dir is not None and not path.is_absolute():
                path = base_dir / path
            paths.append(path)
        return paths

    def _parse_bool(self, value: Any, name: str) -> bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ParseError(f"Invalid boolean for {name}: {value!r}")


def _property_value(value: Any) -> str:
    # YAML reads true/1 as bool/int; commands need the text form
    if isinstance(value, bool):
        return str(value).lower()
    return "" if value is None else str(value)

def compute_checksum(config: dict[str, Any]) -> str:
    """
    Compute SHA256 checksum of a config dict.

    Useful for recording which goal config produced an audit entry.
    """
    config_str = json.dumps(config, sort_keys=True, separators=(",", ":"), default=str)
    hash_bytes = hashlib.sha256(config_str.encode()).hexdigest()
    return f"sha256:{hash_bytes[:16]}"
