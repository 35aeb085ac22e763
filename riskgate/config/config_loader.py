"""
Purpose:
    - Merge configuration layers (defaults <- file <- environment <- cli)
    - Validate the merged tree against the Config schema
    - Produce a stable hash and a redacted copy for logging
"""

from __future__ import annotations

import copy
import hashlib
import os
from pathlib import Path
from typing import Any, Iterable, Mapping, Optional, Sequence

import orjson
from pydantic import ValidationError

from riskgate.config.configs import Config, ReturnConfig
from riskgate.errors.errors import ConfigurationError
from riskgate.ports.telemetry import Telemetry
from riskgate.utils.utility import deep_merge, insert_path, validation_error_parser

ENV_PREFIX: str = "RISKGATE_"
ENV_NESTING: str = "__"
REDACTED: str = "***REDACTED***"
SECRET_KEYS: list[str] = ["alpaca.key_id", "alpaca.secret_key"]


class ConfigLoader:
    def __init__(self, telemetry: Optional[Telemetry] = None) -> None:
        self.telemetry = telemetry

    # --- layers ---------------------------------------------

    def load_file(self, path: Path) -> dict[str, Any]:
        """Read a JSON config file. The top level must be an object."""
        try:
            raw = Path(path).read_bytes()
        except OSError as exc:
            raise ConfigurationError(
                f"Config file not readable: {path}", field="config_file", value=path
            ) from exc
        try:
            data = orjson.loads(raw)
        except orjson.JSONDecodeError as exc:
            raise ConfigurationError(
                f"Config file is not valid JSON: {exc}", field="config_file", value=path
            ) from exc
        if not isinstance(data, dict):
            raise ConfigurationError(
                "Config file must contain a JSON object", field="config_file", value=path
            )
        return data

    def env_overrides(
        self, environ: Optional[Mapping[str, str]] = None, prefix: str = ENV_PREFIX
    ) -> dict[str, Any]:
        """
        Collect `RISKGATE_SECTION__FIELD=value` variables into a nested mapping
        ({"section": {"field": "value"}}). Section and field names are lower-cased;
        deeper segments (mapping keys such as tickers) keep their case.
        """
        env = os.environ if environ is None else environ
        overrides: dict[str, Any] = {}
        for name in sorted(env):
            if not name.startswith(prefix):
                continue
            segments = name[len(prefix) :].split(ENV_NESTING)
            dotted = ".".join([s.lower() for s in segments[:2]] + segments[2:])
            try:
                insert_path(overrides, dotted, env[name])
            except ValueError as exc:
                raise ConfigurationError(str(exc), field=name) from exc
        return overrides

    @staticmethod
    def parse_cli_overrides(pairs: Sequence[str]) -> dict[str, Any]:
        overrides: dict[str, Any] = {}
        for item in pairs:
            key, sep, value = item.partition("=")
            if sep == "":
                raise ConfigurationError(
                    f"--set requires KEY=VALUE format (got {item!r})", field="--set"
                )
            try:
                insert_path(overrides, key, value)
            except ValueError as exc:
                raise ConfigurationError(str(exc), field=key) from exc
        return overrides

    # --- pipeline (resolve) ---------------------------------

    def resolve(
        self,
        file_cfg: Optional[Mapping[str, Any]] = None,
        env_cfg: Optional[Mapping[str, Any]] = None,
        cli_overrides: Optional[Mapping[str, Any]] = None,
        secret_paths: Optional[Iterable[str]] = None,
    ) -> tuple[Config, ReturnConfig]:
        """
        1. Start from the schema defaults
        2. Merge file, environment and cli layers in that order
        3. Validate the merged tree (unknown keys are rejected)
        4. Hash the canonical tree and build the redacted copy
        """
        merged: Mapping[str, Any] = Config().model_dump(mode="json")
        for layer in (file_cfg, env_cfg, cli_overrides):
            if layer:
                merged = deep_merge(merged, layer)

        try:
            config = Config.model_validate(merged)
        except ValidationError as exc:
            parsed_error = validation_error_parser(exc)
            self._log(
                "config_validation_error",
                layer="schema",
                step="model_validation",
                errors=parsed_error,
            )
            paths = ", ".join(sorted(err["path"] for err in parsed_error))
            raise ConfigurationError(
                f"Invalid configuration at: {paths}",
                component="config",
                details={"errors": parsed_error},
            ) from exc

        internal_config: Mapping[str, Any] = self._sort_mapping(config.model_dump(mode="json"))
        config_hash = self.compute_hash(internal_config)
        redacted_config, redacted_count = self._redact(
            internal_config, SECRET_KEYS if secret_paths is None else secret_paths
        )
        config_keys_total = len(self._collect_leaves(internal_config))

        self._log(
            "config_resolved",
            config_hash=config_hash,
            redacted_config=redacted_config,
            redacted_count=redacted_count,
            config_keys_total=config_keys_total,
        )

        return config, ReturnConfig(
            internal_config=internal_config,
            redacted_config=redacted_config,
            redacted_count=redacted_count,
            config_hash=config_hash,
            config_keys_total=config_keys_total,
        )

    def load(
        self,
        config_file: Optional[Path] = None,
        cli_pairs: Sequence[str] = (),
        environ: Optional[Mapping[str, str]] = None,
    ) -> tuple[Config, ReturnConfig]:
        file_cfg = self.load_file(config_file) if config_file else None
        return self.resolve(
            file_cfg=file_cfg,
            env_cfg=self.env_overrides(environ),
            cli_overrides=self.parse_cli_overrides(cli_pairs),
        )

    # --- render (hashing, redaction) ------------------------

    def _sort_mapping(self, obj: Any) -> Any:
        if isinstance(obj, Mapping):
            return {k: self._sort_mapping(obj[k]) for k in sorted(obj)}
        if isinstance(obj, Sequence) and not isinstance(obj, (str, bytes, bytearray)):
            return [self._sort_mapping(item) for item in obj]
        return obj

    def compute_hash(self, cfg: Mapping[str, Any]) -> str:
        canonical = self._sort_mapping(cfg)
        payload = orjson.dumps(canonical, option=orjson.OPT_SORT_KEYS)
        return hashlib.sha256(payload).hexdigest()

    def _redact(
        self, cfg: Mapping[str, Any], secret_keys: Iterable[str]
    ) -> tuple[dict[str, Any], int]:
        """
        Replace every populated secret leaf with the redaction token.
        Unset (None) secrets are left as None and not counted.
        """
        redacted_cfg = copy.deepcopy(dict(cfg))
        count = 0
        for key in secret_keys:
            path = [segment for segment in key.split(".") if segment]
            if not path:
                raise ValueError("Secret path must contain at least one segment")
            parent: Any = redacted_cfg
            for segment in path[:-1]:
                if not isinstance(parent, dict) or segment not in parent:
                    break
                parent = parent[segment]
            else:
                leaf = path[-1]
                if isinstance(parent, dict) and parent.get(leaf) is not None:
                    parent[leaf] = REDACTED
                    count += 1
        return redacted_cfg, count

    def _collect_leaves(
        self, tree: Mapping[str, Any], *, _prefix: tuple[str, ...] = ()
    ) -> list[str]:
        """Flattened dotted key paths for every non-mapping value in ``tree``."""
        leaves: list[str] = []
        for key, value in tree.items():
            path = _prefix + (str(key),)
            if isinstance(value, Mapping) and value:
                leaves.extend(self._collect_leaves(value, _prefix=path))
            else:
                leaves.append(".".join(path))
        return leaves

    def _log(self, event: str, **fields: Any) -> None:
        if self.telemetry is not None:
            self.telemetry.log(event, **fields)
