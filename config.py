"""Runtime configuration with environment overrides."""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from typing import Dict, Mapping

import constants
from errors import ValidationError

ENV_PREFIX = "VOTING_"


@dataclass
class PipelineConfig:
    """管道配置 / Tunables for one node of the voting pipeline."""

    node_id: str = "authority-1"
    is_authority: bool = True
    paillier_bits: int = constants.DEFAULT_PAILLIER_BITS
    rsa_bits: int = constants.DEFAULT_RSA_BITS
    share_count: int = constants.DEFAULT_SHARE_COUNT
    share_threshold: int = constants.DEFAULT_SHARE_THRESHOLD
    min_batch_size: int = constants.MIXNET_MIN_BATCH_SIZE
    max_wait: float = constants.MIXNET_MAX_WAIT
    mixnet_tick_interval: float = constants.MIXNET_TICK_INTERVAL
    block_interval: float = constants.BLOCK_INTERVAL
    sync_interval: float = constants.SYNC_INTERVAL
    ballot_max_age: float = constants.BALLOT_MAX_AGE
    insecure_test_mode: bool = False

    def __post_init__(self) -> None:
        if self.min_batch_size < 1:
            raise ValidationError("min_batch_size must be at least 1")
        if not 1 <= self.share_threshold <= self.share_count:
            raise ValidationError(
                f"share_threshold must be within 1..{self.share_count}, got {self.share_threshold}"
            )
        for name in ("max_wait", "mixnet_tick_interval", "block_interval", "sync_interval", "ballot_max_age"):
            if getattr(self, name) <= 0:
                raise ValidationError(f"{name} must be positive")

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None, **overrides) -> "PipelineConfig":
        """从环境变量读取配置，例如 VOTING_MIN_BATCH_SIZE=5."""
        environ = os.environ if environ is None else environ
        values: Dict[str, object] = {}
        for field in fields(cls):
            raw = environ.get(ENV_PREFIX + field.name.upper())
            if raw is None:
                continue
            values[field.name] = _coerce(field.name, raw, field.type)
        values.update(overrides)
        return cls(**values)


def _coerce(name: str, raw: str, type_name: object) -> object:
    # field.type is a string because of postponed annotations
    type_name = getattr(type_name, "__name__", type_name)
    try:
        if type_name == "bool":
            lowered = raw.strip().lower()
            if lowered in ("1", "true", "yes", "on"):
                return True
            if lowered in ("0", "false", "no", "off"):
                return False
            raise ValueError(raw)
        if type_name == "int":
            return int(raw)
        if type_name == "float":
            return float(raw)
    except ValueError as exc:
        raise ValidationError(f"Invalid value for {ENV_PREFIX}{name.upper()}: {raw!r}") from exc
    return raw
