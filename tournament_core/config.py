"""Configuration helpers for the tournament engine."""

from __future__ import annotations

import os
from dataclasses import dataclass

import boto3

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def env_bool(name: str, *, default: bool = False) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    lowered = raw.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return default


def env_int(name: str, *, default: int | None = None) -> int | None:
    raw = os.getenv(name)
    if raw is None or raw == "":
        return default
    try:
        return int(raw)
    except ValueError:
        return default


def _env_count(name: str, default: int) -> int:
    value = env_int(name, default=default)
    if value is None or value < 0:
        return default
    return value


@dataclass(frozen=True)
class EngineConfig:
    table_name: str | None = None
    aws_region: str = "us-east-1"
    endpoint_url: str | None = None
    knockout_size: int = 8
    games_to_win: int = 2
    bye_points: int = 1
    win_points: int = 2
    loss_points: int = 1
    champion_points: int = 3
    audit_enabled: bool = True


def read_engine_config() -> EngineConfig:
    defaults = EngineConfig()
    return EngineConfig(
        table_name=os.getenv("TOURNAMENT_TABLE_NAME") or None,
        aws_region=os.getenv("AWS_REGION", defaults.aws_region),
        endpoint_url=os.getenv("DYNAMODB_ENDPOINT_URL") or None,
        knockout_size=max(
            _env_count("TOURNAMENT_KNOCKOUT_SIZE", defaults.knockout_size), 2
        ),
        games_to_win=max(
            _env_count("TOURNAMENT_GAMES_TO_WIN", defaults.games_to_win), 1
        ),
        bye_points=_env_count("TOURNAMENT_BYE_POINTS", defaults.bye_points),
        win_points=_env_count("TOURNAMENT_WIN_POINTS", defaults.win_points),
        loss_points=_env_count("TOURNAMENT_LOSS_POINTS", defaults.loss_points),
        champion_points=_env_count(
            "TOURNAMENT_CHAMPION_POINTS", defaults.champion_points
        ),
        audit_enabled=env_bool("TOURNAMENT_AUDIT_ENABLED", default=True),
    )


def build_table(config: EngineConfig, *, dynamodb_resource=None):
    """Return the DynamoDB table configured for tournament data."""
    if not config.table_name:
        raise RuntimeError("TOURNAMENT_TABLE_NAME is not configured")
    if dynamodb_resource is None:
        dynamodb_resource = boto3.resource(
            "dynamodb",
            region_name=config.aws_region,
            endpoint_url=config.endpoint_url,
        )
    return dynamodb_resource.Table(config.table_name)


__all__ = ["EngineConfig", "build_table", "env_bool", "env_int", "read_engine_config"]
