"""Configuration resolved once per invocation.

Values come from, in order of precedence: command-line flags, the project
file (``chunkloader.toml`` or ``--config``), ``CHUNKLOADER_*`` environment
variables, the Solana CLI config, and finally built-in defaults.
"""

from __future__ import annotations

import argparse
import os
import sys
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Mapping, Optional

from solders.keypair import Keypair
from solders.pubkey import Pubkey

from .constants import (
    CLUSTER_URLS,
    DEFAULT_COMMITMENT,
    DEFAULT_CONFIRM_TIMEOUT,
    DEFAULT_DISPATCH_MODE,
    DEFAULT_MAX_WORKERS,
    DEFAULT_RPC_URL,
    DISPATCH_MODES,
)
from .errors import ConfigError
from .keys import load_keypair

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

PROJECT_CONFIG_NAME = "chunkloader.toml"
COMMITMENTS = {"processed", "confirmed", "finalized"}


def solana_cli_config_path(environ: Optional[Mapping[str, str]] = None) -> Path:
    env = os.environ if environ is None else environ
    override = env.get("SOLANA_CONFIG") or env.get("SOLANA_CONFIG_FILE")
    return Path(override or "~/.config/solana/cli/config.yml").expanduser()


def _top_level_pairs(text: str) -> Dict[str, str]:
    """``key: value`` pairs at the top level of a flat YAML document."""
    pairs: Dict[str, str] = {}
    for raw in text.splitlines():
        if raw[:1].isspace():
            continue  # nested mapping entry
        key, sep, value = raw.partition(":")
        key = key.strip()
        if sep and key and not key.startswith(("#", "---")):
            pairs[key] = value.strip().strip("\"'")
    return pairs


def load_solana_cli_config(environ: Optional[Mapping[str, str]] = None) -> Dict[str, str]:
    path = solana_cli_config_path(environ)
    if not path.is_file():
        return {}
    return _top_level_pairs(path.read_text())


def load_project_config(path: str | Path) -> Dict[str, Any]:
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Config file not found: {path}")
    with path.open("rb") as fh:
        try:
            return tomllib.load(fh)
        except tomllib.TOMLDecodeError as exc:
            raise ConfigError(f"failed to parse {path}: {exc}") from exc


def resolve_cluster_url(value: str) -> str:
    return CLUSTER_URLS.get(value.strip().lower(), value.strip())


@dataclass(frozen=True)
class UploadConfig:
    rpc_url: str = DEFAULT_RPC_URL
    payer_path: Optional[str] = None
    commitment: str = DEFAULT_COMMITMENT
    dispatch_mode: str = DEFAULT_DISPATCH_MODE
    max_workers: int = DEFAULT_MAX_WORKERS
    confirm_timeout: float = DEFAULT_CONFIRM_TIMEOUT
    round_loader_program_id: Optional[str] = None

    def __post_init__(self) -> None:
        if self.commitment not in COMMITMENTS:
            raise ConfigError(f"commitment must be one of {sorted(COMMITMENTS)}")
        if self.dispatch_mode not in DISPATCH_MODES:
            raise ConfigError(f"dispatch mode must be one of {sorted(DISPATCH_MODES)}")
        if self.max_workers <= 0:
            raise ConfigError("max_workers must be > 0")
        if self.confirm_timeout <= 0:
            raise ConfigError("confirm_timeout must be > 0")

    def load_payer(self, override: Optional[str] = None) -> Keypair:
        path = override or self.payer_path
        if not path:
            raise ConfigError("no payer keypair configured (set --payer-keypair or keypair_path in the Solana CLI config)")
        return load_keypair(path)

    def round_loader_program(self) -> Pubkey:
        if not self.round_loader_program_id:
            raise ConfigError("round loader program id missing (set [round_loader] program_id or --round-loader-program)")
        try:
            return Pubkey.from_string(self.round_loader_program_id)
        except ValueError as exc:
            raise ConfigError(f"invalid round loader program id: {self.round_loader_program_id}") from exc


def _table(data: Mapping[str, Any], key: str) -> Dict[str, Any]:
    value = data.get(key)
    return value if isinstance(value, dict) else {}


def _first(*values: Any) -> Any:
    for value in values:
        if value is not None and value != "":
            return value
    return None


def _as_int(value: Any, name: str) -> int:
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be an integer") from exc


def _as_float(value: Any, name: str) -> float:
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"{name} must be a number") from exc


def resolve_config(
    args: argparse.Namespace,
    environ: Optional[Mapping[str, str]] = None,
) -> UploadConfig:
    env = os.environ if environ is None else environ
    config_path = getattr(args, "config", None)
    if config_path:
        project = load_project_config(config_path)
    elif Path(PROJECT_CONFIG_NAME).exists():
        project = load_project_config(PROJECT_CONFIG_NAME)
    else:
        project = {}
    cluster = _table(project, "cluster")
    upload = _table(project, "upload")
    round_cfg = _table(project, "round_loader")
    solana_cfg = load_solana_cli_config(env)

    url_flag = getattr(args, "url", None)
    rpc_url = _first(
        getattr(args, "rpc_url", None),
        resolve_cluster_url(url_flag) if url_flag else None,
        cluster.get("rpc_url"),
        env.get("CHUNKLOADER_RPC_URL"),
        solana_cfg.get("json_rpc_url"),
        DEFAULT_RPC_URL,
    )
    payer_path = _first(
        cluster.get("payer"),
        env.get("CHUNKLOADER_PAYER"),
        solana_cfg.get("keypair_path"),
    )
    commitment = _first(cluster.get("commitment"), solana_cfg.get("commitment"), DEFAULT_COMMITMENT)
    mode = _first(getattr(args, "mode", None), upload.get("mode"), DEFAULT_DISPATCH_MODE)
    max_workers = _first(getattr(args, "max_workers", None), upload.get("max_workers"), DEFAULT_MAX_WORKERS)
    timeout = _first(
        getattr(args, "confirm_timeout", None),
        upload.get("confirm_timeout"),
        DEFAULT_CONFIRM_TIMEOUT,
    )
    program_id = _first(
        getattr(args, "round_loader_program", None),
        round_cfg.get("program_id"),
        env.get("CHUNKLOADER_ROUND_LOADER_PROGRAM_ID"),
    )

    return UploadConfig(
        rpc_url=str(rpc_url),
        payer_path=str(payer_path) if payer_path else None,
        commitment=str(commitment).strip().lower(),
        dispatch_mode=str(mode).strip().lower(),
        max_workers=_as_int(max_workers, "max_workers"),
        confirm_timeout=_as_float(timeout, "confirm_timeout"),
        round_loader_program_id=str(program_id) if program_id else None,
    )
