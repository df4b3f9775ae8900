"""Keypair and program file helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Optional, Tuple

from solders.keypair import Keypair

from .errors import ConfigError


def load_keypair(path: str | Path) -> Keypair:
    path = Path(path).expanduser()
    if not path.exists():
        raise FileNotFoundError(f"Keypair file not found: {path}")
    try:
        raw = json.loads(path.read_text())
        return Keypair.from_bytes(bytes(raw))
    except (json.JSONDecodeError, TypeError, ValueError) as exc:
        raise ConfigError(f"failed to read keypair file ({path}): {exc}") from exc


def write_keypair(path: str | Path, keypair: Keypair) -> Path:
    path = Path(path).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(list(bytes(keypair))))
    return path


def keypair_file_for(program_path: str | Path, suffix: str = "keypair") -> Path:
    """``target/deploy/prog.so`` -> ``target/deploy/prog-keypair.json``."""
    program_path = Path(program_path)
    return program_path.with_name(f"{program_path.stem}-{suffix}.json")


def load_or_create_keypair(path: Optional[str | Path], default_path: Path) -> Tuple[Keypair, bool]:
    """Load ``path``, else reuse ``default_path``, else generate and save there.

    Returns the keypair and whether it was freshly generated.
    """
    if path:
        return load_keypair(path), False
    if default_path.exists():
        return load_keypair(default_path), False
    keypair = Keypair()
    write_keypair(default_path, keypair)
    return keypair, True


def read_program(path: str | Path) -> bytes:
    path = Path(path).expanduser()
    if not path.is_file():
        raise FileNotFoundError(f"Program not found: {path}")
    return path.read_bytes()
