"""
Configuration Loader (``billing_config.loader``).

Responsibility
--------------
Loads YAML files and parses the ``tax`` section into a ``TaxConfig``.
Every load also yields a SHA-256 checksum of the parsed document so the
active configuration can be matched against a known baseline.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Top level or ``tax`` section not a mapping  -> ``ValueError``.
* Invalid values  -> ``ValueError`` from the config dataclasses.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from billing_kernel.logging_config import get_logger
from billing_modules.tax.config import TaxConfig

logger = get_logger("config.loader")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"


@dataclass(frozen=True)
class LoadedTaxConfig:
    config: TaxConfig
    checksum: str
    source: Path


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization; identical data, identical checksum."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_tax_config(path: Path | str | None = None) -> LoadedTaxConfig:
    """
    Build a TaxConfig from the ``tax`` section of a YAML file.

    With no ``path`` the packaged ``defaults.yaml`` is used.  A file without
    a ``tax`` section yields the built-in defaults.
    """
    source = Path(path) if path is not None else DEFAULT_CONFIG_PATH
    document = load_yaml_file(source)
    section = document.get("tax") or {}
    if not isinstance(section, dict):
        raise ValueError(f"{source}: 'tax' section must be a mapping")

    config = TaxConfig.from_dict(section)
    checksum = compute_checksum(document)
    logger.info("tax_config_loaded", extra={
        "source": str(source),
        "checksum": checksum,
        "provider": config.provider.value,
    })
    return LoadedTaxConfig(config=config, checksum=checksum, source=source)
