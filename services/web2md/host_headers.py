# services/web2md/host_headers.py
"""
Loads per-host header overrides from ``configs/host_headers.yaml`` and
validates them with Pydantic models.

* ``get_host_rules(path)`` – validated ``HostHeaderRules`` (cached per path).
* ``headers_for_host(host, path)`` – resolved headers for one hostname, with
  ``${ENV}`` references expanded from the process environment.
"""

import os
import re
from pathlib import Path
from typing import Dict, List

import yaml
from loguru import logger
from pydantic import BaseModel, Field, field_validator

_ENV_REF = re.compile(r"\$\{([A-Za-z_][A-Za-z0-9_]*)\}")


class HostHeaderRule(BaseModel):
    """Headers to add for one host and its subdomains."""
    host: str
    headers: Dict[str, str] = Field(default_factory=dict)

    @field_validator("host")
    @classmethod
    def _normalize_host(cls, value: str) -> str:
        value = value.strip().lower().lstrip(".")
        if not value:
            raise ValueError("host must not be empty")
        return value

    def matches(self, hostname: str) -> bool:
        hostname = hostname.lower()
        return hostname == self.host or hostname.endswith(f".{self.host}")


class HostHeaderRules(BaseModel):
    """Top-level container – ordered list of host rules."""
    hosts: List[HostHeaderRule] = Field(default_factory=list)


# Simple in-process cache so each YAML file is read/validated only once
_cached_rules: Dict[Path, HostHeaderRules] = {}


def _load_yaml(path: Path) -> dict:
    with path.open("r", encoding="utf-8") as fh:
        raw = yaml.safe_load(fh) or {}
    if isinstance(raw, list):
        return {"hosts": raw}
    return raw


def get_host_rules(path: Path) -> HostHeaderRules:
    """
    Return the validated rules stored at ``path``.  A missing file means no
    overrides; a malformed one raises ``pydantic.ValidationError``.
    """
    path = Path(path)
    if path not in _cached_rules:
        if not path.exists():
            logger.debug(f"No host header overrides at {path}")
            _cached_rules[path] = HostHeaderRules()
        else:
            _cached_rules[path] = HostHeaderRules(**_load_yaml(path))
    return _cached_rules[path]


def clear_host_rules_cache() -> None:
    _cached_rules.clear()


def _expand(value: str) -> str | None:
    """Substitute ``${NAME}``; ``None`` when any referenced variable is blank."""
    missing = False

    def _sub(match: re.Match) -> str:
        nonlocal missing
        resolved = os.environ.get(match.group(1), "").strip()
        if not resolved:
            missing = True
        return resolved

    expanded = _ENV_REF.sub(_sub, value)
    return None if missing else expanded


def headers_for_host(hostname: str, path: Path) -> Dict[str, str]:
    headers: Dict[str, str] = {}
    for rule in get_host_rules(path).hosts:
        if not rule.matches(hostname):
            continue
        for name, template in rule.headers.items():
            value = _expand(template)
            if value:
                headers[name] = value
    return headers
