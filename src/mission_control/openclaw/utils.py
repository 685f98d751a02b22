"""Utility helpers for the OpenClaw runner."""

from __future__ import annotations

import json
import os
import re
from typing import Any, Mapping

_SANITIZED_VARS = {
    "PYTHONHOME",
    "PYTHONPATH",
    "VIRTUAL_ENV",
    "PIP_RESPECT_VIRTUALENV",
}

_ANSI_PATTERN = re.compile(r"\x1b\[[0-9;]*m")
_MISSING_ENV_PATTERN = re.compile(r'Missing env var "([A-Za-z_][A-Za-z0-9_]*)"')


def sanitize_environment(additional: Mapping[str, str] | None = None) -> dict[str, str]:
    """Return a sanitized environment suitable for subprocess execution."""

    env = dict(os.environ)
    for key in _SANITIZED_VARS:
        env.pop(key, None)
    if additional:
        env.update(additional)
    return env


def strip_ansi(text: str) -> str:
    return _ANSI_PATTERN.sub("", text)


def missing_env_vars(*outputs: str) -> list[str]:
    """Names reported by OpenClaw as missing credentials, in first-seen order."""

    combined = "\n".join(output for output in outputs if output)
    if "MissingEnvVarError" not in combined and 'Missing env var "' not in combined:
        return []
    names: list[str] = []
    for match in _MISSING_ENV_PATTERN.finditer(combined):
        name = match.group(1)
        if name not in names:
            names.append(name)
    return names


def placeholder_env_value(name: str) -> str:
    existing = os.environ.get(name)
    if existing and existing.strip():
        return existing
    return f"openclaw-placeholder-{name.lower()}"


def parse_json_output(stdout: str) -> Any:
    """Parse JSON from CLI output that may carry banners or trailing log lines."""

    stripped = strip_ansi(stdout).strip()
    if not stripped:
        raise ValueError("Expected JSON output but command returned empty stdout")

    candidates = [stripped]
    for opener, closer in (("{", "}"), ("[", "]")):
        first = stripped.find(opener)
        last = stripped.rfind(closer)
        if first >= 0 and last > first:
            if first > 0:
                candidates.append(stripped[first:])
            candidates.append(stripped[first : last + 1])

    for candidate in dict.fromkeys(candidates):
        try:
            return json.loads(candidate)
        except json.JSONDecodeError:
            continue
    raise ValueError("Unable to parse JSON from command output")
