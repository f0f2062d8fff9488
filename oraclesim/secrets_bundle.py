"""
Secret bundles handed to one script execution.

Values never appear in repr/str output, so a bundle is safe to pass through
log formatting. Bundles are not persisted.
"""

import json
from typing import Callable, Dict, Iterator, Mapping, Optional

from oraclesim.schema import ComputeRequest


class SecretsBundle(Mapping):
    """Read-only name → secret mapping scoped to a single execution."""

    def __init__(self, values: Optional[Mapping[str, str]] = None):
        self._values: Dict[str, str] = {}
        for name, value in (values or {}).items():
            if not isinstance(name, str) or not isinstance(value, str):
                raise ValueError("Secret names and values must be strings")
            self._values[name] = value

    def __getitem__(self, name: str) -> str:
        return self._values[name]

    def __iter__(self) -> Iterator[str]:
        return iter(self._values)

    def __len__(self) -> int:
        return len(self._values)

    def __repr__(self) -> str:
        return f"SecretsBundle(names={sorted(self._values)})"

    __str__ = __repr__

    @classmethod
    def from_json(cls, raw: str) -> "SecretsBundle":
        """Parse a JSON object of string values (e.g. ORACLESIM_SECRETS)."""
        if not raw or not raw.strip():
            return cls()
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ValueError(f"Secrets must be a JSON object: {e}") from e
        if not isinstance(data, dict):
            raise ValueError("Secrets must be a JSON object")
        return cls(data)


SecretsProvider = Callable[[ComputeRequest], Mapping[str, str]]


def static_provider(bundle: Optional[Mapping[str, str]] = None) -> SecretsProvider:
    """Provider that hands every request the same bundle (inline secrets)."""
    fixed = SecretsBundle(bundle)

    def _provide(request: ComputeRequest) -> Mapping[str, str]:
        return fixed

    return _provide
