"""
Configuration classes for CloneFlow.

Engine parameters (resource limits enforced by the transforms and the
candidate-set engine) and YAML configuration loading. Restriction enzymes
come from the Biopython REBASE tables and need no configuration.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, List, Optional
import logging

import yaml

from .errors import invalid_input, unsupported

logger = logging.getLogger(__name__)


@dataclass
class EngineParameters:
    """Tunable limits stored on every ProjectState."""
    max_fragments_per_container: int = 80000
    max_candidates_per_set: int = 100000
    max_primer_variants: int = 4096

    @classmethod
    def names(cls) -> List[str]:
        return [f.name for f in fields(cls)]

    def set(self, name: str, value: Any):
        """
        Set a named parameter.

        Raises:
            EngineError: Unsupported for unknown names, InvalidInput for
                values that are not positive integers
        """
        if name not in self.names():
            raise unsupported(f"Unknown parameter '{name}'")
        if isinstance(value, bool) or not isinstance(value, int):
            raise invalid_input(f"Parameter '{name}' requires an integer, got {value!r}")
        if value <= 0:
            raise invalid_input(f"Parameter '{name}' must be > 0")
        setattr(self, name, value)

    def to_dict(self) -> Dict[str, int]:
        return {name: getattr(self, name) for name in self.names()}

    @classmethod
    def from_dict(cls, d: Optional[Dict[str, Any]]) -> 'EngineParameters':
        params = cls()
        for name, value in (d or {}).items():
            if name in cls.names():
                params.set(name, value)
        return params


@dataclass
class EngineConfig:
    """Engine-wide configuration, usually read from YAML."""
    parameters: EngineParameters = field(default_factory=EngineParameters)

    @classmethod
    def from_yaml(cls, path: Path) -> 'EngineConfig':
        """Load configuration from YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f) or {}
        logger.debug(f"Loaded configuration from {path}")

        return cls(
            parameters=EngineParameters.from_dict(data.get('parameters', {})),
        )
