# errors.py
from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional


TOOL_HINTS = {
    "docker": "Install Docker and ensure the daemon is running.",
    "git": "Install Git or pass the values explicitly (e.g. --project-id).",
}


@dataclass(frozen=True)
class Problem:
    """A single thing wrong with a build config."""
    location: str
    message: str
    severity: str = "error"  # error | warning

    @property
    def is_error(self) -> bool:
        return self.severity == "error"

    def __str__(self) -> str:
        where = self.location or "<config>"
        return f"{where}: {self.message}"


@dataclass
class ConfigError(Exception):
    """Raised when a build config cannot be loaded or fails validation."""
    problems: List[Problem]
    source: Optional[str] = None

    def __str__(self) -> str:
        head = f"Invalid build config: {self.source}" if self.source else "Invalid build config"
        lines = [head]
        for p in self.problems:
            lines.append(f"  {p}")
        return "\n".join(lines)


@dataclass
class SubstitutionError(Exception):
    """Raised when a substitution variable cannot be resolved."""
    message: str
    location: str = ""

    def __str__(self) -> str:
        if self.location:
            return f"{self.location}: {self.message}"
        return self.message


@dataclass
class BuildError(Exception):
    """
    Structured build error with enough context for:
      - clean CLI output
      - the summary written next to the build logs
    """
    kind: str
    message: str
    step: str | None = None
    details: dict = field(default_factory=dict)

    def __str__(self) -> str:
        lines = [f"{self.kind}: {self.message}"]
        if self.step:
            lines.append(f"step={self.step}")
        for k, v in self.details.items():
            lines.append(f"{k}={v}")
        return "\n".join(lines)


@dataclass
class StepFailure(Exception):
    step: str
    image: str
    exit_code: int
    output_tail: str = ""

    def __str__(self) -> str:
        return f"step '{self.step}' failed (exit={self.exit_code}): {self.image}"
