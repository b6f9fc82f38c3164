# schema.py
from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, ValidationError, field_validator

from .durations import DEFAULT_BUILD_TIMEOUT, format_duration, parse_duration
from .errors import ConfigError, Problem


# -------------------- Enums --------------------

class MachineType(str, Enum):
    UNSPECIFIED = "UNSPECIFIED"
    N1_HIGHCPU_8 = "N1_HIGHCPU_8"
    N1_HIGHCPU_32 = "N1_HIGHCPU_32"
    E2_HIGHCPU_8 = "E2_HIGHCPU_8"
    E2_HIGHCPU_32 = "E2_HIGHCPU_32"
    E2_MEDIUM = "E2_MEDIUM"


class SubstitutionOption(str, Enum):
    MUST_MATCH = "MUST_MATCH"
    ALLOW_LOOSE = "ALLOW_LOOSE"


class LoggingMode(str, Enum):
    LOGGING_UNSPECIFIED = "LOGGING_UNSPECIFIED"
    LEGACY = "LEGACY"
    GCS_ONLY = "GCS_ONLY"
    STACKDRIVER_ONLY = "STACKDRIVER_ONLY"
    CLOUD_LOGGING_ONLY = "CLOUD_LOGGING_ONLY"
    NONE = "NONE"


# -------------------- Field helpers --------------------

def _coerce_str_list(value: Any) -> Any:
    # YAML turns bare numbers into ints; args and env are strings on the wire.
    if value is None:
        return []
    if isinstance(value, list):
        return [str(v) if isinstance(v, (int, float)) and not isinstance(v, bool) else v for v in value]
    return value


def _check_env_entries(entries: List[str]) -> List[str]:
    for entry in entries:
        key, sep, _value = entry.partition("=")
        if not sep or not key:
            raise ValueError(f"env entry {entry!r} must have the form KEY=VALUE")
    return entries


def _normalize_duration(value: Any) -> Any:
    if value is None:
        return None
    seconds = parse_duration(value)
    if isinstance(value, str):
        return value.strip()
    return format_duration(seconds)


class _Schema(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="forbid")


# -------------------- Schemas --------------------

class Volume(_Schema):
    name: str
    path: str


class BuildStep(_Schema):
    """One build step: a container image plus the arguments it runs with."""
    name: str
    args: List[str] = Field(default_factory=list)
    dir: Optional[str] = None
    id: Optional[str] = None
    entrypoint: Optional[str] = None
    env: List[str] = Field(default_factory=list)
    secret_env: List[str] = Field(default_factory=list, alias="secretEnv")
    volumes: List[Volume] = Field(default_factory=list)
    wait_for: List[str] = Field(default_factory=list, alias="waitFor")
    timeout: Optional[str] = None
    script: Optional[str] = None
    allow_failure: bool = Field(default=False, alias="allowFailure")
    allow_exit_codes: List[int] = Field(default_factory=list, alias="allowExitCodes")
    automap_substitutions: bool = Field(default=False, alias="automapSubstitutions")

    @field_validator("name")
    @classmethod
    def _name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("step name (the container image) must not be empty")
        return v

    @field_validator("args", "env", "wait_for", mode="before")
    @classmethod
    def _coerce_lists(cls, v: Any) -> Any:
        return _coerce_str_list(v)

    @field_validator("env")
    @classmethod
    def _env_entries(cls, v: List[str]) -> List[str]:
        return _check_env_entries(v)

    @field_validator("timeout", mode="before")
    @classmethod
    def _timeout(cls, v: Any) -> Any:
        return _normalize_duration(v)

    def step_id(self, index: int) -> str:
        """Explicit id, or a positional label for steps without one."""
        return self.id or f"step-{index}"


class BuildOptions(_Schema):
    env: List[str] = Field(default_factory=list)
    secret_env: List[str] = Field(default_factory=list, alias="secretEnv")
    volumes: List[Volume] = Field(default_factory=list)
    machine_type: MachineType = Field(default=MachineType.UNSPECIFIED, alias="machineType")
    disk_size_gb: Optional[int] = Field(default=None, alias="diskSizeGb")
    dynamic_substitutions: bool = Field(
        default=False,
        validation_alias=AliasChoices("dynamicSubstitutions", "dynamic_substitutions"),
        serialization_alias="dynamicSubstitutions",
    )
    substitution_option: SubstitutionOption = Field(
        default=SubstitutionOption.MUST_MATCH, alias="substitutionOption"
    )
    logging: LoggingMode = LoggingMode.LOGGING_UNSPECIFIED
    log_streaming_option: Optional[str] = Field(default=None, alias="logStreamingOption")
    automap_substitutions: bool = Field(default=False, alias="automapSubstitutions")

    @field_validator("env", mode="before")
    @classmethod
    def _coerce_env(cls, v: Any) -> Any:
        return _coerce_str_list(v)

    @field_validator("env")
    @classmethod
    def _env_entries(cls, v: List[str]) -> List[str]:
        return _check_env_entries(v)


class BuildConfig(_Schema):
    """
    A whole build config (cloudbuild.yaml).

    Only `steps` is required. Unknown keys are rejected so typos surface
    as validation problems instead of being silently ignored.
    """
    steps: List[BuildStep]
    options: BuildOptions = Field(default_factory=BuildOptions)
    timeout: str = DEFAULT_BUILD_TIMEOUT
    substitutions: Dict[str, str] = Field(default_factory=dict)
    logs_bucket: Optional[str] = Field(default=None, alias="logsBucket")
    tags: List[str] = Field(default_factory=list)
    images: List[str] = Field(default_factory=list)
    service_account: Optional[str] = Field(default=None, alias="serviceAccount")
    queue_ttl: Optional[str] = Field(default=None, alias="queueTtl")

    # Accepted for compatibility; not acted on when running locally.
    available_secrets: Optional[Dict[str, Any]] = Field(default=None, alias="availableSecrets")
    artifacts: Optional[Dict[str, Any]] = None

    @field_validator("steps")
    @classmethod
    def _steps_not_empty(cls, v: List[BuildStep]) -> List[BuildStep]:
        if not v:
            raise ValueError("a build needs at least one step")
        return v

    @field_validator("timeout", "queue_ttl", mode="before")
    @classmethod
    def _durations(cls, v: Any) -> Any:
        return _normalize_duration(v)

    @field_validator("substitutions", mode="before")
    @classmethod
    def _coerce_substitutions(cls, v: Any) -> Any:
        if v is None:
            return {}
        if isinstance(v, dict):
            return {k: str(val) if isinstance(val, (int, float)) and not isinstance(val, bool) else val
                    for k, val in v.items()}
        return v

    @property
    def timeout_seconds(self) -> float:
        return parse_duration(self.timeout)

    @classmethod
    def from_mapping(cls, data: Any, *, source: str | None = None) -> BuildConfig:
        """Validate raw (parsed YAML/JSON) data, raising ConfigError with every problem found."""
        try:
            return cls.model_validate(data)
        except ValidationError as exc:
            raise ConfigError(problems_from_validation_error(exc), source=source) from exc

    def to_mapping(self) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True, exclude_defaults=True)


# -------------------- Error conversion --------------------

def format_location(loc: tuple) -> str:
    """("steps", 0, "args") -> "steps[0].args" """
    out = ""
    for part in loc:
        if isinstance(part, int):
            out += f"[{part}]"
        elif out:
            out += f".{part}"
        else:
            out = str(part)
    return out


def problems_from_validation_error(exc: ValidationError) -> List[Problem]:
    return [Problem(format_location(tuple(err["loc"])), err["msg"]) for err in exc.errors()]
