from .loader import load_config
from .model import Build, BuildResult, Step, StepResult
from .runner import run_build
from .schema import BuildConfig
from .substitutions import build_builtins, resolve_config
from .validate import check_config, validate_config

__all__ = [
    "load_config",
    "Build",
    "BuildResult",
    "Step",
    "StepResult",
    "run_build",
    "BuildConfig",
    "build_builtins",
    "resolve_config",
    "check_config",
    "validate_config",
]
__version__ = "0.1.0"
