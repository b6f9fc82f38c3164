# substitutions.py
from __future__ import annotations

import logging
import re
import uuid
from fnmatch import fnmatchcase
from pathlib import Path
from typing import Callable, Dict, List, Mapping, Optional, Tuple

from .durations import parse_duration
from .errors import SubstitutionError
from .git_facts.git import repo_facts
from .model import Build, Step
from .schema import BuildConfig, SubstitutionOption

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------
# Substitution syntax
# ---------------------------------------------------------------------
#   $NAME / ${NAME}        -> value of NAME
#   $$                     -> literal "$"
#   ${NAME<op>}            -> bash-style parameter expansion, only with
#                             dynamic substitutions enabled:
#       :offset  :offset:length  :-default
#       #pat  ##pat  %pat  %%pat  /pat/repl  //pat/repl
#   Nesting (${_A:-${_B}}) is not supported.
#
# User substitutions are named _[A-Z0-9_]+; everything else must be one
# of the built-ins below.
# ---------------------------------------------------------------------

BUILTIN_NAMES = (
    "PROJECT_ID",
    "PROJECT_NUMBER",
    "LOCATION",
    "BUILD_ID",
    "COMMIT_SHA",
    "SHORT_SHA",
    "BRANCH_NAME",
    "TAG_NAME",
    "REF_NAME",
    "REPO_NAME",
    "REPO_FULL_NAME",
    "REVISION_ID",
    "SERVICE_ACCOUNT_EMAIL",
)

USER_KEY_RE = re.compile(r"^_[A-Z0-9_]+$")
_REF_RE = re.compile(r"\$(?:(\$)|\{([^}]*)\}|([A-Za-z_][A-Za-z0-9_]*))")
_NAME_RE = re.compile(r"^([A-Za-z_][A-Za-z0-9_]*)(.*)$", re.S)


def is_user_key(key: str) -> bool:
    return bool(USER_KEY_RE.match(key))


def build_builtins(
    *,
    project_id: str = "",
    build_id: str | None = None,
    location: str = "global",
    repo_root: str | Path | None = None,
    use_git: bool = True,
    overrides: Mapping[str, str] | None = None,
) -> Dict[str, str]:
    """
    Values for every built-in substitution.

    Git-derived values (COMMIT_SHA, BRANCH_NAME, ...) come from the local
    checkout when `use_git` is set; anything unknown is the empty string,
    as for a manually submitted build.
    """
    values = {name: "" for name in BUILTIN_NAMES}
    values["PROJECT_ID"] = project_id
    values["BUILD_ID"] = build_id or str(uuid.uuid4())
    values["LOCATION"] = location
    if use_git:
        values.update(repo_facts(repo_root))
    if overrides:
        values.update(overrides)

    sha = values["COMMIT_SHA"]
    values["SHORT_SHA"] = values["SHORT_SHA"] or sha[:7]
    values["REVISION_ID"] = values["REVISION_ID"] or sha
    values["REF_NAME"] = values["REF_NAME"] or values["BRANCH_NAME"] or values["TAG_NAME"]
    return values


# ---------------------------------------------------------------------
# Parameter expansion helpers
# ---------------------------------------------------------------------

def _strip_prefix(value: str, pattern: str, longest: bool) -> str:
    ends = range(len(value), -1, -1) if longest else range(0, len(value) + 1)
    for i in ends:
        if fnmatchcase(value[:i], pattern):
            return value[i:]
    return value


def _strip_suffix(value: str, pattern: str, longest: bool) -> str:
    starts = range(0, len(value) + 1) if longest else range(len(value), -1, -1)
    for i in starts:
        if fnmatchcase(value[i:], pattern):
            return value[:i]
    return value


def _replace(value: str, pattern: str, replacement: str, replace_all: bool) -> str:
    if not pattern:
        return value
    out: List[str] = []
    i = 0
    n = len(value)
    replaced = False
    while i < n:
        if replaced and not replace_all:
            out.append(value[i:])
            break
        match_end = None
        for j in range(n, i, -1):  # longest match first
            if fnmatchcase(value[i:j], pattern):
                match_end = j
                break
        if match_end is None:
            out.append(value[i])
            i += 1
        else:
            out.append(replacement)
            i = match_end
            replaced = True
    return "".join(out)


def _substring(name: str, value: str, spec: str, location: str) -> str:
    parts = spec.split(":")
    if len(parts) > 2:
        raise SubstitutionError(f"invalid substring expansion ${{{name}:{spec}}}", location)
    try:
        offset = int(parts[0].strip() or "0")
        length = int(parts[1].strip()) if len(parts) == 2 else None
    except ValueError:
        raise SubstitutionError(f"invalid substring expansion ${{{name}:{spec}}}", location) from None

    if offset < 0:
        offset = max(len(value) + offset, 0)
    out = value[offset:]
    if length is not None:
        out = out[:length]
    return out


def apply_operator(name: str, value: str, op: str, location: str = "") -> str:
    """Apply a bash-style expansion operator (the text after NAME inside ${...})."""
    if not op:
        return value
    if op.startswith(":-"):
        return value or op[2:]
    if op.startswith(":"):
        return _substring(name, value, op[1:], location)
    if op.startswith("##"):
        return _strip_prefix(value, op[2:], longest=True)
    if op.startswith("#"):
        return _strip_prefix(value, op[1:], longest=False)
    if op.startswith("%%"):
        return _strip_suffix(value, op[2:], longest=True)
    if op.startswith("%"):
        return _strip_suffix(value, op[1:], longest=False)
    if op.startswith("//"):
        pattern, _, replacement = op[2:].partition("/")
        return _replace(value, pattern, replacement, replace_all=True)
    if op.startswith("/"):
        pattern, _, replacement = op[1:].partition("/")
        return _replace(value, pattern, replacement, replace_all=False)
    raise SubstitutionError(f"unsupported expansion ${{{name}{op}}}", location)


# ---------------------------------------------------------------------
# Substitutor
# ---------------------------------------------------------------------

class Substitutor:
    """
    Expands substitution references in strings.

    With `dynamic` set, user substitution values are expanded too (they
    may reference built-ins and each other) and parameter expansion is
    allowed. Without it, values are used literally.
    """

    def __init__(
        self,
        builtins: Mapping[str, str],
        user: Mapping[str, str],
        *,
        dynamic: bool = False,
        option: SubstitutionOption = SubstitutionOption.MUST_MATCH,
    ):
        self.dynamic = dynamic
        self.option = option
        self.used: set[str] = set()
        self._builtins = dict(builtins)
        self._user = dict(user)

        self.values: Dict[str, str] = dict(self._builtins)
        if dynamic:
            resolved: Dict[str, str] = {}
            for key in self._user:
                self.values[key] = self._resolve_user(key, resolved, ())
        else:
            self.values.update(self._user)

    def _resolve_user(self, key: str, resolved: Dict[str, str], stack: Tuple[str, ...]) -> str:
        if key in resolved:
            return resolved[key]
        if key in stack:
            chain = " -> ".join(stack + (key,))
            raise SubstitutionError(f"substitution cycle: {chain}", f"substitutions.{key}")

        def lookup(name: str) -> Optional[str]:
            if name in self._user:
                return self._resolve_user(name, resolved, stack + (key,))
            return self._builtins.get(name)

        value = self._expand(self._user[key], lookup, f"substitutions.{key}")
        resolved[key] = value
        return value

    def _expand(self, text: str, lookup: Callable[[str], Optional[str]], location: str) -> str:
        def repl(m: re.Match) -> str:
            if m.group(1) is not None:
                return "$"
            if m.group(3) is not None:
                name, op = m.group(3), ""
            else:
                inner = m.group(2)
                if "{" in inner:
                    raise SubstitutionError(f"nested substitutions are not supported: ${{{inner}}}", location)
                nm = _NAME_RE.match(inner)
                if not nm:
                    raise SubstitutionError(f"invalid substitution ${{{inner}}}", location)
                name, op = nm.group(1), nm.group(2)
                if op and not self.dynamic:
                    raise SubstitutionError(
                        f"${{{inner}}} uses parameter expansion, which needs dynamic substitutions enabled",
                        location,
                    )

            self.used.add(name)
            value = lookup(name)
            if value is None:
                if self.option is SubstitutionOption.MUST_MATCH and not op.startswith(":-"):
                    raise SubstitutionError(
                        f"{name} is not a built-in substitution or a defined user substitution "
                        f"(escape a literal $ as $$)",
                        location,
                    )
                value = ""
            return apply_operator(name, value, op, location)

        return _REF_RE.sub(repl, text)

    def expand(self, text: str, location: str = "") -> str:
        return self._expand(text, self.values.get, location)

    def unused_user_keys(self) -> List[str]:
        return [k for k in self._user if k not in self.used]


# ---------------------------------------------------------------------
# Whole-config resolution
# ---------------------------------------------------------------------

def _env_dict(entries: List[str]) -> Dict[str, str]:
    env: Dict[str, str] = {}
    for entry in entries:
        key, _, value = entry.partition("=")
        env[key] = value
    return env


def resolve_config(
    config: BuildConfig,
    builtins: Mapping[str, str],
    overrides: Mapping[str, str] | None = None,
) -> Build:
    """
    Apply substitutions to a config and produce a runnable Build.

    `overrides` replace the config's default user substitution values.
    """
    user = dict(config.substitutions)
    for key, value in (overrides or {}).items():
        if not is_user_key(key):
            raise SubstitutionError(
                f"{key!r} is not a valid user substitution name (expected _[A-Z0-9_]+)",
                "--substitutions",
            )
        user[key] = value

    opts = config.options
    sub = Substitutor(builtins, user, dynamic=opts.dynamic_substitutions, option=opts.substitution_option)

    options_env = [sub.expand(e, f"options.env[{i}]") for i, e in enumerate(opts.env)]
    options_volumes = [(v.name, v.path) for v in opts.volumes]

    steps: List[Step] = []
    for index, raw in enumerate(config.steps):
        loc = f"steps[{index}]"
        env = _env_dict(options_env)
        env.update(_env_dict([sub.expand(e, f"{loc}.env[{i}]") for i, e in enumerate(raw.env)]))
        if opts.automap_substitutions or raw.automap_substitutions:
            for key, value in sub.values.items():
                env.setdefault(key, value)

        steps.append(
            Step(
                index=index,
                id=raw.step_id(index),
                image=sub.expand(raw.name, f"{loc}.name"),
                args=tuple(sub.expand(a, f"{loc}.args[{i}]") for i, a in enumerate(raw.args)),
                dir=sub.expand(raw.dir, f"{loc}.dir") if raw.dir else None,
                entrypoint=sub.expand(raw.entrypoint, f"{loc}.entrypoint") if raw.entrypoint else None,
                env=env,
                wait_for=tuple(raw.wait_for),
                timeout=parse_duration(raw.timeout) if raw.timeout else None,
                script=raw.script,
                volumes=tuple(options_volumes + [(v.name, v.path) for v in raw.volumes]),
                allow_failure=raw.allow_failure,
                allow_exit_codes=tuple(raw.allow_exit_codes),
                has_explicit_id=raw.id is not None,
            )
        )

    logs_bucket = sub.expand(config.logs_bucket, "logsBucket") if config.logs_bucket else None
    images = [sub.expand(img, f"images[{i}]") for i, img in enumerate(config.images)]
    tags = [sub.expand(tag, f"tags[{i}]") for i, tag in enumerate(config.tags)]

    if opts.substitution_option is SubstitutionOption.MUST_MATCH:
        unused = sub.unused_user_keys()
        if unused:
            raise SubstitutionError(
                f"user substitutions defined but never used: {', '.join(unused)} "
                f"(set options.substitutionOption: ALLOW_LOOSE to permit this)",
                "substitutions",
            )

    build = Build(
        build_id=builtins.get("BUILD_ID") or str(uuid.uuid4()),
        steps=steps,
        timeout=config.timeout_seconds,
        substitutions=dict(sub.values),
        logs_bucket=logs_bucket,
        machine_type=opts.machine_type.value,
        logging=opts.logging.value,
        images=images,
        tags=tags,
    )
    logger.debug("Resolved build %s with %d step(s)", build.build_id, len(steps))
    return build
