# executors.py
from __future__ import annotations

import logging
import posixpath
import re
import shlex
import subprocess
import threading
from collections import deque
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Set

from .errors import TOOL_HINTS, BuildError
from .model import Build, Step

logger = logging.getLogger(__name__)

WORKSPACE = "/workspace"
BUILDER_HOME = "/builder/home"
DOCKER_SOCKET = "/var/run/docker.sock"

Sink = Callable[[str], None]


@dataclass
class StepOutcome:
    exit_code: int
    timed_out: bool = False
    output_tail: str = ""


def _docker_name(build: Build, suffix: str) -> str:
    # container and volume names: [a-zA-Z0-9][a-zA-Z0-9_.-]*
    raw = f"buildrun-{build.build_id[:12]}-{suffix}"
    return re.sub(r"[^a-zA-Z0-9_.-]", "-", raw)


# ---------------------------------------------------------------------
# Docker execution
# ---------------------------------------------------------------------

class DockerExecutor:
    """
    Runs each step as its own `docker run` container.

    The workspace is bind-mounted at /workspace, /builder/home is a named
    volume shared by every step of the build, and the host docker socket
    is mounted so builder images that drive docker themselves work.
    """

    def __init__(
        self,
        workspace: str | Path = ".",
        *,
        docker: str = "docker",
        mount_docker_socket: bool = True,
        network: str | None = None,
    ):
        self.workspace = Path(workspace).resolve()
        self.docker = docker
        self.mount_docker_socket = mount_docker_socket
        self.network = network
        self._volumes: Set[str] = set()
        self._lock = threading.Lock()

    # ---- checks ----

    def check_available(self) -> None:
        """Check if Docker is available, raise a helpful error if not."""
        try:
            subprocess.run([self.docker, "--version"], capture_output=True, check=True)
        except (subprocess.CalledProcessError, FileNotFoundError):
            raise BuildError(
                kind="docker_unavailable",
                message="Docker is not available",
                details={"hint": TOOL_HINTS["docker"]},
            ) from None

    def pull(self, image: str) -> None:
        proc = subprocess.run([self.docker, "pull", image], capture_output=True, text=True)
        if proc.returncode != 0:
            raise BuildError(
                kind="image_pull",
                message=f"failed to pull image {image}",
                details={"exit_code": proc.returncode, "stderr": (proc.stderr or "").strip()[-2000:]},
            )

    # ---- command building ----

    def container_name(self, build: Build, step: Step) -> str:
        return _docker_name(build, f"step-{step.index}")

    def workdir(self, step: Step) -> str:
        if not step.dir:
            return WORKSPACE
        if posixpath.isabs(step.dir):
            return posixpath.normpath(step.dir)
        return posixpath.normpath(posixpath.join(WORKSPACE, step.dir))

    def command_for(self, build: Build, step: Step) -> List[str]:
        """The full `docker run` argv for a step."""
        cmd = [self.docker, "run", "--rm", "--name", self.container_name(build, step)]

        if self.network:
            cmd.extend(["--network", self.network])

        cmd.extend(["-v", f"{self.workspace}:{WORKSPACE}"])
        cmd.extend(["-v", f"{_docker_name(build, 'home')}:{BUILDER_HOME}"])
        if self.mount_docker_socket:
            cmd.extend(["-v", f"{DOCKER_SOCKET}:{DOCKER_SOCKET}"])
        for volume_name, path in step.volumes:
            cmd.extend(["-v", f"{_docker_name(build, volume_name)}:{path}"])

        cmd.extend(["-w", self.workdir(step)])

        env = {"HOME": BUILDER_HOME}
        env.update(step.env)
        for key, value in env.items():
            cmd.extend(["-e", f"{key}={value}"])

        args = list(step.args)
        if step.script is not None:
            cmd.extend(["--entrypoint", step.entrypoint or "bash"])
            args = ["-c", step.script]
        elif step.entrypoint:
            cmd.extend(["--entrypoint", step.entrypoint])

        cmd.append(step.image)
        cmd.extend(args)
        return cmd

    def _volume_names(self, build: Build, step: Step) -> List[str]:
        return [_docker_name(build, "home")] + [_docker_name(build, name) for name, _ in step.volumes]

    # ---- execution ----

    def run_step(self, build: Build, step: Step, *, timeout: float | None, sink: Sink) -> StepOutcome:
        cmd = self.command_for(build, step)
        with self._lock:
            self._volumes.update(self._volume_names(build, step))
        logger.debug("Running %s", shlex.join(cmd))

        proc = subprocess.Popen(
            cmd,
            cwd=str(self.workspace),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            bufsize=1,
        )
        tail: deque[str] = deque(maxlen=50)

        def pump() -> None:
            for line in proc.stdout:
                line = line.rstrip("\n")
                tail.append(line)
                sink(line)

        reader = threading.Thread(target=pump, daemon=True)
        reader.start()

        timed_out = False
        try:
            exit_code = proc.wait(timeout=timeout)
        except subprocess.TimeoutExpired:
            timed_out = True
            # killing the client does not stop the container
            subprocess.run([self.docker, "kill", self.container_name(build, step)], capture_output=True)
            proc.kill()
            exit_code = proc.wait()

        reader.join(timeout=5)
        return StepOutcome(exit_code=exit_code, timed_out=timed_out, output_tail="\n".join(tail))

    def cleanup(self, build: Build) -> None:
        """Remove the named volumes created for this build."""
        with self._lock:
            names = sorted(self._volumes)
            self._volumes.clear()
        if names:
            proc = subprocess.run([self.docker, "volume", "rm", "-f", *names], capture_output=True, text=True)
            if proc.returncode != 0:
                logger.warning("Could not remove volumes %s: %s", names, (proc.stderr or "").strip())


# ---------------------------------------------------------------------
# Dry run
# ---------------------------------------------------------------------

class DryRunExecutor(DockerExecutor):
    """Prints the docker commands a build would run, without running them."""

    def __init__(self, workspace: str | Path = ".", **kwargs):
        super().__init__(workspace, **kwargs)
        self.commands: List[List[str]] = []

    def check_available(self) -> None:
        return None

    def pull(self, image: str) -> None:
        self.commands.append([self.docker, "pull", image])

    def run_step(self, build: Build, step: Step, *, timeout: float | None, sink: Sink) -> StepOutcome:
        cmd = self.command_for(build, step)
        self.commands.append(cmd)
        sink(f"$ {shlex.join(cmd)}")
        return StepOutcome(exit_code=0)

    def cleanup(self, build: Build) -> None:
        return None
