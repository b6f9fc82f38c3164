from __future__ import annotations
import os

PROJECT_ID = os.environ.get("BUILDRUN_PROJECT_ID", os.environ.get("CLOUDSDK_CORE_PROJECT", ""))
LOCATION = os.environ.get("BUILDRUN_LOCATION", "global")
LOG_DIR = os.environ.get("BUILDRUN_LOG_DIR", ".buildrun/logs")
DOCKER = os.environ.get("BUILDRUN_DOCKER", "docker")
WORKSPACE = os.environ.get("BUILDRUN_WORKSPACE", ".")
