"""Settings and cluster configuration for the management cluster tasks."""

import os
import re
from dataclasses import dataclass, fields
from pathlib import Path
from typing import List, Optional, Tuple

import yaml

from mgmt_run import TaskError

# All Google Cloud resources must have a valid name. The strictest one is
# $NAME-cnrm-system, a service account name, so NAME is at most 18 characters.
CLUSTER_NAME_PATTERN = re.compile(r"^[a-z][-a-z0-9]{0,16}[a-z0-9]$")

# Values kpt writes before `kpt cfg set` has been run
SENTINELS = {
    "name": "NAME",
    "location": "LOCATION",
    "project": "PROJECT",
}

SETTER_CONFIG = Path("kptconfig") / "kpt-setter-config.yaml"
DEFAULT_BUILD_DIR = Path("manifests") / "build"


class ConfigError(TaskError):
    """Configuration is missing, unreadable or invalid."""

    exit_code = 2


@dataclass(frozen=True)
class ClusterConfig:
    """The three setter values of the management cluster package."""

    name: str
    location: str
    project: str

    @property
    def service_account(self) -> str:
        return f"{self.name}-cnrm-system@{self.project}.iam.gserviceaccount.com"

    def unset_fields(self) -> List[str]:
        """Return fields still holding their placeholder or no value."""
        unset = []
        for field in fields(self):
            value = getattr(self, field.name)
            if not value or value == SENTINELS[field.name]:
                unset.append(field.name)
        return unset


def validate_cluster_name(name: str) -> Tuple[bool, str]:
    """Validate the management cluster name."""
    if CLUSTER_NAME_PATTERN.fullmatch(name):
        return True, f'The management cluster name "{name}" is valid.'
    return False, (
        f'The management cluster name "{name}" may contain only lowercase '
        'alphanumerics and "-", must start with a letter and end with an '
        "alphanumeric, and no longer than 18 characters."
    )


def _as_str(value) -> str:
    if value is None:
        return ""
    return str(value).strip()


def load_cluster_config(path: Path) -> ClusterConfig:
    """Read name, location and project from the kpt setter config."""
    try:
        with open(path, "r") as f:
            content = yaml.safe_load(f)
    except FileNotFoundError:
        raise ConfigError(f"Setter config not found: {path}")
    except yaml.YAMLError as e:
        raise ConfigError(f"Failed to parse {path}: {e}")

    if not isinstance(content, dict):
        raise ConfigError(f"Invalid setter config structure in {path}")
    data = content.get("data") or {}
    if not isinstance(data, dict):
        raise ConfigError(f"Invalid 'data' section in {path}")

    return ClusterConfig(
        name=_as_str(data.get("name")),
        location=_as_str(data.get("location")),
        project=_as_str(data.get("gcloud.core.project")),
    )


def require_values(config: ClusterConfig) -> None:
    """Abort if any setter value has not been set."""
    unset = config.unset_fields()
    if unset:
        raise ConfigError(
            f"Either of NAME, LOCATION, PROJECT values not set ({', '.join(unset)}). "
            "Please set them via command `kpt cfg set`."
        )


@dataclass(frozen=True)
class Settings:
    """Directories and kube context used by the tasks.

    Source dirs can point at ./instance/... overlays so users can add
    kustomize patches on top of the base package.
    """

    package_dir: Path
    build_dir: Path
    cluster_dir: Path
    cnrm_services_dir: Path
    cnrm_iam_dir: Path
    cnrm_system_dir: Path
    config_path: Path
    context: Optional[str] = None

    @classmethod
    def from_env(
        cls,
        environ=None,
        package_dir: Optional[str] = None,
        build_dir: Optional[str] = None,
        config_path: Optional[str] = None,
        context: Optional[str] = None,
    ) -> "Settings":
        """Build settings from environment variables, CLI values winning."""
        env = os.environ if environ is None else environ
        package = Path(package_dir or env.get("PACKAGE_DIR") or os.getcwd())

        def source(var: str, default: Path) -> Path:
            value = env.get(var)
            return Path(value) if value else package / default

        return cls(
            package_dir=package,
            build_dir=Path(build_dir or env.get("BUILD_DIR") or DEFAULT_BUILD_DIR),
            cluster_dir=source("PACKAGE_CLUSTER_DIR", Path("manifests/cluster")),
            cnrm_services_dir=source(
                "PACKAGE_CNRM_SERVICES_DIR", Path("manifests/cnrm-install/services")
            ),
            cnrm_iam_dir=source("PACKAGE_CNRM_IAM_DIR", Path("manifests/cnrm-install/iam")),
            cnrm_system_dir=source(
                "PACKAGE_CNRM_SYSTEM_DIR", Path("manifests/cnrm-install/install-system")
            ),
            config_path=Path(config_path) if config_path else package / SETTER_CONFIG,
            context=context or env.get("MGMTCTXT") or None,
        )

    @property
    def cluster_build_dir(self) -> Path:
        return self.build_dir / "cluster"

    @property
    def cnrm_services_build_dir(self) -> Path:
        return self.build_dir / "cnrm-install-services"

    @property
    def cnrm_iam_build_dir(self) -> Path:
        return self.build_dir / "cnrm-install-iam"

    @property
    def cnrm_system_build_dir(self) -> Path:
        return self.build_dir / "cnrm-install-system"

    def kubectl(self, *args: str) -> List[str]:
        """kubectl command line, pinned to MGMTCTXT when one is set."""
        cmd = ["kubectl"]
        if self.context:
            cmd.append(f"--context={self.context}")
        cmd.extend(args)
        return cmd
