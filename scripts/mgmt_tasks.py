"""
Management cluster tasks.

Each task hydrates or applies one part of the management cluster package:
- cluster: the GKE cluster itself (kustomize + anthoscli)
- kcc: Config Connector, installed according to
  https://cloud.google.com/config-connector/docs/how-to/advanced-install
- teardown: uninstalling Config Connector and deleting the cluster

Google Cloud resources managed by Config Connector are never deleted here.
"""

import shutil
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import List, Optional

from mgmt_config import (
    ClusterConfig,
    ConfigError,
    Settings,
    load_cluster_config,
    require_values,
    validate_cluster_name,
)
from mgmt_graph import RunResult, Task, TaskGraph, run_plan
from mgmt_run import (
    MissingCommand,
    TaskError,
    check_command,
    log_info,
    log_warn,
    run_command,
)

OPERATOR_NAMESPACE = "configconnector-operator-system"
CNRM_NAMESPACE = "cnrm-system"
READY_TIMEOUT = "5m"

# Files kustomize writes for namespaces and CRDs, applied before everything else
PRIORITY_PATTERNS = ("*_namespace_*.yaml", "*_customresourcedefinition_*.yaml")


@dataclass(frozen=True)
class TaskContext:
    settings: Settings
    config: Optional[ClusterConfig] = None
    dry_run: bool = False
    strict: bool = False
    assume_yes: bool = False
    pod_creation_timeout: float = 300.0


GRAPH = TaskGraph()


def task(name, deps=(), needs_config=False, tools=()):
    """Register the decorated function as a named task."""
    def decorator(func):
        doc = (func.__doc__ or "").strip()
        GRAPH.add(Task(
            name=name,
            func=func,
            deps=tuple(deps),
            needs_config=needs_config,
            tools=tuple(tools),
            help=doc.splitlines()[0] if doc else "",
        ))
        return func
    return decorator


def remove_path(path: Path) -> None:
    """rm -rf: directories recursively, files and symlinks directly."""
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def reset_dir(ctx: TaskContext, path: Path) -> None:
    """Delete and recreate a build directory.

    Resources removed from the manifests must not survive in the output.
    """
    if ctx.dry_run:
        print(f"[DRY-RUN] rm -rf {path} && mkdir -p {path}")
        return
    try:
        remove_path(path)
        path.mkdir(parents=True)
    except OSError as e:
        raise TaskError(f"Failed to reset {path}: {e}")


def kustomize_build(ctx: TaskContext, source: Path, output: Path) -> None:
    run_command(["kustomize", "build", "-o", str(output), str(source)], dry_run=ctx.dry_run)


def anthoscli_apply(ctx: TaskContext, path: Path) -> None:
    run_command(["anthoscli", "apply", "-f", str(path)], dry_run=ctx.dry_run)


def priority_manifests(directory: Path) -> List[Path]:
    """Namespace files first, then CRD files, each group in sorted order."""
    if not directory.is_dir():
        return []
    found = []
    for pattern in PRIORITY_PATTERNS:
        for path in sorted(directory.rglob(pattern)):
            if path not in found:
                found.append(path)
    return found


def wait_for_ready(ctx: TaskContext, namespace: str) -> None:
    log_info(f"Waiting until pods in {namespace} are ready...")
    run_command(
        ctx.settings.kubectl(
            "wait", "-n", namespace, "--for=condition=Ready", "pod", "--all",
            "--timeout", READY_TIMEOUT,
        ),
        dry_run=ctx.dry_run,
    )


def wait_for_configconnector_healthy(
    ctx: TaskContext,
    timeout: float,
    interval: float = 2.0,
    max_interval: float = 15.0,
) -> None:
    """Poll until every ConfigConnector object reports status.healthy=true.

    The operator sets healthy once it has created all cnrm-system
    workloads. Until then `kubectl wait --all` in cnrm-system would only
    cover the pods that happen to exist.
    """
    cmd = ctx.settings.kubectl(
        "get", "configconnector", "-o", "jsonpath={.items[*].status.healthy}"
    )
    if ctx.dry_run:
        run_command(cmd, dry_run=True)
        return

    deadline = time.monotonic() + timeout
    delay = interval
    while True:
        result = run_command(cmd, check=False, capture_output=True)
        statuses = result.stdout.split() if result.returncode == 0 else []
        if statuses and all(status == "true" for status in statuses):
            log_info(f"✅ Config Connector reports healthy ({len(statuses)} object(s))")
            return
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            raise TaskError(f"Config Connector not healthy after {timeout:.0f}s")
        wait = min(delay, remaining)
        log_info(f"Config Connector not healthy yet, retrying in {wait:.0f}s...")
        time.sleep(wait)
        delay = min(delay * 2, max_interval)


@task("validate-values", needs_config=True)
def validate_values(ctx: TaskContext) -> None:
    """Check the management cluster name is usable for Google Cloud resources."""
    is_valid, msg = validate_cluster_name(ctx.config.name)
    if is_valid:
        log_info(msg)
        return
    if ctx.strict:
        raise ConfigError(msg)
    log_warn(msg)


@task("hydrate-cluster", deps=["validate-values"], needs_config=True, tools=["kustomize"])
def hydrate_cluster(ctx: TaskContext) -> None:
    """Render the cluster manifests into the build directory."""
    settings = ctx.settings
    reset_dir(ctx, settings.cluster_build_dir)
    kustomize_build(ctx, settings.cluster_dir, settings.cluster_build_dir)


@task("apply-cluster", deps=["hydrate-cluster"], needs_config=True, tools=["anthoscli"])
def apply_cluster(ctx: TaskContext) -> None:
    """Create or update the management cluster."""
    anthoscli_apply(ctx, ctx.settings.cluster_build_dir)


@task("create-context", deps=["validate-values"], needs_config=True)
def create_context(ctx: TaskContext) -> None:
    """Create a kubeconfig context for the management cluster."""
    config = ctx.config
    script = ctx.settings.package_dir / "hack" / "create_context.sh"
    run_command(
        [str(script)],
        env={"PROJECT": config.project, "REGION": config.location, "NAME": config.name},
        dry_run=ctx.dry_run,
    )


@task("hydrate-kcc", deps=["validate-values"], needs_config=True, tools=["kustomize"])
def hydrate_kcc(ctx: TaskContext) -> None:
    """Render the Config Connector manifests (services, iam, system)."""
    settings = ctx.settings
    groups = [
        (settings.cnrm_services_dir, settings.cnrm_services_build_dir),
        (settings.cnrm_iam_dir, settings.cnrm_iam_build_dir),
        (settings.cnrm_system_dir, settings.cnrm_system_build_dir),
    ]
    for _, output in groups:
        reset_dir(ctx, output)
    for source, output in groups:
        kustomize_build(ctx, source, output)


@task("apply-kcc", deps=["hydrate-kcc"], needs_config=True, tools=["anthoscli", "kubectl"])
def apply_kcc(ctx: TaskContext) -> None:
    """Install Config Connector and wait until it is ready."""
    settings = ctx.settings

    log_info("📋 Enabling services required by Config Connector...")
    anthoscli_apply(ctx, settings.cnrm_services_build_dir)

    log_info("📋 Applying Google service account and workload identity binding...")
    anthoscli_apply(ctx, settings.cnrm_iam_build_dir)

    system_dir = settings.cnrm_system_build_dir
    log_info("📋 Applying namespaces and CRDs...")
    manifests = priority_manifests(system_dir)
    if ctx.dry_run and not manifests:
        placeholder = f"<namespace and CRD files under {system_dir}>"
        print(f"[DRY-RUN] {' '.join(settings.kubectl('apply', '-f', placeholder))}")
    for manifest in manifests:
        run_command(settings.kubectl("apply", "-f", str(manifest)), dry_run=ctx.dry_run)

    log_info("📋 Deploying Config Connector...")
    run_command(settings.kubectl("apply", "-f", str(system_dir)), dry_run=ctx.dry_run)

    wait_for_ready(ctx, OPERATOR_NAMESPACE)
    wait_for_configconnector_healthy(ctx, ctx.pod_creation_timeout)
    wait_for_ready(ctx, CNRM_NAMESPACE)
    log_info("✅ Config Connector is ready")


@task("uninstall-kcc", tools=["kubectl"])
def uninstall_kcc(ctx: TaskContext) -> None:
    """Uninstall Config Connector and all cnrm resources in the cluster.

    Google Cloud resources managed by Config Connector are kept and can be
    acquired again by another Config Connector. Only works for Config
    Connector installed via the operator.
    """
    run_command(
        ctx.settings.kubectl("delete", "configconnector", "--all"),
        dry_run=ctx.dry_run,
    )


@task("delete-cluster", deps=["validate-values"], needs_config=True, tools=["gcloud"])
def delete_cluster(ctx: TaskContext) -> None:
    """Delete the management cluster and its Config Connector service account.

    Failures are tolerated, the resources may already be gone.
    """
    config = ctx.config
    gcloud = ["gcloud"]
    if ctx.assume_yes:
        gcloud.append("--quiet")
    gcloud.append(f"--project={config.project}")

    result = run_command(
        gcloud + ["iam", "service-accounts", "delete", config.service_account],
        check=False,
        dry_run=ctx.dry_run,
    )
    if result.returncode != 0:
        log_warn(f"⚠️  Service account {config.service_account} not deleted (it may not exist)")

    result = run_command(
        gcloud + ["container", "clusters", "delete", f"--region={config.location}", config.name],
        check=False,
        dry_run=ctx.dry_run,
    )
    if result.returncode != 0:
        log_warn(f"⚠️  Cluster {config.name} not deleted (it may not exist)")
    else:
        log_info(f"✅ Deleted cluster {config.name}")


@task("clean")
def clean(ctx: TaskContext) -> None:
    """Delete the build directory."""
    build_dir = ctx.settings.build_dir
    if ctx.dry_run:
        print(f"[DRY-RUN] rm -rf {build_dir}")
        return
    try:
        remove_path(build_dir)
    except OSError as e:
        raise TaskError(f"Failed to remove {build_dir}: {e}")
    log_info(f"🧹 Removed {build_dir}")


@task("check-deps")
def check_deps(ctx: TaskContext) -> None:
    """Check the external tools used by the tasks are installed."""
    tools = sorted({tool for t in GRAPH.tasks.values() for tool in t.tools})
    missing = []
    for tool in tools:
        if check_command(tool):
            log_info(f"✅ {tool} is installed")
        else:
            log_warn(f"❌ {tool} is not installed")
            missing.append(tool)
    if missing:
        raise MissingCommand(f"Missing tools: {', '.join(missing)}")


def run_targets(targets: List[str], ctx: TaskContext) -> RunResult:
    """Run the targets and their prerequisites.

    The setter config is read once, and only when a planned task needs it.
    Unset values abort before any external tool runs.
    """
    plan = GRAPH.plan(targets)
    log_info(f"Plan: {' -> '.join(t.name for t in plan)}")

    if any(t.needs_config for t in plan):
        config = load_cluster_config(ctx.settings.config_path)
        require_values(config)
        ctx = replace(ctx, config=config)
        log_info(
            f"Management cluster: name={config.name} "
            f"location={config.location} project={config.project}"
        )

    return run_plan(plan, ctx, check_tools=not ctx.dry_run)
