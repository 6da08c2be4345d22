#!/usr/bin/env python3
"""
Hydrate and apply the management cluster package.

Runs the named tasks (and their prerequisites) that build the management
cluster, install Config Connector into it and tear both down again.

NAME, LOCATION and PROJECT are read from kptconfig/kpt-setter-config.yaml.
Set them with:
    kpt cfg set . name NAME
    kpt cfg set . location LOCATION
    kpt cfg set . gcloud.core.project PROJECT

Usage:
    python3 scripts/manage_cluster.py <task> [<task> ...] [options]

Examples:
    python3 scripts/manage_cluster.py apply-cluster
    python3 scripts/manage_cluster.py create-context apply-kcc
    MGMTCTXT=mgmt python3 scripts/manage_cluster.py apply-kcc --dry-run
    python3 scripts/manage_cluster.py delete-cluster --yes
"""

import argparse
import os
import sys

from mgmt_config import Settings
from mgmt_run import TaskError, log_error, log_info
from mgmt_tasks import GRAPH, TaskContext, run_targets


def is_interactive():
    """Check if running in interactive mode (TTY).

    Can be overridden by NON_INTERACTIVE environment variable.
    """
    if os.getenv("NON_INTERACTIVE", "").lower() in ("1", "true", "yes"):
        return False
    return sys.stdin.isatty()


def list_tasks():
    """Print the available tasks and their prerequisites."""
    print("Available tasks:")
    for name, task in GRAPH.tasks.items():
        deps = f" (after {', '.join(task.deps)})" if task.deps else ""
        print(f"  {name:<16} {task.help}{deps}")


def build_parser():
    parser = argparse.ArgumentParser(
        description="Hydrate and apply the management cluster and Config Connector",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Environment:
  PACKAGE_DIR                 package root (default: current directory)
  BUILD_DIR                   hydrated manifest output (default: manifests/build)
  PACKAGE_CLUSTER_DIR         cluster manifest source
  PACKAGE_CNRM_SERVICES_DIR   Config Connector services source
  PACKAGE_CNRM_IAM_DIR        Config Connector iam source
  PACKAGE_CNRM_SYSTEM_DIR     Config Connector system source
  MGMTCTXT                    kubeconfig context for kubectl commands
  NON_INTERACTIVE             same as --yes
        """
    )
    parser.add_argument(
        "tasks",
        nargs="*",
        metavar="TASK",
        help="Tasks to run, prerequisites are run first"
    )
    parser.add_argument(
        "--list",
        action="store_true",
        help="List available tasks and exit"
    )
    parser.add_argument("--package-dir", help="Package root (overrides PACKAGE_DIR)")
    parser.add_argument("--build-dir", help="Build output directory (overrides BUILD_DIR)")
    parser.add_argument(
        "--config",
        help="Setter config file (default: <package-dir>/kptconfig/kpt-setter-config.yaml)"
    )
    parser.add_argument("--context", help="kubeconfig context (overrides MGMTCTXT)")
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Print the commands without running them"
    )
    parser.add_argument(
        "--strict",
        action="store_true",
        help="Abort when the cluster name is invalid instead of only reporting it"
    )
    parser.add_argument(
        "--yes",
        action="store_true",
        help="Do not prompt before deleting Google Cloud resources"
    )
    parser.add_argument(
        "--pod-creation-timeout",
        type=float,
        default=300.0,
        metavar="SECONDS",
        help="How long apply-kcc waits for Config Connector to report healthy (default: 300)"
    )
    return parser


def main(argv=None):
    """Main entry point. Returns the process exit code."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.list:
        list_tasks()
        return 0
    if not args.tasks:
        parser.print_usage(sys.stderr)
        log_error("No task given. Use --list to see the available tasks.")
        return 2

    settings = Settings.from_env(
        package_dir=args.package_dir,
        build_dir=args.build_dir,
        config_path=args.config,
        context=args.context,
    )
    ctx = TaskContext(
        settings=settings,
        dry_run=args.dry_run,
        strict=args.strict,
        assume_yes=args.yes or not is_interactive(),
        pod_creation_timeout=args.pod_creation_timeout,
    )

    try:
        result = run_targets(args.tasks, ctx)
    except TaskError as e:
        log_error(str(e))
        return e.exit_code
    except KeyboardInterrupt:
        print()
        log_info("🛑 Interrupted")
        return 130

    if not result.ok:
        return result.error.exit_code
    log_info(f"✅ Done: {', '.join(args.tasks)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
