#!/usr/bin/env python3
"""CLI entry point for the node provisioner.

Noun commands:
- setup <target>:     run the target's setup workflow
- teardown <target>:  run the target's teardown workflow
- rollback <target>:  roll back the target's setup workflow
- list:               show available targets

Examples:
    provisioner setup node
    provisioner setup alloy --config lab.yaml --output report.yaml
    provisioner teardown bind-mounts --format markdown
"""

import argparse
import logging
import signal
import sys
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Optional

from common import ExecutionContext
from config import ConfigError, load_config
from errors import StepError
from reporting import Report
from runtime import Runtime
from scenarios import SCENARIOS, get_scenario, list_scenarios, preview
from workflow import ExecutionMode, StateStore, Workflow

NOUN_COMMANDS = {
    "setup": "Run a target's setup workflow",
    "teardown": "Run a target's teardown workflow",
    "rollback": "Undo what an earlier setup of a target changed",
    "list": "List available targets",
}

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%Y-%m-%d %H:%M:%S'
)
logger = logging.getLogger(__name__)


def get_version() -> str:
    try:
        return version('node-provisioner')
    except PackageNotFoundError:
        return 'dev'


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='provisioner',
        description='Provision a Kubernetes node with reversible, idempotent steps'
    )
    parser.add_argument('--version', action='version', version=f'provisioner {get_version()}')
    sub = parser.add_subparsers(dest='command', metavar='<command>')

    for noun in ('setup', 'teardown', 'rollback'):
        p = sub.add_parser(noun, help=NOUN_COMMANDS[noun])
        p.add_argument('target', help=f"Target name. Available: {', '.join(list_scenarios())}")
        p.add_argument('--config', '-c', type=Path,
                       help='Config file (default: $PROVISIONER_CONFIG or /etc/provisioner/config.yaml)')
        p.add_argument('--output', '-o', type=Path, help='Write the report to FILE instead of stdout')
        p.add_argument('--format', '-f', choices=['yaml', 'json', 'markdown'], default='yaml',
                       help='Report format (default: yaml)')
        p.add_argument('--mode', choices=[m.value for m in ExecutionMode],
                       help='Failure handling for every workflow (default: per workflow, usually rollback)')
        p.add_argument('--verbose', '-v', action='store_true', help='Enable debug logging')
        p.add_argument('--dry-run', action='store_true', help='Print the step tree without running')

    sub.add_parser('list', help=NOUN_COMMANDS['list'])
    return parser


def print_targets() -> None:
    print("Available targets:")
    for name in list_scenarios():
        scenario = SCENARIOS[name]
        teardown = ' (teardown)' if scenario.teardown else ''
        print(f"  {name:<14} {scenario.description}{teardown}")


def install_signal_handlers(ctx: ExecutionContext) -> None:
    """SIGINT/SIGTERM cancel the run; in-flight steps stop and compensate."""
    def handler(signum, _frame):
        logger.warning(f"Received {signal.Signals(signum).name}, cancelling...")
        ctx.cancel()

    signal.signal(signal.SIGINT, handler)
    signal.signal(signal.SIGTERM, handler)


def build_workflow(command: str, target: str, runtime: Runtime, mode: Optional[str]) -> Workflow:
    scenario = get_scenario(target)
    builder_fn = scenario.teardown if command == 'teardown' else scenario.setup
    if builder_fn is None:
        raise ValueError(f"Target '{target}' has no teardown")
    workflow = builder_fn(runtime).build()
    if not isinstance(workflow, Workflow):
        raise ValueError(f"Target '{target}' did not build a workflow")
    if mode:
        workflow.apply_mode(ExecutionMode(mode))
    return workflow


def emit_report(report: Report, fmt: str, output: Optional[Path]) -> None:
    if output:
        report.write(output, fmt)
        logger.info(f"Report written to {output}")
    else:
        sys.stdout.write(report.render(fmt))
        sys.stdout.flush()


def run(args) -> int:
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)

    try:
        config = load_config(args.config)
    except ConfigError as e:
        logger.error(f"Configuration error: {e}")
        return 1

    runtime = Runtime.from_config(config)
    try:
        workflow = build_workflow(args.command, args.target, runtime, args.mode)
    except (ValueError, StepError) as e:
        logger.error(str(e))
        return 1

    if args.dry_run:
        preview(workflow)
        return 0

    store = StateStore(runtime.config.paths.state_dir)
    if args.command == 'rollback' and not store.exists(workflow.id):
        logger.error(f"No recorded setup of '{args.target}' in {store.state_dir}, nothing to roll back")
        return 1

    ctx = ExecutionContext()
    install_signal_handlers(ctx)

    logger.info(f"Starting {args.command} of '{args.target}' ({workflow.id})")
    if args.command == 'rollback':
        store.restore(workflow)
        report = workflow.rollback(ctx)
        store.save(workflow, merge=False)
    else:
        report = workflow.execute(ctx)
        if args.command == 'setup':
            store.save(workflow)

    emit_report(report, args.format, args.output)
    if report.failed:
        logger.error(f"{workflow.id} failed: {report.error}")
        return 1
    logger.info(f"{workflow.id} finished: {report.status.value}")
    return 0


def main(argv: Optional[list[str]] = None) -> int:
    """CLI entry point."""
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.command is None:
        parser.print_help()
        return 0
    if args.command == 'list':
        print_targets()
        return 0
    return run(args)


if __name__ == '__main__':
    sys.exit(main())
