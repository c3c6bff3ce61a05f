#!/usr/bin/env python3
"""
workflow-gate CLI

Hook commands read one JSON payload from stdin and write their answer to
stdout; logging goes to stderr so it never corrupts the protocol.

Usage:
    workflow-gate gate < payload.json       # pre-invocation decision
    workflow-gate post < payload.json       # all post-invocation steps
    workflow-gate report                    # delegation statistics
    workflow-gate status [--json]
    workflow-gate reset [--change-id ID]
    workflow-gate tasks [FILE] [--json]
"""

import argparse
import json
import logging
import sys
from pathlib import Path

from . import __version__
from .config import ConfigManager, GateConfig
from .hooks import HANDLERS, HookRunner, run_hook
from .schema import GateDecision
from .tasks import TaskSynchronizer, format_todo_sync, task_statistics

logger = logging.getLogger(__name__)


def configure_logging(config: GateConfig) -> None:
    level = logging.DEBUG if config.logging.debug else getattr(
        logging, config.logging.level.upper(), logging.WARNING)
    logging.basicConfig(
        level=level,
        stream=sys.stderr,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def load_runtime(args) -> HookRunner:
    """Resolve the configuration once and build the components."""
    manager = ConfigManager(Path(args.config) if args.config else None)
    config = manager.get()
    configure_logging(config)

    is_valid, errors = manager.validate()
    if not is_valid:
        for error in errors:
            logger.warning("Configuration: %s", error)

    return HookRunner(config, project_path=Path(args.dir).resolve())


def cmd_hook(args):
    """Run a hook handler against the payload on stdin."""
    try:
        runner = load_runtime(args)
    except Exception:
        logger.exception("Hook %s could not start", args.command)
        if args.command == "gate":
            print(json.dumps(GateDecision.allow().to_output()))
        return
    output = run_hook(args.command, runner)
    if output:
        print(output)


def cmd_report(args):
    """Print the delegation statistics report."""
    runner = load_runtime(args)
    print(runner.handle_report())


def cmd_status(args):
    """Show the current workflow state."""
    runner = load_runtime(args)
    state = runner.store.load()

    if args.json:
        print(json.dumps(state.to_document(), indent=2, ensure_ascii=False))
        return

    task = state.task
    counters = state.delegation_counters
    print("=" * 60)
    print(f"Phase:    {state.phase.value}"
          + (f" (from {state.previous_phase.value})" if state.previous_phase else ""))
    print(f"Change:   {state.change_id or '-'}")
    print(f"Task:     {task.current or '-'}  "
          f"[reviewed={task.reviewed} tested={task.tested} testFailed={task.test_failed}]")
    if state.task_sync_info.tasks_file:
        info = state.task_sync_info
        print(f"Tasks:    {info.completed}/{info.total_tasks} completed, "
              f"{info.in_progress} in progress ({info.tasks_file})")
    print(f"Counters: delegated={counters.delegated} directEdits={counters.direct_edits} "
          f"blocked={counters.blocked} bypassed={counters.bypassed}")
    if state.completion.checklist:
        unmet = state.completion.unmet_items()
        print(f"Closing:  {'done' if state.completion.all_required_done else 'pending: ' + ', '.join(unmet)}")
    print("=" * 60)


def cmd_reset(args):
    """Reset the workflow to IDLE, keeping the delegation counters."""
    runner = load_runtime(args)
    if args.change_id:
        state = runner.store.load()
        state.start_change(args.change_id)
        runner.store.save(state)
    else:
        state = runner.store.reset()
    print(f"Workflow reset to {state.phase.value}"
          + (f" for change {state.change_id}" if state.change_id else ""))


def cmd_tasks(args):
    """Parse a checklist and print it as todo items."""
    runner = load_runtime(args)
    synchronizer = TaskSynchronizer(runner.config.task_sync)

    tasks_file = Path(args.file) if args.file else synchronizer.find_tasks_file(Path(args.dir))
    if tasks_file is None or not tasks_file.is_file():
        print("No tasks.md found", file=sys.stderr)
        sys.exit(1)

    tasks = synchronizer.load(tasks_file)
    if args.json:
        print(json.dumps([t.model_dump(mode="json", by_alias=True) for t in tasks],
                         indent=2, ensure_ascii=False))
        return

    stats = task_statistics(tasks)
    print(f"{tasks_file}: {stats['total']} tasks, {stats['completed']} completed, "
          f"{stats['in_progress']} in progress")
    print(format_todo_sync(tasks))


def main(argv=None):
    parser = argparse.ArgumentParser(
        prog="workflow-gate",
        description="Enforce the Developer -> Reviewer -> Tester workflow for agent tool calls",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  workflow-gate gate < pre_tool_use.json
  workflow-gate post < post_tool_use.json
  workflow-gate report
  workflow-gate status --json
  workflow-gate reset
  workflow-gate tasks openspec/changes/my-change/tasks.md
        """
    )

    parser.add_argument('--dir', '-d', default='.', help='Project directory (default: current)')
    parser.add_argument('--config', '-c', help='Configuration file (default: ~/.claude/workflow-config.yaml)')
    parser.add_argument('--version', '-v', action='version', version=f'%(prog)s {__version__}')

    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    hook_help = {
        "gate": "Decide whether a proposed tool call may proceed",
        "update": "Advance the workflow phase after a tool call",
        "track": "Record the tool call in the event log",
        "sync": "Synchronize tasks.md with the workflow",
        "complete": "Evaluate the closing checklist",
        "post": "Run update, track, sync and complete together",
    }
    for name in HANDLERS:
        hook_parser = subparsers.add_parser(name, help=hook_help[name])
        hook_parser.set_defaults(func=cmd_hook)

    report_parser = subparsers.add_parser('report', help='Print the delegation statistics report')
    report_parser.set_defaults(func=cmd_report)

    status_parser = subparsers.add_parser('status', help='Show the current workflow state')
    status_parser.add_argument('--json', action='store_true', help='Print the raw state document')
    status_parser.set_defaults(func=cmd_status)

    reset_parser = subparsers.add_parser('reset', help='Reset the workflow to IDLE')
    reset_parser.add_argument('--change-id', help='Start this change after resetting')
    reset_parser.set_defaults(func=cmd_reset)

    tasks_parser = subparsers.add_parser('tasks', help='Show a tasks.md checklist as todo items')
    tasks_parser.add_argument('file', nargs='?', help='Checklist file (default: search the project)')
    tasks_parser.add_argument('--json', action='store_true', help='Print parsed tasks as JSON')
    tasks_parser.set_defaults(func=cmd_tasks)

    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
