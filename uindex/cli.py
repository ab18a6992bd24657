# uindex/cli.py
import json
import logging
import sys
import time

from .core.config import Config
from .core.log import setup_logging

logger = logging.getLogger(__name__)


def _print_elements(elements) -> None:
    for e in elements:
        state = "✓" if e.is_enabled else "✗"
        print(f"  [{e.id if e.id is not None else '-'}] {e.role:<14} {e.label[:40]!r:<42} "
              f"at ({e.x}, {e.y}) {e.width}x{e.height} {state} {e.confidence:.0%}")


def cmd_scan(agent, args) -> int:
    agent.start()
    try:
        result = agent.scan_current_application()
    finally:
        agent.stop()
    if result is None:
        print("Nothing scanned (no active application or scan failed)")
        return 1
    print(f"{result.app_name} - {result.window_title}: {len(result.elements)} elements "
          f"({result.rejected_count} of {result.raw_count} raw elements dropped)")
    _print_elements(result.elements)
    return 0


def cmd_index(agent, args) -> int:
    agent.store.initialize()
    agent.sync.initialize()
    if args.role:
        elements = agent.find_elements_by_role(args.role, args.app)
    elif args.search:
        elements = agent.search_elements(args.search, args.app)
    else:
        elements = agent.get_ui_index(args.app, args.window)

    apps = agent.get_active_applications()
    print(f"Active applications: {len(apps)}")
    for app in apps:
        print(f"  {app['app_name']} - {app['window_title']} ({app['element_count']} elements)")
    print(f"Elements: {len(elements)}")
    _print_elements(elements)
    return 0


def _plan_for_current_window(agent, task: str, max_actions: int):
    from .core.task import PlanningContext

    app = agent.get_active_application()
    if app is None:
        print("No active application")
        return None
    elements = [e for e in agent.get_ui_index(app.name, app.window_title) if not e.is_scan_marker]
    if not elements:
        scan = agent.scan_current_application()
        elements = [e for e in scan.elements if not e.is_scan_marker] if scan else []

    context = PlanningContext(task=task, elements=elements, app_name=app.name,
                              window_title=app.window_title, max_actions=max_actions)
    return agent.generate_plan(context)


def cmd_plan(agent, args) -> int:
    agent.start()
    try:
        plan = _plan_for_current_window(agent, args.task, args.max_actions)
    finally:
        agent.stop()
    if plan is None:
        return 1
    print(json.dumps(plan.to_dict(), indent=2))
    return 0 if not plan.fallback_required else 2


def cmd_run(agent, args) -> int:
    agent.start()
    try:
        result = agent.run_task(args.task, max_actions=args.max_actions,
                                replan_on_failure=not args.no_replan)
    except KeyboardInterrupt:
        agent.emergency_stop()
        print("\nInterrupted")
        return 130
    finally:
        agent.stop()
    print(json.dumps(result.to_dict(), indent=2))
    return 0 if result.success else 1


def cmd_daemon(agent, args) -> int:
    agent.start()
    print("Indexing the foreground window. Press Ctrl+C to stop.")
    try:
        while agent.daemon.is_running:
            time.sleep(1.0)
    except KeyboardInterrupt:
        print("\nInterrupted")
    finally:
        agent.stop()
        status = agent.daemon.get_status()
        print(f"Cycles: {status['cycles']}, errors: {status['scan_errors']}, "
              f"skipped ticks: {status['skipped_ticks']}")
    return 0


def main(argv=None):
    """CLI entry point."""
    import argparse

    parser = argparse.ArgumentParser(prog="uindex", description="UI-indexed desktop automation")
    parser.add_argument("--config", default="config.yaml", help="Path to config file")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("scan", help="Scan the foreground window once and print its elements")

    index = sub.add_parser("index", help="Print the stored element index")
    index.add_argument("--app", help="Application name")
    index.add_argument("--window", help="Window title")
    index.add_argument("--role", help="Only elements with this role")
    index.add_argument("--search", help="Only elements matching this term")

    plan = sub.add_parser("plan", help="Plan a task against the foreground window")
    plan.add_argument("task")
    plan.add_argument("--max-actions", type=int, default=None)

    run = sub.add_parser("run", help="Plan and execute a task")
    run.add_argument("task")
    run.add_argument("--max-actions", type=int, default=None)
    run.add_argument("--no-replan", action="store_true", help="Don't rescan and replan after a failure")

    sub.add_parser("daemon", help="Keep the index warm until interrupted")

    args = parser.parse_args(argv)

    config = Config.load(args.config)
    if args.debug:
        config.debug = True
    setup_logging(config)
    if getattr(args, "max_actions", None) is None and hasattr(args, "max_actions"):
        args.max_actions = config.planner.max_actions

    from .core.agent import IndexedAgent
    from .core.errors import UIndexError

    commands = {
        "scan": cmd_scan,
        "index": cmd_index,
        "plan": cmd_plan,
        "run": cmd_run,
        "daemon": cmd_daemon,
    }

    try:
        agent = IndexedAgent(config)
        return commands[args.command](agent, args)
    except UIndexError as e:
        logger.error("%s", e)
        print(f"Error: {e}", file=sys.stderr)
        return 1


if __name__ == "__main__":
    sys.exit(main())
