"""OpenWatch CLI — live monitor/API server and offline analytics."""

import argparse
import asyncio
import json
import sys

from openwatch.config import AppConfig


def main():
    parser = argparse.ArgumentParser(
        prog="openwatch",
        description="OpenWatch — open/closed monitoring with weekday predictions",
    )
    subparsers = parser.add_subparsers(dest="command", help="Available commands")

    serve_parser = subparsers.add_parser("serve", help="Start the status monitor and analytics API")
    serve_parser.add_argument("--port", type=int, default=8010, help="Port (default: 8010)")
    serve_parser.add_argument("--host", default="127.0.0.1", help="Host (default: 127.0.0.1)")
    serve_parser.add_argument("--verbose", action="store_true", help="Enable DEBUG logging")
    serve_parser.add_argument("--quiet", action="store_true", help="Only show WARNING and above")
    serve_parser.add_argument("--no-monitor", action="store_true", help="Serve the API without polling")

    status_parser = subparsers.add_parser("status", help="Show status of a running hub")
    status_parser.add_argument("--url", default="http://127.0.0.1:8010", help="Hub base URL")
    status_parser.add_argument("--json", action="store_true", dest="json_output", help="Output as JSON")

    predict_parser = subparsers.add_parser("predict", help="Print weekday predictions from the event log")
    predict_parser.add_argument("--json", action="store_true", dest="json_output", help="Output as JSON")

    subparsers.add_parser("stats", help="Print event log counts and date range")

    prune_parser = subparsers.add_parser("prune", help="Delete events older than N days")
    prune_parser.add_argument("--days", type=int, required=True, help="Keep this many days")

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    _dispatch(args)


def _dispatch(args):
    """Route CLI commands."""
    if args.command == "serve":
        log_level = "INFO"
        if args.verbose:
            log_level = "DEBUG"
        elif args.quiet:
            log_level = "WARNING"
        _serve(args.host, args.port, log_level, monitor=not args.no_monitor)

    elif args.command == "status":
        _status(args.url, json_output=args.json_output)

    elif args.command == "predict":
        asyncio.run(_predict(json_output=args.json_output))

    elif args.command == "stats":
        asyncio.run(_stats())

    elif args.command == "prune":
        asyncio.run(_prune(args.days))

    else:
        print(f"Unknown command: {args.command}")
        sys.exit(1)


def _build_hub(config: AppConfig):
    from openwatch.hub.core import MonitorHub

    config.paths.ensure_dirs()
    return MonitorHub(str(config.paths.settings_db), str(config.paths.events_db))


def _serve(host: str, port: int, log_level: str = "INFO", monitor: bool = True):
    """Start the hub, the status monitor and the API server."""
    import logging
    from datetime import timedelta

    logging.basicConfig(
        level=getattr(logging, log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )
    logger = logging.getLogger("openwatch.serve")

    import uvicorn

    from openwatch.hub.api import create_api
    from openwatch.modules.monitor import StatusMonitor
    from openwatch.modules.status_source import HttpStatusSource, LoggingAnnouncer, WebhookAnnouncer

    config = AppConfig.from_env()

    async def start():
        hub = _build_hub(config)

        logger.info("=" * 70)
        logger.info("OpenWatch — open/closed monitoring")
        logger.info("=" * 70)
        logger.info(f"Data: {config.paths.data_dir}")
        logger.info(f"Server: http://{host}:{port}")
        logger.info(f"WebSocket: ws://{host}:{port}/ws")
        logger.info("=" * 70)

        await hub.initialize()

        if config.retention.max_days:
            max_days = config.retention.max_days

            async def _prune():
                await hub.prune_logs(max_days)

            await hub.schedule_task("event_log_prune", _prune, interval=timedelta(hours=24), run_immediately=True)
        else:
            logger.info("Event log retention disabled; events are kept forever")

        if monitor:
            if not config.source.url:
                logger.error("OPENWATCH_STATUS_URL environment variable required (or pass --no-monitor)")
                await hub.shutdown()
                return
            source = HttpStatusSource(config.source.url, timeout_s=config.source.timeout_s)
            if config.source.announce_url:
                announcer = WebhookAnnouncer(config.source.announce_url, timeout_s=config.source.timeout_s)
            else:
                announcer = LoggingAnnouncer()
            status_monitor = StatusMonitor(hub, source, announcer)
            hub.register_module(status_monitor)
            try:
                await status_monitor.initialize()
                hub.mark_module_running(status_monitor.module_id)
            except Exception as e:
                hub.mark_module_failed(status_monitor.module_id)
                logger.error(f"Status monitor failed to start (API continues without it): {e}")

        app = create_api(hub)

        server_config = uvicorn.Config(
            app,
            host=host,
            port=port,
            log_level=log_level.lower(),
            access_log=(log_level != "WARNING"),
        )
        server = uvicorn.Server(server_config)

        try:
            await server.serve()
        finally:
            if hub.is_running():
                await hub.shutdown()

    asyncio.run(start())


def _status(url: str, json_output: bool = False):
    """Probe a running hub's /health and /api/status."""
    import urllib.request

    from openwatch import __version__

    result = {"version": __version__, "hub_running": False, "hub_health": None, "monitor": None}

    try:
        with urllib.request.urlopen(f"{url}/health", timeout=2) as resp:
            result["hub_health"] = json.loads(resp.read())
            result["hub_running"] = True
        with urllib.request.urlopen(f"{url}/api/status", timeout=2) as resp:
            result["monitor"] = json.loads(resp.read())
    except Exception:
        pass

    if json_output:
        print(json.dumps(result, indent=2))
        return

    print("OpenWatch Status")
    print("=" * 40)
    print(f"  Version:          {result['version']}")
    print(f"  Hub:              {'running' if result['hub_running'] else 'stopped'}")
    if result["hub_health"]:
        events = result["hub_health"].get("events", {})
        print(f"  Events logged:    {events.get('total_events', 0)}")
        uptime = result["hub_health"].get("uptime_seconds", 0)
        hours, remainder = divmod(int(uptime), 3600)
        minutes, secs = divmod(remainder, 60)
        print(f"  Uptime:           {hours}h {minutes}m {secs}s")
    monitor = result["monitor"]
    if monitor and monitor.get("monitoring"):
        state = {True: "open", False: "closed"}.get(monitor.get("open"), "unknown")
        print(f"  Resource:         {state}")
        interval = monitor.get("interval_ms")
        if interval:
            print(f"  Poll interval:    {interval / 60000:g} min{' (night)' if monitor.get('night') else ''}")


async def _predict(json_output: bool = False):
    """Print the weekly prediction table."""
    from openwatch.shared.models import WEEKDAY_NAMES, format_minutes

    hub = _build_hub(AppConfig.from_env())
    await hub.initialize()
    try:
        predictions = await hub.get_predictions()
    finally:
        await hub.shutdown()

    if json_output:
        print(json.dumps({str(k): v.to_dict() for k, v in predictions.items()}, indent=2))
        return

    print(f"{'Weekday':<11} {'Opens':>6} {'Closes':>7} {'Days':>5}")
    for weekday, prediction in predictions.items():
        opens = format_minutes(prediction.open_time) if prediction.open_time is not None else "-"
        closes = format_minutes(prediction.close_time) if prediction.close_time is not None else "-"
        print(f"{WEEKDAY_NAMES[weekday]:<11} {opens:>6} {closes:>7} {prediction.data_points:>5}")


async def _stats():
    hub = _build_hub(AppConfig.from_env())
    await hub.initialize()
    try:
        stats = await hub.get_stats()
    finally:
        await hub.shutdown()
    print(f"Events:     {stats['total_events']}")
    print(f"First date: {stats['first_date'] or 'none'}")
    print(f"Last date:  {stats['last_date'] or 'none'}")


async def _prune(days: int):
    hub = _build_hub(AppConfig.from_env())
    await hub.initialize()
    try:
        pruned = await hub.prune_logs(days)
    finally:
        await hub.shutdown()
    print(f"Deleted {pruned} event(s) older than {days} days")


if __name__ == "__main__":
    main()
