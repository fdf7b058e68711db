from __future__ import annotations

import argparse
import dataclasses
import json
import logging
import signal
import sys

import requests

from beachhead import __version__
from beachhead import events
from beachhead.api import create_app, serve_in_background
from beachhead.domain_spec import parse
from beachhead.errors import ParseError
from beachhead.inspector import DockerInspector
from beachhead.publisher import publisher_from_settings
from beachhead.reconciler import Reconciler
from beachhead.records import ServiceRecord
from beachhead.runtime import RuntimeState
from beachhead.settings import Settings, settings

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"

# CLI option -> Settings field
_OVERRIDES = {
    "redis_host": "redis_host",
    "redis_port": "redis_port",
    "expire": "expire_s",
    "refresh": "refresh_s",
    "docker_url": "docker_url",
    "envvar": "envvar",
    "key_prefix": "key_prefix",
    "store": "store",
    "workers": "workers",
    "api_port": "api_port",
}


def _print(obj) -> None:
    print(json.dumps(obj, indent=2, ensure_ascii=False))


def init_logging(verbose: bool, quiet: bool, dry_run: bool = False) -> None:
    # quiet and verbose cancel each other out; dry-run output must stay visible.
    if verbose and quiet:
        verbose = quiet = False
    if dry_run:
        quiet = False
    level = logging.DEBUG if verbose else logging.WARNING if quiet else logging.INFO
    logging.basicConfig(level=level, format=LOG_FORMAT)


def settings_from_args(args: argparse.Namespace, base: Settings | None = None) -> Settings:
    base = base or settings
    changes = {}
    for opt, field in _OVERRIDES.items():
        value = getattr(args, opt, None)
        if value is not None:
            changes[field] = value
    if args.no_expire:
        changes["enable_expire"] = False
    if args.docker_network:
        changes["docker_network"] = True
    if args.strict:
        changes["strict_parse"] = True
    if args.dry_run:
        changes["dry_run"] = True
    return dataclasses.replace(base, **changes)


def _record_to_dict(record: ServiceRecord) -> dict:
    return {
        "id": record.spec_id,
        "domain": record.domain,
        "mappings": {m.scheme.value: m.port for m in record.mappings},
    }


def cmd_run(args: argparse.Namespace) -> int:
    cfg = settings_from_args(args)
    init_logging(args.verbose, args.quiet, cfg.dry_run)
    if cfg.workers < 1:
        print("--workers must be at least 1", file=sys.stderr)
        return 2
    try:
        publisher = publisher_from_settings(cfg)
    except ValueError as e:
        print(str(e), file=sys.stderr)
        return 2

    events.init_db()
    runtime = RuntimeState()
    inspector = DockerInspector(cfg, containers=args.containers)
    reconciler = Reconciler(inspector, publisher, settings=cfg, runtime=runtime)

    server = None
    if cfg.api_port > 0:
        server = serve_in_background(create_app(runtime, publisher, cfg), cfg.api_host, cfg.api_port)
        events.log_event("INFO", f"Status API listening on {cfg.api_host}:{cfg.api_port}")

    def _on_signal(signum, _frame) -> None:
        events.log_event("INFO", f"Received signal {signal.Signals(signum).name}, stopping")
        reconciler.stop()

    signal.signal(signal.SIGINT, _on_signal)
    signal.signal(signal.SIGTERM, _on_signal)

    reconciler.start()
    while not reconciler.join(1.0):
        if reconciler.stopped:
            if not reconciler.join(cfg.stop_timeout_s):
                events.log_event("WARN", f"In-flight tick still running after {cfg.stop_timeout_s}s, abandoning it")
            break

    if server is not None:
        server.should_exit = True
    return 0


def cmd_check(args: argparse.Namespace) -> int:
    try:
        result = parse(args.declaration, strict=args.strict)
    except ParseError as e:
        _print({"records": [], "errors": [str(e)]})
        return 1
    _print({"records": [_record_to_dict(r) for r in result.records], "errors": [str(e) for e in result.errors]})
    return 0 if result.ok else 1


def _api_get(base: str, path: str, **params) -> int:
    try:
        r = requests.get(f"{base.rstrip('/')}{path}", params=params or None, timeout=10)
    except requests.RequestException as e:
        print(f"Could not reach {base}: {e}", file=sys.stderr)
        return 1
    _print(r.json())
    return 0 if r.ok else 1


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="beachhead-companion",
        description="Publish container domain declarations to Redis with expiry.",
    )
    p.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = p.add_subparsers(dest="cmd", required=True)

    s_run = sub.add_parser("run", help="Poll containers and publish their declarations")
    s_run.add_argument("containers", nargs="*", help="Only inspect these containers (default: all running)")
    s_run.add_argument("--redis-host")
    s_run.add_argument("--redis-port", type=int)
    s_run.add_argument("--expire", type=int, help="Seconds after which a registration expires. 0 = never.")
    s_run.add_argument("--no-expire", action="store_true", help="Publish without expiration")
    s_run.add_argument(
        "--refresh",
        type=int,
        help="Seconds between refreshes. Defaults to 45%% of --expire. 0 = publish once and exit.",
    )
    s_run.add_argument("--docker-url", help="URL of the docker socket")
    s_run.add_argument("--docker-network", action="store_true", help="Address backends by container name")
    s_run.add_argument("--envvar", help="Container environment variable holding the declaration")
    s_run.add_argument("--key-prefix")
    s_run.add_argument("--store", choices=["redis", "memory"])
    s_run.add_argument("--workers", type=int, help="Threads used to publish declarations of one tick")
    s_run.add_argument("--strict", action="store_true", help="Drop a whole declaration if any domain spec is invalid")
    s_run.add_argument("-n", "--dry-run", action="store_true", help="Inspect and parse only, do not write to the store")
    s_run.add_argument("--api-port", type=int, help="Serve the status API on this port (0 = off)")
    verbosity = s_run.add_argument_group("logging")
    verbosity.add_argument("--verbose", action="store_true")
    verbosity.add_argument("--quiet", action="store_true")
    s_run.set_defaults(func=cmd_run)

    s_check = sub.add_parser("check", help="Parse a declaration and print the result")
    s_check.add_argument("declaration")
    s_check.add_argument("--strict", action="store_true")
    s_check.set_defaults(func=cmd_check)

    s_status = sub.add_parser("status", help="Show the status of a running companion")
    s_status.add_argument("--api", default="http://localhost:8080", help="Status API base URL")
    s_status.set_defaults(func=lambda a: _api_get(a.api, "/status"))

    s_ev = sub.add_parser("events", help="Show recent events of a running companion")
    s_ev.add_argument("--api", default="http://localhost:8080", help="Status API base URL")
    s_ev.add_argument("--limit", type=int, default=20)
    s_ev.set_defaults(func=lambda a: _api_get(a.api, "/events", limit=a.limit))

    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main(sys.argv[1:]))
