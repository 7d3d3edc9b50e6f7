from __future__ import annotations

import argparse
from pathlib import Path

from update_dispatch.settings import settings


def _configure_logging() -> None:
    import logging

    level = (settings.log_level or "INFO").upper()
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s")


def _build_engine(*, enabled: bool | None = None, ensure_schema: bool = True):
    from update_dispatch.dispatch import DispatchEngine
    from update_dispatch.knowledge_graph.neo4j_store import Neo4jConfig, Neo4jKnowledgeStore
    from update_dispatch.taskqueue import RedisTaskQueue

    store = Neo4jKnowledgeStore(Neo4jConfig.from_settings(settings))
    if ensure_schema:
        store.ensure_schema()
    sink = RedisTaskQueue.from_settings(settings)
    return DispatchEngine(store, sink, enabled=enabled)


def cmd_version() -> int:
    from update_dispatch import __version__

    print(__version__)
    return 0


def cmd_dispatch(args: argparse.Namespace) -> int:
    _configure_logging()
    from update_dispatch.dispatch import ChangedEntity
    from update_dispatch.knowledge_graph.models import EntityReference

    snapshot = Path(args.snapshot).read_text(encoding="utf-8") if args.snapshot else None
    change = ChangedEntity.from_title(EntityReference.from_text(args.title), snapshot)

    if args.defer:
        from update_dispatch.taskqueue import DispatchJobQueue

        queued = DispatchJobQueue.from_settings(settings).insert(change)
        print({"queued": queued, "title": change.subject.canonical_key})
        return 0

    # A dry run only reads the graph; it never writes the schema.
    engine = _build_engine(enabled=False if args.dry_run else None, ensure_schema=not args.dry_run)
    try:
        if args.dry_run:
            plan = engine.resolve(change)
            for key in plan.keys():
                print(key)
            plan.discard()
        else:
            print(engine.dispatch(change))
    finally:
        engine.store.close()
    return 0


def cmd_worker(args: argparse.Namespace) -> int:
    _configure_logging()
    from update_dispatch.taskqueue import DispatchJobQueue, run_worker

    engine = _build_engine()
    jobs = DispatchJobQueue.from_settings(settings)
    try:
        n = run_worker(engine, jobs, max_jobs=args.max_jobs)
    finally:
        engine.store.close()
    print({"processed": n})
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="update-dispatch")
    sub = p.add_subparsers(dest="cmd", required=True)

    sub.add_parser("version").set_defaults(func=lambda _a: cmd_version())

    d = sub.add_parser("dispatch", help="Queue updates for pages depending on a changed page")
    d.add_argument("title", help='Changed page, e.g. "Berlin" or "Property:Has area"')
    d.add_argument("--snapshot", default=None, help="JSON file with the page's serialized semantic data")
    mode = d.add_mutually_exclusive_group()
    mode.add_argument("--defer", action="store_true", help="Queue a dispatch job instead of running now")
    mode.add_argument("--dry-run", action="store_true", help="Print the pages that would be updated")
    d.set_defaults(func=cmd_dispatch)

    w = sub.add_parser("worker", help="Run queued dispatch jobs")
    w.add_argument("--max-jobs", type=int, default=None)
    w.set_defaults(func=cmd_worker)

    return p


def app() -> None:
    parser = build_parser()
    args = parser.parse_args()
    rc = args.func(args)
    raise SystemExit(rc)


if __name__ == "__main__":
    app()
