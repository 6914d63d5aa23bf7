import argparse
import json
import logging
import sys
from pathlib import Path
from typing import List, Optional

from .config import load_config
from .engine import Engine
from .errors import GraphError
from .kinship import Locale
from .models import Person


def _print(obj) -> None:
    print(json.dumps(obj, ensure_ascii=False, indent=2))


def _engine(args: argparse.Namespace) -> Engine:
    cfg = load_config(args.config)
    if args.data_dir:
        cfg.data_dir = Path(args.data_dir)
    return Engine(cfg)


def _parse_qualifiers(items: Optional[List[str]]) -> dict:
    out = {}
    for item in items or []:
        key, _, value = item.partition("=")
        if value.isdigit():
            out[key] = int(value)
        elif value.lower() in ("true", "false"):
            out[key] = value.lower() == "true"
        else:
            out[key] = value
    return out


def _run_add_person(args: argparse.Namespace, engine: Engine) -> None:
    p = Person.from_dict(
        {
            "first_name": args.first_name,
            "last_name": args.last_name,
            "maiden_name": args.maiden_name,
            "gender": args.gender,
            "birth_date": args.birth,
            "death_date": args.death,
            "birth_place": args.birth_place,
        }
    )
    _print(engine.store.add_person(p).to_dict())


def _run_add_edge(args: argparse.Namespace, engine: Engine) -> None:
    edge_id = engine.store.add_edge(args.a, args.b, args.type, **_parse_qualifiers(args.qualifier))
    _print(engine.store.get_edge(edge_id).to_dict())


def _run_classify(args: argparse.Namespace, engine: Engine) -> None:
    _print(engine.relationship(args.a, args.b, Locale(args.locale)))


def _run_ancestors(args: argparse.Namespace, engine: Engine) -> None:
    walk = engine.traversal.ancestor_walk(args.person, args.depth)
    _print({"person": args.person, "truncated": walk.truncated, "ancestors": [h.to_dict() for h in walk.ordered()]})


def _run_scan(args: argparse.Namespace, engine: Engine) -> None:
    report = engine.duplicates.scan(args.min_confidence)
    out = []
    for dup in report:
        d = dup.to_dict()
        d["level"] = engine.duplicates.confidence_level(dup.confidence_score)
        d["explanation"] = engine.duplicates.describe_reasons(dup)
        out.append(d)
    _print({"pairs_checked": report.pairs_checked, "cancelled": report.cancelled, "duplicates": out})


def _run_expire(args: argparse.Namespace, engine: Engine) -> None:
    _print({"expired": engine.bridges.expire_stale()})


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="kinship", description="Kinship graph command line tools")
    parser.add_argument("--config", default=None, help="Path to a JSON config file")
    parser.add_argument("--data-dir", default=None, help="Data directory (overrides config)")
    parser.add_argument("--verbose", action="store_true", help="Verbose output")
    subparsers = parser.add_subparsers(dest="command", metavar="<command>")

    ap = subparsers.add_parser("add-person", help="Create a person")
    ap.add_argument("first_name")
    ap.add_argument("last_name")
    ap.add_argument("--gender", choices=["M", "F"], default=None)
    ap.add_argument("--maiden-name", default=None)
    ap.add_argument("--birth", default=None, help="Birth date (YYYY, YYYY-MM-DD, 'ABT 1890', ...)")
    ap.add_argument("--death", default=None, help="Death date")
    ap.add_argument("--birth-place", default=None)
    ap.set_defaults(func=_run_add_person)

    ae = subparsers.add_parser("add-edge", help="Add 'A is the TYPE of B'")
    ae.add_argument("a")
    ae.add_argument("b")
    ae.add_argument("type", help="Relationship type code (parent, spouse, ...)")
    ae.add_argument("-q", "--qualifier", action="append", help="Qualifier as name=value (repeatable)")
    ae.set_defaults(func=_run_add_edge)

    cl = subparsers.add_parser("classify", help="Classify what B is to A")
    cl.add_argument("a")
    cl.add_argument("b")
    cl.add_argument("--locale", choices=[loc.value for loc in Locale], default=Locale.EN.value)
    cl.set_defaults(func=_run_classify)

    an = subparsers.add_parser("ancestors", help="List ancestors of a person")
    an.add_argument("person")
    an.add_argument("--depth", type=int, default=None)
    an.set_defaults(func=_run_ancestors)

    sc = subparsers.add_parser("scan-duplicates", help="Scan for potential duplicate profiles")
    sc.add_argument("--min-confidence", type=float, default=None)
    sc.set_defaults(func=_run_scan)

    ex = subparsers.add_parser("expire-bridges", help="Expire overdue bridge requests")
    ex.set_defaults(func=_run_expire)
    return parser


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    if not getattr(args, "func", None):
        parser.print_help()
        return 0
    logging.basicConfig(level=logging.INFO if args.verbose else logging.WARNING)
    engine = _engine(args)
    try:
        args.func(args, engine)
    except GraphError as exc:
        _print(exc.to_dict())
        return 1
    finally:
        engine.close()
    return 0


if __name__ == "__main__":
    sys.exit(main())
