"""Command line for StudyMap.

Usage:
  studymap new "Cell Biology" --root "Cells"
  studymap add <map_id> "Mitochondria" --parent <node_id>
  studymap move <node_id> <new_parent_id>      (or --root to detach)
  studymap layout <map_id> --collapse <node_id>
  studymap export <map_id> --format svg
  studymap verify <map_id>

The database defaults to ~/.local/share/studymap/studymap.db; set
STUDYMAP_DATA_DIR or pass --db to use another one.
"""

from __future__ import annotations

import argparse
import json
import sys
from pathlib import Path

from loguru import logger

from studymap.database import Database
from studymap.errors import StudyMapError
from studymap.export import MindMapExporter, get_export_dir, safe_filename
from studymap.hierarchy import TreeIndex, iter_subtree
from studymap.layout import compute_layout
from studymap.log import configure_logging


def _open_db(args: argparse.Namespace) -> Database:
    return Database(Path(args.db).expanduser()) if args.db else Database()


def _cmd_new(db: Database, args: argparse.Namespace) -> int:
    mind_map = db.create_map(args.title, root_title=args.root)
    print(mind_map.id)
    return 0


def _cmd_maps(db: Database, args: argparse.Namespace) -> int:
    for mind_map in db.get_all_maps():
        print(f"{mind_map.id}  {mind_map.title}  ({db.count_nodes(mind_map.id)} nodes)")
    return 0


def _cmd_add(db: Database, args: argparse.Namespace) -> int:
    node = db.create_node(args.map_id, args.title, content=args.content, parent_id=args.parent)
    print(node.id)
    return 0


def _cmd_edit(db: Database, args: argparse.Namespace) -> int:
    changes = {}
    if args.title is not None:
        changes["title"] = args.title
    if args.content is not None:
        changes["content"] = args.content
    db.update_node(args.node_id, **changes)
    return 0


def _cmd_move(db: Database, args: argparse.Namespace) -> int:
    if args.parent_id is None and not args.root:
        raise SystemExit("Give a new parent id or --root")
    db.set_parent(args.node_id, None if args.root else args.parent_id)
    return 0


def _cmd_rm(db: Database, args: argparse.Namespace) -> int:
    removed = db.delete_node(args.node_id)
    print(f"Deleted {len(removed)} node(s)")
    return 0


def _cmd_tree(db: Database, args: argparse.Namespace) -> int:
    mind_map = db.require_map(args.map_id)
    nodes = db.list_nodes(mind_map.id)
    result = compute_layout(nodes, collapsed=args.collapse or (), settings=mind_map.settings)
    rendered = {rn.id: rn for rn in result.render_nodes}
    tree = TreeIndex(nodes)

    print(mind_map.title)
    for start in tree.roots() + tree.dangling():
        for node in iter_subtree(tree, start.id):
            rn = rendered.get(node.id)
            if rn is None:
                continue
            marker = "+" if rn.is_collapsed and rn.has_children else "-"
            flag = "  [missing parent]" if rn.is_dangling else ""
            print(f"{'  ' * (rn.level + 1)}{marker} {node.title}  ({node.id}){flag}")
    return 0


def _cmd_layout(db: Database, args: argparse.Namespace) -> int:
    mind_map = db.require_map(args.map_id)
    nodes = db.list_nodes(mind_map.id)
    result = compute_layout(nodes, collapsed=args.collapse or (), settings=mind_map.settings)
    print(json.dumps(result.to_dict(), indent=2))
    return 0


def _cmd_export(db: Database, args: argparse.Namespace) -> int:
    mind_map = db.require_map(args.map_id)
    out = Path(args.out).expanduser() if args.out else get_export_dir() / safe_filename(mind_map.title, args.format)
    exporter = MindMapExporter(db)
    collapsed = args.collapse or ()

    if args.format == "md":
        ok = exporter.export_markdown(mind_map.id, str(out))
    elif args.format == "png":
        ok = exporter.export_png(mind_map.id, str(out), collapsed=collapsed)
    elif args.format == "svg":
        ok = exporter.export_svg(mind_map.id, str(out), collapsed=collapsed)
    else:
        ok = exporter.export_pdf(mind_map.id, str(out), collapsed=collapsed)

    if not ok:
        print("No nodes available for this mind map")
        return 1
    print(f"Wrote {out.resolve()}")
    return 0


def _cmd_verify(db: Database, args: argparse.Namespace) -> int:
    report = db.check_integrity(args.map_id)
    print("StudyMap structure verification")
    print(f"  Map: {report.map_id}")
    print(f"  Nodes: {report.node_count}")
    print(f"  Dangling parent references: {len(report.dangling)}")
    for node_id in report.dangling:
        print(f"    {node_id}")
    print(f"  Nodes on a cycle: {len(report.cyclic)}")
    for node_id in report.cyclic:
        print(f"    {node_id}")
    print(f"  Forest invariant: {'OK' if report.ok else 'BROKEN'}")
    return 0 if report.ok else 1


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="studymap")
    parser.add_argument("--db", help="Path to the SQLite database")
    parser.add_argument("--log-level", help="Log level (default: $STUDYMAP_LOG_LEVEL or WARNING)")
    sub = parser.add_subparsers(dest="cmd", required=True)

    p_new = sub.add_parser("new", help="Create a mind map")
    p_new.add_argument("title")
    p_new.add_argument("--root", help="Title of an initial root node")
    p_new.set_defaults(func=_cmd_new)

    p_maps = sub.add_parser("maps", help="List mind maps")
    p_maps.set_defaults(func=_cmd_maps)

    p_add = sub.add_parser("add", help="Add a node")
    p_add.add_argument("map_id")
    p_add.add_argument("title")
    p_add.add_argument("--parent", help="Parent node id (omit for a root)")
    p_add.add_argument("--content")
    p_add.set_defaults(func=_cmd_add)

    p_edit = sub.add_parser("edit", help="Change a node's title or content")
    p_edit.add_argument("node_id")
    p_edit.add_argument("--title")
    p_edit.add_argument("--content")
    p_edit.set_defaults(func=_cmd_edit)

    p_move = sub.add_parser("move", help="Reparent a node")
    p_move.add_argument("node_id")
    p_move.add_argument("parent_id", nargs="?")
    p_move.add_argument("--root", action="store_true", help="Detach the node to a root")
    p_move.set_defaults(func=_cmd_move)

    p_rm = sub.add_parser("rm", help="Delete a node and its descendants")
    p_rm.add_argument("node_id")
    p_rm.set_defaults(func=_cmd_rm)

    for name, func, help_text in (
        ("tree", _cmd_tree, "Print the visible outline"),
        ("layout", _cmd_layout, "Print computed layout as JSON"),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("map_id")
        p.add_argument("--collapse", action="append", metavar="NODE_ID")
        p.set_defaults(func=func)

    p_export = sub.add_parser("export", help="Export a mind map")
    p_export.add_argument("map_id")
    p_export.add_argument("--format", choices=("md", "png", "svg", "pdf"), default="md")
    p_export.add_argument("--out", help="Output path (default: data dir exports/)")
    p_export.add_argument("--collapse", action="append", metavar="NODE_ID")
    p_export.set_defaults(func=_cmd_export)

    p_verify = sub.add_parser("verify", help="Check a map for dangling references and cycles")
    p_verify.add_argument("map_id")
    p_verify.set_defaults(func=_cmd_verify)

    return parser


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    configure_logging(args.log_level)

    db = _open_db(args)
    try:
        return int(args.func(db, args))
    except StudyMapError as exc:
        logger.debug("Command {} failed: {!r}", args.cmd, exc)
        sys.stderr.write(f"{exc}\n")
        return 2
    finally:
        db.close()


if __name__ == "__main__":
    raise SystemExit(main())
