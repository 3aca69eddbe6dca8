import argparse
import json
import os
from pathlib import Path

from famtree import create_app
from famtree.db import get_database
from famtree.exporter import FamtreePackager, ForestSerializer, TreeSerializer
from famtree.importer import IMPORT_MODES, ForestImporter, TreeImporter, load_package_bytes
from famtree.media_utils import UploadPaths


def _app_from_args(args):
    config = {"TESTING": False}
    if args.db:
        config["DATABASE"] = args.db
    if args.uploads_dir:
        config["UPLOADS_DIR"] = args.uploads_dir
    app = create_app(config)
    return app, UploadPaths(Path(app.config["UPLOADS_DIR"]))


def _write_output(payload: dict, out: str | None) -> None:
    text = json.dumps(payload, indent=2)
    if out:
        Path(out).write_text(text, encoding="utf-8")
    else:
        print(text)


def cmd_export_tree(args) -> int:
    app, uploads = _app_from_args(args)
    with app.app_context():
        session = get_database().session_factory()
        try:
            if args.famtree:
                payload = FamtreePackager(session, uploads).package(args.tree_id)
            else:
                payload = TreeSerializer(session, uploads).serialize(args.tree_id, include_images=args.include_images)
        finally:
            session.close()
    _write_output(payload, args.out)
    return 0


def cmd_export_forest(args) -> int:
    app, uploads = _app_from_args(args)
    with app.app_context():
        session = get_database().session_factory()
        try:
            payload = ForestSerializer(session, uploads).serialize(args.forest_id, include_images=args.include_images)
        finally:
            session.close()
    _write_output(payload, args.out)
    return 0


def cmd_import_famtree(args) -> int:
    app, uploads = _app_from_args(args)
    package = load_package_bytes(Path(args.source).read_bytes())
    with app.app_context():
        session = get_database().session_factory()
        try:
            if args.tree_id:
                summary = TreeImporter(session, uploads).import_package(args.tree_id, package, mode=args.mode)
                print(f"tree={args.tree_id} people={summary.people} relationships={summary.relationships} images={summary.images}")
            else:
                tree, summary = ForestImporter(session, uploads).import_package_as_new_tree(args.forest_id, package)
                print(f"tree={tree.id} people={summary.people} relationships={summary.relationships} images={summary.images}")
            return 0
        finally:
            session.close()


def cmd_import_json(args) -> int:
    app, uploads = _app_from_args(args)
    document = json.loads(Path(args.source).read_text(encoding="utf-8"))
    with app.app_context():
        session = get_database().session_factory()
        try:
            importer = ForestImporter(session, uploads)
            if "forest" in document:
                if not args.tenant_id:
                    raise SystemExit("--tenant-id is required for a forest document")
                forest, summaries = importer.import_forest_document(args.tenant_id, document)
                print(f"forest={forest.id} trees={len(summaries)}")
            else:
                if not args.forest_id:
                    raise SystemExit("--forest-id is required for a tree document")
                tree, summary = importer.import_tree_document(args.forest_id, document)
                print(f"tree={tree.id} people={summary.people} relationships={summary.relationships}")
            return 0
        finally:
            session.close()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Family tree export and import tools")
    parser.add_argument("--db", default=os.environ.get("APP_DB_PATH"))
    parser.add_argument("--uploads-dir", default=os.environ.get("APP_UPLOADS_DIR"))

    sub = parser.add_subparsers(dest="command", required=True)

    export_tree = sub.add_parser("export-tree", help="Export one tree as JSON or .famtree")
    export_tree.add_argument("tree_id")
    export_tree.add_argument("--famtree", action="store_true", help="Write the versioned .famtree package")
    export_tree.add_argument("--include-images", action="store_true")
    export_tree.add_argument("--out", default=None)
    export_tree.set_defaults(func=cmd_export_tree)

    export_forest = sub.add_parser("export-forest", help="Export a forest with all of its trees")
    export_forest.add_argument("forest_id")
    export_forest.add_argument("--include-images", action="store_true")
    export_forest.add_argument("--out", default=None)
    export_forest.set_defaults(func=cmd_export_forest)

    import_famtree = sub.add_parser("import-famtree", help="Import a .famtree package")
    import_famtree.add_argument("source")
    target = import_famtree.add_mutually_exclusive_group(required=True)
    target.add_argument("--tree-id", help="Import into an existing tree")
    target.add_argument("--forest-id", help="Create a new tree in this forest")
    import_famtree.add_argument("--mode", choices=IMPORT_MODES, default="append")
    import_famtree.set_defaults(func=cmd_import_famtree)

    import_json = sub.add_parser("import-json", help="Import a tree or forest JSON export")
    import_json.add_argument("source")
    import_json.add_argument("--forest-id", default=None)
    import_json.add_argument("--tenant-id", default=None)
    import_json.set_defaults(func=cmd_import_json)

    return parser


def main() -> int:
    parser = build_parser()
    args = parser.parse_args()
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
