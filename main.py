"""
Entry point for the Supabase Storage to Cloudinary image migration tool.

Examples::

    python main.py --mode status
    python main.py --mode migrate --type webstories --batch-size 2
    python main.py --mode migrate --type content --until-done
    python main.py --mode cleanup                 # dry run
    python main.py --mode cleanup --delete        # actually deletes
"""

import argparse
import json
import logging
import sys

from image_migrator.migration_tool import DEFAULT_BATCH_SIZES, MODES, ImageMigrationTool
from image_migrator.parsers.reference_locator import COLLECTIONS

CONFIG_FILE = "config/migration_config.json"


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Migrate content images from Supabase Storage to Cloudinary.")
    parser.add_argument("--config", default=CONFIG_FILE, help="Path to the JSON configuration file.")
    parser.add_argument("--mode", choices=MODES, default="status")
    parser.add_argument("--type", choices=sorted(COLLECTIONS), default="articles", help="Collection to migrate.")
    parser.add_argument("--batch-size", type=int, default=None)
    parser.add_argument("--offset", type=int, default=0)
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Cleanup mode only: really delete unreferenced files instead of a dry run.",
    )
    parser.add_argument(
        "--until-done",
        action="store_true",
        help="Migrate mode only: keep invoking batches until nothing is left.",
    )
    parser.add_argument(
        "--duckdb",
        default=None,
        help="Read and update records in a local DuckDB copy instead of Supabase (see scripts/initialize_database.py).",
    )
    parser.add_argument("--verbose", "-v", action="store_true")
    return parser


def main(argv=None) -> int:
    """
    Main function to run the image migration tool.
    """
    parser = build_parser()
    args = parser.parse_args(argv)
    if args.duckdb and args.mode == "cleanup":
        parser.error("--duckdb cannot be used with --mode cleanup: deletion must be decided from the live records")
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(levelname)s - %(name)s - %(message)s",
    )

    store = None
    if args.duckdb:
        from image_migrator.extractors.duckdb_store import DuckDBRecordStore

        store = DuckDBRecordStore(args.duckdb)
    tool = ImageMigrationTool(config_file=args.config, store=store)

    if args.mode == "migrate" and args.until_done:
        response = tool.run_until_done(
            args.type,
            batch_size=args.batch_size or DEFAULT_BATCH_SIZES["migrate"],
            on_progress=lambda p: tool.log_message(f"Progress: {p['current']} migrated, {p['remaining']} remaining"),
        )
    else:
        request = {"mode": args.mode, "type": args.type, "offset": args.offset, "dryRun": not args.delete}
        if args.batch_size is not None:
            request["batchSize"] = args.batch_size
        if args.mode == "cleanup" and args.delete:
            answer = input("Delete unreferenced files from Supabase storage? This cannot be undone. [y/N] ")
            if answer.strip().lower() not in ("y", "yes"):
                tool.log_message("Cleanup cancelled.")
                return 1
        response = tool.handle(request)

    print(json.dumps(response, indent=2, ensure_ascii=False, default=str))
    return 0 if response.get("success") else 1


if __name__ == "__main__":
    sys.exit(main())
