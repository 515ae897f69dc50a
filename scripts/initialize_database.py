"""
Initializes a local DuckDB copy of the content tables from CSV exports.

The copy lets a migration be rehearsed end to end (``python main.py
--duckdb data/migration.duckdb --mode migrate ...``) without touching the
production records.  Export ``articles`` and ``web_stories`` from the
Supabase table editor as CSV and point this script at them.
"""

import argparse
import os
import sys

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

import duckdb

from image_migrator.extractors.duckdb_store import load_table_from_csv


def initialize_database(db_path: str, exports: dict) -> None:
    """
    Creates one table per CSV export.  Existing tables are left untouched.
    """
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    con = duckdb.connect(database=db_path, read_only=False)
    try:
        for table, csv_path in exports.items():
            if not csv_path:
                continue
            print(f"Reading CSV file: {csv_path}")
            count = load_table_from_csv(con, table, csv_path)
            if count:
                print(f"Table '{table}' created with {count} records.")
            else:
                print(f"Table '{table}' already exists. Nothing to do.")
    finally:
        con.close()
        print("Database connection closed.")


if __name__ == "__main__":
    parser = argparse.ArgumentParser(description=__doc__)
    parser.add_argument("--db", default="data/migration.duckdb")
    parser.add_argument("--articles", default="docs/articles.csv")
    parser.add_argument("--web-stories", default="docs/web_stories.csv")
    args = parser.parse_args()
    initialize_database(args.db, {"articles": args.articles, "web_stories": args.web_stories})
