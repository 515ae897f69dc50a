"""
Local DuckDB copy of the content tables.

Used to rehearse a migration against an export of the production tables
(see ``scripts/initialize_database.py``) and by the tests.  JSON columns
such as ``web_stories.slides`` are stored as text and decoded on read.
"""

from __future__ import annotations

import json
import os
from typing import Any, Dict, Iterable, List, Optional, Set, Union

import duckdb
import pandas as pd

from image_migrator.extractors.base import PersistenceError, RecordStore

DEFAULT_JSON_COLUMNS: Dict[str, Set[str]] = {"web_stories": {"slides"}}


def _quote(identifier: str) -> str:
    return '"' + identifier.replace('"', '""') + '"'


class DuckDBRecordStore(RecordStore):

    def __init__(
        self,
        database: Union[str, "duckdb.DuckDBPyConnection"] = ":memory:",
        *,
        json_columns: Optional[Dict[str, Iterable[str]]] = None,
    ) -> None:
        if isinstance(database, str):
            self.con = duckdb.connect(database=database, read_only=False)
        else:
            self.con = database
        columns = DEFAULT_JSON_COLUMNS if json_columns is None else json_columns
        self.json_columns = {table: set(cols) for table, cols in columns.items()}

    def _decode(self, table: str, column: str, value: Any) -> Any:
        if column in self.json_columns.get(table, ()) and isinstance(value, str):
            try:
                return json.loads(value)
            except json.JSONDecodeError:
                return value
        return value

    def _encode(self, table: str, column: str, value: Any) -> Any:
        if column in self.json_columns.get(table, ()) and not isinstance(value, str) and value is not None:
            return json.dumps(value, ensure_ascii=False)
        return value

    def fetch_records(self, table: str, fields: Iterable[str]) -> List[Dict[str, Any]]:
        fields = list(fields)
        cols = ", ".join(_quote(f) for f in fields)
        rows = self.con.execute(
            f"SELECT {cols} FROM {_quote(table)} ORDER BY {_quote(fields[0])}"
        ).fetchall()
        return [
            {field: self._decode(table, field, value) for field, value in zip(fields, row)}
            for row in rows
        ]

    def update_record(self, table: str, record_id: Any, changes: Dict[str, Any], *, id_field: str = "id") -> None:
        if not changes:
            return
        columns = list(changes)
        assignments = ", ".join(f"{_quote(c)} = ?" for c in columns)
        params = [self._encode(table, c, changes[c]) for c in columns] + [record_id]
        try:
            self.con.execute(
                f"UPDATE {_quote(table)} SET {assignments} WHERE {_quote(id_field)} = ?", params
            )
        except duckdb.Error as e:
            raise PersistenceError(f"Update of {table}/{record_id} rejected: {e}") from e

    def close(self) -> None:
        self.con.close()


def load_table_from_csv(con: "duckdb.DuckDBPyConnection", table: str, csv_path: str) -> int:
    """
    Create ``table`` from a CSV export of the production table.

    Column names are normalized to snake_case the same way the export tool
    names them.  An existing table is left untouched.

    :return: Number of rows inserted (0 when the table already existed).
    """
    existing = {row[0] for row in con.execute("SHOW TABLES").fetchall()}
    if table in existing:
        return 0
    if not os.path.exists(csv_path):
        raise FileNotFoundError(csv_path)

    df = pd.read_csv(csv_path, dtype=str, keep_default_na=False)
    df.columns = [col.strip().replace(" ", "_").replace("-", "_").lower() for col in df.columns]
    df = df.replace({"": None})

    con.register("df_temp", df)
    try:
        con.execute(f"CREATE TABLE {_quote(table)} AS SELECT * FROM df_temp")
    finally:
        con.unregister("df_temp")
    return len(df)
