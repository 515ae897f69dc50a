"""
Generation of the old → new image URL map.

The :func:`append_url_map_csv` helper appends one row per transferred asset
to a CSV file.  The file is an audit trail of every rewrite performed by the
batch migrator, so a wrong rewrite can be traced (or reverted by hand) after
the source objects have been cleaned up.
"""

from __future__ import annotations

import csv
import os
from typing import Dict, Iterable

URL_MAP_HEADER = ["OldURL", "NewURL", "Collection", "RecordId"]


def append_url_map_csv(rows: Iterable[Dict[str, str]], *, out_path: str = "reports/url_map.csv") -> str:
    """Append transferred asset mappings to ``out_path``.

    Parameters
    ----------
    rows:
        Iterable of dictionaries with ``OldURL`` and ``NewURL`` keys, and
        optionally ``Collection`` and ``RecordId``.
    out_path:
        Location of the CSV file.  The parent directory is created
        automatically and the header is written only when the file is new.

    Returns
    -------
    str
        The path of the CSV file.
    """
    os.makedirs(os.path.dirname(out_path) or ".", exist_ok=True)
    is_new = not os.path.exists(out_path) or os.path.getsize(out_path) == 0
    with open(out_path, "a", newline="", encoding="utf-8") as f:
        writer = csv.writer(f)
        if is_new:
            writer.writerow(URL_MAP_HEADER)
        for row in rows:
            writer.writerow([row.get(col, "") for col in URL_MAP_HEADER])
    return out_path
