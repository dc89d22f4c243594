"""Reads export datasets and writes JSON/CSV report files."""

import csv
import json
import logging
import os
import tempfile
from typing import Any, Iterable, List, Sequence


def read_json(path: str) -> Any:
    """
    Loads a JSON document from disk.

    Args:
        path: Path to the JSON file

    Returns:
        The decoded document
    """
    with open(path, "r", encoding="utf-8") as f:
        return json.load(f)


def write_json(path: str, data: Any) -> None:
    """
    Writes a JSON document, replacing any existing file in a single rename.

    A reader (or a crashed run) never sees a partially written file.

    Args:
        path: Destination path
        data: JSON-serialisable data
    """
    directory = os.path.dirname(os.path.abspath(path))
    os.makedirs(directory, exist_ok=True)
    fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as f:
            json.dump(data, f, indent=2, default=str)
        os.replace(tmp_path, path)
    except BaseException:
        if os.path.exists(tmp_path):
            os.remove(tmp_path)
        raise
    logging.debug("Wrote %s", path)


def write_csv(path: str, header: Sequence[str], rows: Iterable[List[Any]]) -> None:
    """Writes a fully-quoted CSV extract (for import into an email service)."""
    os.makedirs(os.path.dirname(os.path.abspath(path)), exist_ok=True)
    with open(path, "w", encoding="utf-8", newline="") as f:
        writer = csv.writer(f, quoting=csv.QUOTE_ALL)
        writer.writerow(header)
        for row in rows:
            writer.writerow(["" if value is None else value for value in row])
    logging.debug("Wrote %s", path)


def format_amount(amount: int) -> str:
    """Formats an amount in minor units (cents) as a decimal string."""
    return "%.2f" % (amount / 100)
