"""Flat file persistence of peaks and features.

Each row is stored as a JSON object in a separate line. Non finite values are stored as JSON constants.

"""

from __future__ import annotations

import pathlib
from typing import Iterable, TypeVar

import pydantic

T = TypeVar("T", bound=pydantic.BaseModel)


def write_jsonl(path: pathlib.Path, rows: Iterable[pydantic.BaseModel]) -> None:
    """Write models into a JSON lines file."""
    with path.open("wt") as f:
        for row in rows:
            f.write(row.model_dump_json(exclude={"n_peaks"}))
            f.write("\n")


def read_jsonl(path: pathlib.Path, model: type[T]) -> list[T]:
    """Read models from a JSON lines file created with :py:func:`write_jsonl`."""
    rows = list()
    with path.open("rt") as f:
        for line in f:
            line = line.strip()
            if line:
                rows.append(model.model_validate_json(line))
    return rows
