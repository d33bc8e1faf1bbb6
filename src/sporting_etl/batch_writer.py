"""Flat CSV batches of nested provider records in S3.

Records are flattened into ``a.b`` / ``a[0].b`` column paths. The header of a
batch is the union of every record's paths (first-seen order) and each row
carries an empty string for paths it does not have. Files land at
``{data_type}/{YYYY}/{MM}/{DD}/{discriminator}.csv``.
"""

from __future__ import annotations

import fnmatch
import io
import logging
import re
from datetime import date
from typing import Any, Dict, Iterable, List, Optional

import pyarrow as pa
import pyarrow.csv as pacsv

from .logging_utils import log_json
from .s3_io import S3IO, make_part_key


def flatten_record(record: Any) -> Dict[str, str]:
    flat: Dict[str, str] = {}
    if isinstance(record, (dict, list)):
        _flatten(record, "", flat)
    else:
        flat["value"] = render_scalar(record)
    return flat


def _flatten(node: Any, prefix: str, out: Dict[str, str]) -> None:
    if isinstance(node, dict):
        for key, value in node.items():
            _flatten(value, f"{prefix}.{key}" if prefix else str(key), out)
    elif isinstance(node, list):
        for idx, value in enumerate(node):
            _flatten(value, f"{prefix}[{idx}]", out)
    else:
        out[prefix or "value"] = render_scalar(node)


def render_scalar(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def union_header(rows: Iterable[Dict[str, str]]) -> List[str]:
    header: Dict[str, None] = {}
    for row in rows:
        for key in row:
            header.setdefault(key, None)
    return list(header)


def partition_key(data_type: str, day: date, discriminator: str) -> str:
    name = discriminator if discriminator.endswith(".csv") else f"{discriminator}.csv"
    return make_part_key(data_type, f"{day.year:04d}", f"{day.month:02d}", f"{day.day:02d}", name)


def records_to_csv(records: List[Any]) -> bytes:
    rows = [flatten_record(r) for r in records]
    header = union_header(rows)
    if not header:
        raise ValueError("batch has no fields to write")
    table = pa.table({col: pa.array([row.get(col, "") for row in rows], type=pa.string()) for col in header})
    sink = io.BytesIO()
    pacsv.write_csv(table, sink)
    return sink.getvalue()


def csv_to_rows(data: bytes) -> List[Dict[str, str]]:
    parse = pacsv.ParseOptions(newlines_in_values=True)
    names = pacsv.open_csv(io.BytesIO(data), parse_options=parse).schema.names
    table = pacsv.read_csv(
        io.BytesIO(data),
        parse_options=parse,
        convert_options=pacsv.ConvertOptions(
            column_types={name: pa.string() for name in names},
            strings_can_be_null=False,
            quoted_strings_can_be_null=False,
        ),
    )
    return table.to_pylist()


class BatchWriter:
    def __init__(self, s3: S3IO, logger: Optional[logging.Logger] = None) -> None:
        self.s3 = s3
        self.logger = logger or logging.getLogger(__name__)

    def write_batch(self, records: List[Any], data_type: str, day: date, discriminator: str) -> str:
        if not records:
            raise ValueError("cannot write an empty batch")
        key = partition_key(data_type, day, discriminator)
        self.s3.put_bytes(key, records_to_csv(records), content_type="text/csv")
        log_json(self.logger, "batch_written", key=key, records=len(records))
        return key

    def list_by_pattern(self, pattern: str) -> List[str]:
        """Keys matching a glob; ``*`` also matches across ``/``."""
        prefix = re.split(r"[*?\[]", pattern, maxsplit=1)[0]
        return sorted(k for k in self.s3.list_keys(prefix) if fnmatch.fnmatchcase(k, pattern))

    def read(self, key: str) -> List[Dict[str, str]]:
        return csv_to_rows(self.s3.get_object_bytes(key))

    def find_record(self, data_type: str, record_id: str) -> Optional[Dict[str, str]]:
        """Most recent batch row of ``data_type`` whose ``id`` column equals ``record_id``."""
        for key in reversed(self.list_by_pattern(f"{data_type}/*.csv")):
            for row in self.read(key):
                if row.get("id") == record_id:
                    return row
        return None
