"""Output writers for JSONL and Parquet formats."""

import gzip
import json
from datetime import datetime
from pathlib import Path
from typing import Any, Optional

import pyarrow as pa
import pyarrow.parquet as pq

from .models import DailyRequestsResponse, RenderedRequest

GENERATOR_VERSION = "0.1.0"


def flatten_request(response: DailyRequestsResponse, request: RenderedRequest) -> dict:
    """One output row: the request plus the account it belongs to."""
    row = {
        "account_id": response.account_id,
        "account_name": response.account_name,
        "target_date": response.target_date,
        "days_passed": response.days_passed,
    }
    row.update(request.to_dict())
    return row


class JSONLWriter:
    """Writer for JSONL output format."""

    def __init__(
        self,
        output_path: Path,
        compress: bool = True,
        batch_size: int = 1000,
    ):
        self.output_path = output_path
        self.compress = compress
        self.batch_size = batch_size
        self.buffer: list[dict] = []
        self.total_written = 0
        self._file = None

    def __enter__(self):
        self._open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _open(self):
        """Open the output file."""
        if self.compress:
            self._file = gzip.open(self.output_path, "wt", encoding="utf-8")
        else:
            self._file = open(self.output_path, "w", encoding="utf-8")

    def write_row(self, row: dict) -> None:
        """Add row to buffer, flush if full."""
        self.buffer.append(row)

        if len(self.buffer) >= self.batch_size:
            self._flush()

    def _flush(self) -> None:
        if not self.buffer:
            return

        for row in self.buffer:
            self._file.write(json.dumps(row, ensure_ascii=False) + "\n")

        self.total_written += len(self.buffer)
        self.buffer = []

    def close(self) -> None:
        """Flush remaining rows and close file."""
        self._flush()
        if self._file:
            self._file.close()
            self._file = None


class ParquetWriter:
    """Writer for Parquet output format."""

    SCHEMA = pa.schema([
        ("account_id", pa.int64()),
        ("account_name", pa.string()),
        ("target_date", pa.string()),
        ("days_passed", pa.int32()),
        ("request_type", pa.string()),
        ("content", pa.string()),
        ("event_token", pa.string()),
        ("level_id", pa.int64()),
        ("time_spent", pa.int64()),
        ("timestamp", pa.timestamp("us")),
    ])

    def __init__(
        self,
        output_path: Path,
        batch_size: int = 10000,
    ):
        self.output_path = output_path
        self.batch_size = batch_size
        self.buffer: list[dict] = []
        self.total_written = 0
        self._writer: Optional[pq.ParquetWriter] = None

    def __enter__(self):
        self._open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def _open(self):
        """Open the Parquet writer."""
        self._writer = pq.ParquetWriter(
            self.output_path,
            self.SCHEMA,
            compression="snappy",
        )

    def write_row(self, row: dict) -> None:
        """Add row to buffer, flush if full."""
        row = dict(row)
        row["timestamp"] = datetime.fromisoformat(row["timestamp"].rstrip("Z"))
        self.buffer.append(row)

        if len(self.buffer) >= self.batch_size:
            self._flush()

    def _flush(self) -> None:
        """Write buffer to Parquet file."""
        if not self.buffer:
            return

        # Convert to columnar format
        columns = {field.name: [] for field in self.SCHEMA}
        for row in self.buffer:
            for col_name in columns:
                columns[col_name].append(row.get(col_name))

        table = pa.table(columns, schema=self.SCHEMA)
        self._writer.write_table(table)

        self.total_written += len(self.buffer)
        self.buffer = []

    def close(self) -> None:
        """Flush remaining rows and close file."""
        self._flush()
        if self._writer:
            self._writer.close()
            self._writer = None


class MetadataWriter:
    """Writer for run metadata."""

    def __init__(self, output_dir: Path):
        self.output_dir = output_dir
        self.metadata: dict[str, Any] = {
            "generator_version": GENERATOR_VERSION,
            "generated_at": None,
            "target_date": None,
            "seed": None,
            "settings": {},
            "stats": {
                "total_requests": 0,
                "accounts": 0,
                "requests_by_type": {},
                "requests_by_account": {},
            },
        }

    def set_run(self, target_date: str, seed: Optional[int], settings: Optional[dict] = None) -> None:
        """Set the target date, seed and scheduler settings of the run."""
        self.metadata["target_date"] = target_date
        self.metadata["seed"] = seed
        self.metadata["settings"] = settings or {}

    def set_generation_time(self, timestamp: datetime) -> None:
        """Set generation timestamp."""
        self.metadata["generated_at"] = timestamp.isoformat() + "Z"

    def record_response(self, response: DailyRequestsResponse) -> None:
        """Count the requests of one account response."""
        stats = self.metadata["stats"]
        stats["accounts"] += 1

        by_account = stats["requests_by_account"]
        key = str(response.account_id)
        by_account[key] = by_account.get(key, 0) + len(response.requests)

        for request in response.requests:
            stats["total_requests"] += 1
            request_type = request.request_type.value
            stats["requests_by_type"][request_type] = stats["requests_by_type"].get(request_type, 0) + 1

    def write(self) -> Path:
        """Write metadata to file."""
        output_path = self.output_dir / "metadata.json"
        with open(output_path, "w", encoding="utf-8") as f:
            json.dump(self.metadata, f, indent=2, ensure_ascii=False)
        return output_path


class OutputManager:
    """Manages all output writers."""

    def __init__(
        self,
        output_dir: Path,
        output_format: str = "jsonl",
        compression: str = "gzip",
        batch_size: int = 1000,
        include_metadata: bool = True,
    ):
        self.output_dir = output_dir
        self.output_format = output_format
        self.compression = compression
        self.batch_size = batch_size
        self.include_metadata = include_metadata

        self.output_dir.mkdir(parents=True, exist_ok=True)

        self.jsonl_writer: Optional[JSONLWriter] = None
        self.parquet_writer: Optional[ParquetWriter] = None
        self.metadata_writer: Optional[MetadataWriter] = None

        self._setup_writers()

    def _setup_writers(self):
        """Initialize writers based on output format."""
        if self.output_format in ("jsonl", "both"):
            ext = ".jsonl.gz" if self.compression == "gzip" else ".jsonl"
            self.jsonl_writer = JSONLWriter(
                self.output_dir / f"requests{ext}",
                compress=(self.compression == "gzip"),
                batch_size=self.batch_size,
            )

        if self.output_format in ("parquet", "both"):
            self.parquet_writer = ParquetWriter(
                self.output_dir / "requests.parquet",
                batch_size=self.batch_size * 10,
            )

        if self.include_metadata:
            self.metadata_writer = MetadataWriter(self.output_dir)

    def __enter__(self):
        if self.jsonl_writer:
            self.jsonl_writer._open()
        if self.parquet_writer:
            self.parquet_writer._open()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def set_run(self, target_date: str, seed: Optional[int], settings: Optional[dict] = None) -> None:
        if self.metadata_writer:
            self.metadata_writer.set_run(target_date, seed, settings)

    def write_response(self, response: DailyRequestsResponse) -> None:
        """Write every request of a response to all active writers."""
        for request in response.requests:
            row = flatten_request(response, request)
            if self.jsonl_writer:
                self.jsonl_writer.write_row(row)
            if self.parquet_writer:
                self.parquet_writer.write_row(row)

        if self.metadata_writer:
            self.metadata_writer.record_response(response)

    def get_total_requests(self) -> int:
        """Get total requests written."""
        if self.jsonl_writer:
            return self.jsonl_writer.total_written + len(self.jsonl_writer.buffer)
        if self.parquet_writer:
            return self.parquet_writer.total_written + len(self.parquet_writer.buffer)
        return 0

    def close(self) -> None:
        """Close all writers."""
        if self.jsonl_writer:
            self.jsonl_writer.close()
        if self.parquet_writer:
            self.parquet_writer.close()

    def finalize(self, generation_time: datetime) -> None:
        """Write metadata."""
        if self.metadata_writer:
            self.metadata_writer.set_generation_time(generation_time)
            self.metadata_writer.write()
