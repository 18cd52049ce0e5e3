"""
Collaborators the pipeline reports to.

RecordStore receives each finished metadata record; EventNotifier receives
lifecycle events. The pipeline only depends on the two protocols; the local
implementations here keep records as JSON files and print events.
"""

import json
import uuid
from pathlib import Path
from typing import Dict, List, Protocol
from rich.console import Console

from nd3_utils.validation import Nd3Metadata, StoredRecord

console = Console()


class PersistenceError(Exception):
    """The record store rejected a metadata record."""
    pass


class RecordStore(Protocol):
    def persist(self, metadata: Nd3Metadata) -> str:
        """Store a metadata record and return its identifier."""
        ...


class EventNotifier(Protocol):
    def notify(self, event: str, payload: Dict) -> None:
        ...


class JsonRecordStore:
    """Stores one <record id>.json document per processed capture."""

    def __init__(self, records_dir: Path):
        self.records_dir = Path(records_dir)

    def persist(self, metadata: Nd3Metadata) -> str:
        record = StoredRecord(
            id=uuid.uuid4().hex,
            original_file_name=metadata.original_file_name,
            meta=metadata.to_dict(),
        )
        record_path = self.records_dir / f"{record.id}.json"
        try:
            self.records_dir.mkdir(parents=True, exist_ok=True)
            with open(record_path, "w") as f:
                f.write(record.model_dump_json(by_alias=True, indent=2))
        except OSError as e:
            raise PersistenceError(f"Could not write record {record_path}: {e}")
        return record.id

    def load_all(self) -> List[StoredRecord]:
        records = []
        if not self.records_dir.exists():
            return records
        for path in sorted(self.records_dir.glob("*.json")):
            with open(path) as f:
                records.append(StoredRecord(**json.load(f)))
        return records


class ConsoleNotifier:
    """Prints pipeline events to the console."""

    def notify(self, event: str, payload: Dict) -> None:
        details = ", ".join(f"{k}={v}" for k, v in payload.items())
        console.print(f"[magenta]event[/magenta] {event} {details}")
