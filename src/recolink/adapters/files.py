"""File-system adapters: datasets and model artifacts on disk.

Layout::

    data_dir/
        customers_crm.jsonl        # one JSON object per line
        customers_erp.json         # JSON array, or {"records": [...]}
    models_dir/
        scoring-v1/
            1.json
            2.json
            2.json.sha256          # optional expected digest

Unreadable files surface as ``TransientIOError`` so that the orchestrator
retries them; malformed content is a ``ValidationError``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

from recolink.errors import TransientIOError, ValidationError
from recolink.models.jobs import JobType
from recolink.models.records import Record
from recolink.registry.models import ModelMetadata
from recolink.utils import calculate_bytes_sha256, format_sha256

__all__ = ["FileIngestor", "FileModelStore", "read_records"]

DATASET_SUFFIXES = (".jsonl", ".json")


def read_records(path: Path, id_field: str = "id") -> list[Record]:
    """Read a JSON or JSONL dataset file.

    Parameters
    ----------
    path : Path
        Dataset file.
    id_field : str, optional
        Field holding the record identifier of flat rows.

    Returns
    -------
    list[Record]
        Records in file order.

    Raises
    ------
    TransientIOError
        If the file cannot be read.
    ValidationError
        If the content is not UTF-8 JSON or a row has no identifier.
    """
    try:
        text = path.read_text(encoding="utf-8")
    except OSError as e:
        raise TransientIOError(f"Cannot read dataset {path}: {e}") from e
    except UnicodeDecodeError as e:
        raise ValidationError(f"Dataset {path} is not valid UTF-8: {e}") from e

    rows: list[Any]
    try:
        if path.suffix == ".jsonl":
            rows = [json.loads(line) for line in text.splitlines() if line.strip()]
        else:
            doc = json.loads(text)
            rows = doc.get("records", []) if isinstance(doc, dict) else doc
    except json.JSONDecodeError as e:
        raise ValidationError(f"Invalid JSON in {path}: {e}") from e

    if not isinstance(rows, list):
        raise ValidationError(f"Dataset {path} must hold a list of records")

    records: list[Record] = []
    for line_no, row in enumerate(rows, start=1):
        if not isinstance(row, dict):
            raise ValidationError(f"{path}:{line_no}: record must be a JSON object")
        try:
            records.append(Record.from_dict(row, id_field=id_field))
        except KeyError as e:
            raise ValidationError(f"{path}:{line_no}: {e.args[0]}") from e
    return records


class FileIngestor:
    """Load ``<dataset>.jsonl`` or ``<dataset>.json`` from a directory.

    Parameters
    ----------
    data_dir : Path
        Directory holding dataset files.
    id_field : str, optional
        Field holding the record identifier.
    """

    def __init__(self, data_dir: Path, id_field: str = "id") -> None:
        self.data_dir = Path(data_dir)
        self.id_field = id_field

    def resolve(self, dataset: str) -> Path:
        """Path of *dataset*, preferring JSONL.

        Raises
        ------
        ValidationError
            If the name escapes the directory or no file exists.
        """
        if Path(dataset).name != dataset:
            raise ValidationError(f"Invalid dataset name: {dataset!r}")
        for suffix in DATASET_SUFFIXES:
            path = self.data_dir / f"{dataset}{suffix}"
            if path.is_file():
                return path
        raise ValidationError(f"Dataset {dataset!r} not found in {self.data_dir}")

    def load(
        self,
        dataset: str,
        *,
        tenant_id: str,
        environment: str,
        job_type: JobType,
    ) -> list[Record]:
        return read_records(self.resolve(dataset), id_field=self.id_field)


def _version_key(version: str) -> tuple[int, int | str]:
    return (0, int(version)) if version.isdigit() else (1, version)


class FileModelStore:
    """Model artifacts stored as ``<models_dir>/<name>/<version>.json``.

    The latest version is the highest numeric version, or the
    lexicographically greatest label when versions are not numeric. The
    expected digest comes from an optional ``<version>.json.sha256`` file,
    else from the artifact itself.
    """

    def __init__(self, models_dir: Path) -> None:
        self.models_dir = Path(models_dir)

    def fetch_latest_metadata(self, name: str) -> ModelMetadata | None:
        model_dir = self.models_dir / name
        if not model_dir.is_dir():
            return None
        try:
            versions = sorted((p.stem for p in model_dir.glob("*.json")), key=_version_key)
        except OSError as e:
            raise TransientIOError(f"Cannot list models in {model_dir}: {e}") from e
        if not versions:
            return None

        version = versions[-1]
        path = model_dir / f"{version}.json"
        sidecar = path.with_name(path.name + ".sha256")
        try:
            if sidecar.is_file():
                fields = sidecar.read_text(encoding="utf-8").split()
                if not fields:
                    raise ValidationError(f"Digest file {sidecar} is empty")
                digest = fields[0]
                digest = digest if digest.startswith("sha256:") else format_sha256(digest)
            else:
                digest = calculate_bytes_sha256(path.read_bytes())
        except OSError as e:
            raise TransientIOError(f"Cannot read model {path}: {e}") from e
        except UnicodeDecodeError as e:
            raise ValidationError(f"Digest file {sidecar} is not valid UTF-8: {e}") from e

        return ModelMetadata(name=name, version=version, digest=digest, location=str(path))

    def download(self, metadata: ModelMetadata) -> bytes:
        path = Path(metadata.location) if metadata.location else (
            self.models_dir / metadata.name / f"{metadata.version}.json"
        )
        try:
            return path.read_bytes()
        except OSError as e:
            raise TransientIOError(f"Cannot read model {path}: {e}") from e
