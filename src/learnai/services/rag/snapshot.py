from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timezone
import json
import logging
import os
from pathlib import Path

from learnai.services.rag.types import Chunk

logger = logging.getLogger(__name__)

MANIFEST_VERSION = "s1"


class SnapshotLoadError(RuntimeError):
    pass


@dataclass(frozen=True)
class Corpus:
    """Read-only chunk collection loaded from one snapshot file."""

    chunks: tuple[Chunk, ...] = ()
    embed_model: str | None = None

    def __len__(self) -> int:
        return len(self.chunks)

    @property
    def embedding_dim(self) -> int | None:
        for chunk in self.chunks:
            if chunk.embedding is not None:
                return len(chunk.embedding)
        return None

    def scoped(self, module_id: str) -> list[Chunk]:
        return [chunk for chunk in self.chunks if chunk.module_id == module_id]

    def module_counts(self) -> dict[str, int]:
        counts: dict[str, int] = {}
        for chunk in self.chunks:
            counts[chunk.module_id] = counts.get(chunk.module_id, 0) + 1
        return counts


def manifest_path_for(snapshot_path: Path) -> Path:
    return snapshot_path.with_name(f"{snapshot_path.stem}.meta.json")


def _stage_text(path: Path, content: str) -> Path:
    tmp_path = path.with_name(f"{path.name}.tmp")
    tmp_path.write_text(content, encoding="utf-8")
    return tmp_path


def _embedding_dim(chunks: list[Chunk]) -> int | None:
    dims = {len(chunk.embedding) for chunk in chunks if chunk.embedding is not None}
    if len(dims) > 1:
        raise ValueError(f"chunks carry mixed embedding dimensions: {sorted(dims)}")
    return dims.pop() if dims else None


def persist_snapshot(
    snapshot_path: Path,
    *,
    chunks: list[Chunk],
    embed_model: str | None,
) -> Path:
    seen: set[str] = set()
    for chunk in chunks:
        if chunk.id in seen:
            raise ValueError(f"duplicate chunk id: {chunk.id}")
        seen.add(chunk.id)
    embedding_dim = _embedding_dim(chunks)

    records: list[dict[str, object]] = []
    for chunk in chunks:
        record: dict[str, object] = {
            "id": chunk.id,
            "moduleId": chunk.module_id,
            "source": chunk.source,
            "text": chunk.text,
        }
        if chunk.embedding is not None:
            record["embedding"] = list(chunk.embedding)
        records.append(record)

    manifest = {
        "version": MANIFEST_VERSION,
        "generated_at": datetime.now(timezone.utc).isoformat(),
        "chunk_count": len(records),
        "embed_model": embed_model if embedding_dim is not None else None,
        "embedding_dim": embedding_dim,
    }

    manifest_path = manifest_path_for(snapshot_path)
    snapshot_path.parent.mkdir(parents=True, exist_ok=True)
    staged: list[Path] = []
    try:
        # stage both files before either target is touched
        staged.append(_stage_text(snapshot_path, json.dumps(records, ensure_ascii=False)))
        staged.append(
            _stage_text(manifest_path, json.dumps(manifest, ensure_ascii=False, indent=2))
        )
        os.replace(staged[0], snapshot_path)
        try:
            os.replace(staged[1], manifest_path)
        except OSError:
            # a stale manifest would reject the new snapshot on load
            manifest_path.unlink(missing_ok=True)
            raise
    finally:
        for tmp_path in staged:
            if tmp_path.exists():
                tmp_path.unlink()

    return snapshot_path


def _parse_embedding(value: object, *, position: int) -> tuple[float, ...] | None:
    if value is None:
        return None
    if not isinstance(value, list) or not value:
        raise SnapshotLoadError(f"record {position}: 'embedding' must be a non-empty array")
    if not all(isinstance(item, (int, float)) and not isinstance(item, bool) for item in value):
        raise SnapshotLoadError(f"record {position}: 'embedding' must contain only numbers")
    return tuple(float(item) for item in value)


def _parse_record(record: object, *, position: int) -> Chunk:
    if not isinstance(record, dict):
        raise SnapshotLoadError(f"record {position}: expected an object")

    fields: dict[str, str] = {}
    for key in ("id", "moduleId", "source", "text"):
        value = record.get(key)
        if not isinstance(value, str):
            raise SnapshotLoadError(f"record {position}: '{key}' must be a string")
        fields[key] = value

    return Chunk(
        id=fields["id"],
        module_id=fields["moduleId"],
        source=fields["source"],
        text=fields["text"],
        embedding=_parse_embedding(record.get("embedding"), position=position),
    )


def _read_manifest(snapshot_path: Path) -> dict[str, object] | None:
    manifest_path = manifest_path_for(snapshot_path)
    if not manifest_path.exists():
        return None
    try:
        manifest = json.loads(manifest_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SnapshotLoadError(f"Unreadable snapshot manifest {manifest_path}: {exc}") from exc
    if not isinstance(manifest, dict):
        raise SnapshotLoadError(f"Invalid snapshot manifest {manifest_path}: expected an object")
    return manifest


def load_corpus(snapshot_path: Path, *, expected_model: str | None = None) -> Corpus:
    try:
        payload = json.loads(snapshot_path.read_text(encoding="utf-8"))
    except (OSError, UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise SnapshotLoadError(f"Unreadable snapshot {snapshot_path}: {exc}") from exc

    if not isinstance(payload, list):
        raise SnapshotLoadError(f"Invalid snapshot {snapshot_path}: expected a JSON array")

    chunks: list[Chunk] = []
    seen: set[str] = set()
    for position, record in enumerate(payload):
        chunk = _parse_record(record, position=position)
        if chunk.id in seen:
            raise SnapshotLoadError(f"Invalid snapshot {snapshot_path}: duplicate id {chunk.id!r}")
        seen.add(chunk.id)
        chunks.append(chunk)

    try:
        embedding_dim = _embedding_dim(chunks)
    except ValueError as exc:
        raise SnapshotLoadError(f"Invalid snapshot {snapshot_path}: {exc}") from exc

    embed_model: str | None = None
    manifest = _read_manifest(snapshot_path)
    if manifest is not None:
        manifest_model = manifest.get("embed_model")
        embed_model = manifest_model if isinstance(manifest_model, str) else None
        manifest_dim = manifest.get("embedding_dim")
        if embedding_dim is not None and manifest_dim != embedding_dim:
            raise SnapshotLoadError(
                f"Snapshot {snapshot_path} has embedding_dim={embedding_dim}, "
                f"manifest declares {manifest_dim}"
            )

    if (
        expected_model is not None
        and embed_model is not None
        and embedding_dim is not None
        and embed_model != expected_model
    ):
        raise SnapshotLoadError(
            f"Snapshot {snapshot_path} was embedded with {embed_model!r}, "
            f"but the configured model is {expected_model!r}. Re-run `learnai-index`."
        )

    return Corpus(chunks=tuple(chunks), embed_model=embed_model)


def load_corpus_or_empty(snapshot_path: Path, *, expected_model: str | None = None) -> Corpus:
    if not snapshot_path.exists():
        logger.warning("snapshot %s not found; module retrieval is disabled", snapshot_path)
        return Corpus()

    try:
        corpus = load_corpus(snapshot_path, expected_model=expected_model)
    except SnapshotLoadError as exc:
        logger.warning("failed to load snapshot, continuing with an empty corpus: %s", exc)
        return Corpus()

    if not corpus.chunks:
        logger.warning("snapshot %s is empty; module retrieval is disabled", snapshot_path)
    else:
        logger.info("loaded %d chunks from %s", len(corpus), snapshot_path)
    return corpus
