from __future__ import annotations

from pathlib import Path

from learnai.services.rag.types import SourceDocument

SUPPORTED_EXTENSIONS = {".txt", ".md"}


def load_module_documents(
    source_dir: Path,
    supported_extensions: set[str] | None = None,
) -> dict[str, list[SourceDocument]]:
    """Read ``<source_dir>/<module_id>/**`` text files grouped by module.

    Modules keep directory-name order; a module with no readable text maps
    to an empty list so callers can report it.
    """
    if not source_dir.exists():
        raise FileNotFoundError(f"Source directory not found: {source_dir}")
    if not source_dir.is_dir():
        raise NotADirectoryError(f"Source path is not a directory: {source_dir}")

    module_dirs = sorted(path for path in source_dir.iterdir() if path.is_dir())
    if not module_dirs:
        raise ValueError(f"No module directories found in {source_dir}")

    extensions = supported_extensions or SUPPORTED_EXTENSIONS
    modules: dict[str, list[SourceDocument]] = {}

    for module_dir in module_dirs:
        files = sorted(
            path
            for path in module_dir.rglob("*")
            if path.is_file() and path.suffix.lower() in extensions
        )

        documents: list[SourceDocument] = []
        for path in files:
            text = path.read_text(encoding="utf-8")
            if not text.strip():
                continue
            documents.append(
                SourceDocument(
                    module_id=module_dir.name,
                    source=path.relative_to(module_dir).as_posix(),
                    text=text,
                )
            )
        modules[module_dir.name] = documents

    return modules
