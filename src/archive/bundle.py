"""Archive bundle format: a gzipped tar holding _manifest.json at the top
level and the document content under content/, so no content filename can
shadow the manifest.

The archive checksum is sha256 over the exact manifest bytes written into
the bundle, so verify and restore can recompute it from the bundle alone.
These helpers are blocking; callers run them via asyncio.to_thread.
"""

from __future__ import annotations

import hashlib
import io
import json
import tarfile
from dataclasses import dataclass
from pathlib import Path

from src.schemas.archive import ArchiveManifest

MANIFEST_NAME = "_manifest.json"
CONTENT_DIR = "content"
CHECKSUM_PREFIX = "sha256:"


@dataclass(slots=True)
class UnpackedBundle:
    manifest_bytes: bytes
    manifest: ArchiveManifest
    content: bytes | None
    content_filename: str | None


def checksum(data: bytes) -> str:
    return CHECKSUM_PREFIX + hashlib.sha256(data).hexdigest()


def manifest_bytes(manifest: ArchiveManifest) -> bytes:
    """Canonical JSON encoding: sorted keys, two-space indent, UTF-8."""
    return json.dumps(manifest.model_dump(mode="json"), sort_keys=True, indent=2).encode("utf-8")


def build_bundle(
    scratch_dir: Path,
    manifest_data: bytes,
    content: bytes | None,
    content_filename: str | None,
) -> bytes:
    """Stage files in scratch_dir and return the tar.gz bytes."""
    staged: list[tuple[Path, str]] = []
    if content is not None and content_filename:
        content_path = scratch_dir / CONTENT_DIR / content_filename
        content_path.parent.mkdir(parents=True, exist_ok=True)
        content_path.write_bytes(content)
        staged.append((content_path, f"{CONTENT_DIR}/{content_filename}"))

    manifest_path = scratch_dir / MANIFEST_NAME
    manifest_path.write_bytes(manifest_data)
    staged.append((manifest_path, MANIFEST_NAME))

    buffer = io.BytesIO()
    with tarfile.open(fileobj=buffer, mode="w:gz") as tar:
        for path, arcname in staged:
            tar.add(path, arcname=arcname)
    return buffer.getvalue()


def read_bundle(data: bytes, scratch_dir: Path) -> UnpackedBundle:
    """Unpack a bundle into scratch_dir and load its manifest and content.

    Raises:
        ValueError: not a readable bundle or no manifest inside.
    """
    try:
        with tarfile.open(fileobj=io.BytesIO(data), mode="r:gz") as tar:
            tar.extractall(scratch_dir, filter="data")
    except tarfile.TarError as exc:
        raise ValueError(f"Unreadable archive bundle: {exc}") from exc

    manifest_path = scratch_dir / MANIFEST_NAME
    if not manifest_path.is_file():
        raise ValueError("Archive bundle has no manifest")

    raw_manifest = manifest_path.read_bytes()
    manifest = ArchiveManifest.model_validate_json(raw_manifest)

    content: bytes | None = None
    content_filename: str | None = None
    if manifest.content_filename:
        content_path = scratch_dir / CONTENT_DIR / manifest.content_filename
        if content_path.is_file():
            content_filename = content_path.name
            content = content_path.read_bytes()

    return UnpackedBundle(
        manifest_bytes=raw_manifest,
        manifest=manifest,
        content=content,
        content_filename=content_filename,
    )
