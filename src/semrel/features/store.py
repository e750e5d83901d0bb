"""
On-disk store for feature matrices and their normalizers.

Layout, one directory per (metric, language):

    <root>/<metric>/<language>/
        LATEST                               # name of the served version
        20260101T120000000000Z/
            vectors.npz                      # CSR arrays (ids, indptr, dims, weights)
            normalizer-similarity.json       # NormalizerModel (msgspec JSON)
            normalizer-most_similar.json
            manifest.json                    # written last: marks the version complete

Publishing writes into a hidden temp directory, renames it into place and
only then replaces LATEST (temp file + os.replace). A failed publish
removes its temp directory and leaves LATEST pointing at the previous
complete version.
"""

from __future__ import annotations

import logging
import os
import shutil
import tempfile
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Mapping

import msgspec
import numpy as np

from ..core.errors import BuildIOError
from ..core.types import MetricKind, NormalizerRole
from ..normalizers import Normalizer, NormalizerModel, normalizer_from_model
from .matrix import FeatureMatrix, MetricState

logger = logging.getLogger(__name__)

VERSION_FORMAT = "%Y%m%dT%H%M%S%fZ"
LATEST_FILE = "LATEST"
MANIFEST_FILE = "manifest.json"
VECTORS_FILE = "vectors.npz"


class Manifest(msgspec.Struct, frozen=True):
    """Metadata of one complete feature matrix version."""

    metric: str
    language: str
    version: str
    created_at: str
    num_concepts: int
    kind: str = "vector"
    normalizers: list[str] = []
    labels: dict[int, str] = {}


def _normalizer_file(role: NormalizerRole) -> str:
    return f"normalizer-{role.value}.json"


class FeatureMatrixStore:
    """Versioned, atomically published feature matrix storage."""

    def __init__(self, root: Path | str):
        self.root = Path(root)

    def key_dir(self, metric: str, language: str) -> Path:
        return self.root / metric / language

    # =========================================================================
    # Versions
    # =========================================================================

    def new_version(self, metric: str, language: str) -> str:
        """
        Allocate a build timestamp version newer than any existing one.

        Versions sort lexicographically in build order.
        """
        now = datetime.now(timezone.utc)
        latest = self.latest_version(metric, language)
        if latest is not None:
            previous = datetime.strptime(latest, VERSION_FORMAT).replace(tzinfo=timezone.utc)
            if now <= previous:
                now = previous + timedelta(microseconds=1)
        return now.strftime(VERSION_FORMAT)

    def versions(self, metric: str, language: str) -> list[str]:
        """Complete versions (those with a manifest), oldest first."""
        key_dir = self.key_dir(metric, language)
        if not key_dir.is_dir():
            return []
        return sorted(
            p.name
            for p in key_dir.iterdir()
            if p.is_dir() and not p.name.startswith(".") and (p / MANIFEST_FILE).exists()
        )

    def latest_version(self, metric: str, language: str) -> str | None:
        """
        Resolve the version readers should serve.

        Uses LATEST when it names a complete version, otherwise the newest
        complete version on disk.
        """
        key_dir = self.key_dir(metric, language)
        pointer = key_dir / LATEST_FILE
        if pointer.exists():
            name = pointer.read_text(encoding="utf-8").strip()
            if name and (key_dir / name / MANIFEST_FILE).exists():
                return name
            logger.warning("LATEST for %s/%s names incomplete version %r", metric, language, name)

        versions = self.versions(metric, language)
        return versions[-1] if versions else None

    def keys(self) -> list[tuple[str, str]]:
        """All (metric, language) pairs with at least one complete version."""
        if not self.root.is_dir():
            return []
        found = []
        for metric_dir in sorted(p for p in self.root.iterdir() if p.is_dir()):
            for lang_dir in sorted(p for p in metric_dir.iterdir() if p.is_dir()):
                if self.versions(metric_dir.name, lang_dir.name):
                    found.append((metric_dir.name, lang_dir.name))
        return found

    # =========================================================================
    # Publish / load
    # =========================================================================

    def publish(
        self,
        matrix: FeatureMatrix,
        normalizers: Mapping[NormalizerRole, Normalizer] | None = None,
        kind: MetricKind | str = MetricKind.vector,
    ) -> Path:
        """
        Persist a matrix and its normalizers as a new complete version.

        Args:
            matrix: Fully built feature matrix
            normalizers: Fitted normalizers by role
            kind: Metric kind recorded in the manifest

        Returns:
            Path of the published version directory

        Raises:
            BuildIOError: On any filesystem failure; nothing becomes visible
        """
        normalizers = normalizers or {}
        key_dir = self.key_dir(matrix.metric, matrix.language)
        tmp_dir: Path | None = None

        try:
            key_dir.mkdir(parents=True, exist_ok=True)
            tmp_dir = Path(tempfile.mkdtemp(dir=key_dir, prefix=f".tmp-{matrix.version}-"))

            with open(tmp_dir / VECTORS_FILE, "wb") as f:
                np.savez_compressed(f, **matrix.to_arrays())

            for role, normalizer in normalizers.items():
                role = NormalizerRole(role)
                (tmp_dir / _normalizer_file(role)).write_bytes(normalizer.to_model().encode())

            manifest = Manifest(
                metric=matrix.metric,
                language=matrix.language,
                version=matrix.version,
                created_at=matrix.created_at.isoformat(),
                num_concepts=len(matrix),
                kind=MetricKind(kind).value,
                normalizers=sorted(NormalizerRole(r).value for r in normalizers),
                labels=matrix.labels,
            )
            (tmp_dir / MANIFEST_FILE).write_bytes(msgspec.json.encode(manifest))

            final_dir = key_dir / matrix.version
            os.rename(tmp_dir, final_dir)
            tmp_dir = None
            self._write_latest(key_dir, matrix.version)
        except OSError as e:
            raise BuildIOError(
                f"Failed to publish {matrix.metric}/{matrix.language} version {matrix.version}",
                detail=str(e),
            ) from e
        finally:
            if tmp_dir is not None:
                shutil.rmtree(tmp_dir, ignore_errors=True)

        logger.info(
            "Published %s/%s version %s (%d concepts)",
            matrix.metric,
            matrix.language,
            matrix.version,
            len(matrix),
        )
        return final_dir

    def _write_latest(self, key_dir: Path, version: str) -> None:
        fd, temp_path = tempfile.mkstemp(dir=key_dir, prefix=".tmp_", suffix=".latest")
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(version)
            os.replace(temp_path, key_dir / LATEST_FILE)
        except OSError:
            if os.path.exists(temp_path):
                os.unlink(temp_path)
            raise

    def manifest(self, metric: str, language: str, version: str | None = None) -> Manifest | None:
        """Manifest of a complete version (the latest by default), or None."""
        version = version or self.latest_version(metric, language)
        if version is None:
            return None
        path = self.key_dir(metric, language) / version / MANIFEST_FILE
        return msgspec.json.decode(path.read_bytes(), type=Manifest)

    def load(self, metric: str, language: str, version: str | None = None) -> MetricState | None:
        """
        Load a complete version (the latest by default).

        Returns:
            MetricState, or None when nothing has been published for the key
        """
        manifest = self.manifest(metric, language, version)
        if manifest is None:
            return None

        version = manifest.version
        version_dir = self.key_dir(metric, language) / version
        with np.load(version_dir / VECTORS_FILE) as data:
            arrays = {name: data[name] for name in ("ids", "indptr", "dims", "weights")}

        matrix = FeatureMatrix.from_arrays(
            metric,
            language,
            version,
            arrays,
            labels=manifest.labels,
            created_at=datetime.fromisoformat(manifest.created_at),
        )

        normalizers: dict[NormalizerRole, Normalizer] = {}
        for role in NormalizerRole:
            path = version_dir / _normalizer_file(role)
            if path.exists():
                normalizers[role] = normalizer_from_model(NormalizerModel.decode(path.read_bytes()))

        logger.info("Loaded %s/%s version %s (%d concepts)", metric, language, version, len(matrix))
        return MetricState(matrix=matrix, normalizers=normalizers)

    def prune(self, metric: str, language: str, keep: int) -> list[str]:
        """Remove all but the newest `keep` complete versions; never the served one."""
        versions = self.versions(metric, language)
        latest = self.latest_version(metric, language)
        removed = []
        for version in versions[: max(0, len(versions) - keep)]:
            if version == latest:
                continue
            shutil.rmtree(self.key_dir(metric, language) / version, ignore_errors=True)
            removed.append(version)
        if removed:
            logger.info("Pruned %d old versions of %s/%s", len(removed), metric, language)
        return removed
