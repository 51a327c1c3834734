from __future__ import annotations

import re
from pathlib import Path
from typing import Iterable

from render_sandbox.errors import ArtifactNotFound
from render_sandbox.models import Artifact, ExecutionResult

# Manim stores per-animation segments here before concatenating the final video.
DEFAULT_EXCLUDE_DIRS = ("partial_movie_files",)

_RENDERED_RE = re.compile(r"Rendered\s+(\w+)")


def find_candidates(
    root: Path, extension: str, exclude_dirs: Iterable[str] = DEFAULT_EXCLUDE_DIRS
) -> list[Path]:
    """Regular files under ``root`` with ``extension``.

    Symlinks are never candidates: the sandbox can plant a link to any host
    path, and the host would resolve it after the run.
    """
    excluded = set(exclude_dirs)
    suffix = extension.lower()
    real_root = root.resolve()
    candidates: list[Path] = []
    for path in root.rglob("*"):
        if path.suffix.lower() != suffix or path.is_symlink():
            continue
        if not path.is_file() or not path.resolve().is_relative_to(real_root):
            continue
        if excluded.intersection(path.relative_to(root).parts[:-1]):
            continue
        candidates.append(path)
    return candidates


def locate_artifact(
    root: Path,
    extension: str = ".mp4",
    exclude_dirs: Iterable[str] = DEFAULT_EXCLUDE_DIRS,
) -> Path:
    """Return the rendered file inside ``root``.

    When several files match, the most recently modified one wins and the
    path string breaks ties, so the choice never depends on directory
    traversal order.
    """
    candidates = find_candidates(root, extension, exclude_dirs)
    if not candidates:
        raise ArtifactNotFound(
            f"Rendering finished, but no {extension} file was produced."
        )
    if len(candidates) == 1:
        return candidates[0]
    return min(candidates, key=lambda p: (-p.stat().st_mtime_ns, str(p)))


def infer_artifact_name(path: Path, result: ExecutionResult | None = None) -> str:
    """Scene name announced by the renderer, falling back to the file stem.

    A script may render several scenes; the chosen file's own stem wins when
    it is among them, otherwise the last announced scene.
    """
    if result is None:
        return path.stem
    names = _RENDERED_RE.findall(result.stdout) + _RENDERED_RE.findall(result.stderr)
    if not names or path.stem in names:
        return path.stem
    return names[-1]


def resolve_artifact(
    root: Path,
    result: ExecutionResult | None = None,
    extension: str = ".mp4",
    exclude_dirs: Iterable[str] = DEFAULT_EXCLUDE_DIRS,
) -> Artifact:
    path = locate_artifact(root, extension, exclude_dirs)
    return Artifact(path=path, name=infer_artifact_name(path, result))
