"""File-task priority scoring and path-based domain inference."""

from __future__ import annotations

import hashlib
import posixpath
import re
from collections.abc import Iterable

from domainscope.analysis.schemas import FileTask
from domainscope.constants import (
    DOMAIN_DIRECTORIES,
    PRIORITY_BASE,
    PRIORITY_MAX,
    PRIORITY_MIN,
    TaskStatus,
)

_ENTRY_POINT_NAMES = frozenset({
    "index",
    "main",
    "app",
    "root",
})

_HOOK_FILE_RE = re.compile(r"^use([A-Z]\w*)\.(tsx?|jsx?)$")
_CONTEXT_FILE_RE = re.compile(r"^([A-Z]\w*)Context\.(tsx?|jsx?)$")
_CUSTOM_HOOK_EXPORT_RE = re.compile(
    r"export\s+(?:default\s+)?(?:function|const)\s+use[A-Z]"
)
_EXPORT_RE = re.compile(r"^\s*export\s", re.MULTILINE)
_IMPORT_RE = re.compile(r"^\s*import\s", re.MULTILINE)
_SCRIPT_EXT_RE = re.compile(r"\.(tsx?|jsx?)$")


def infer_domain_from_path(path: str) -> str | None:
    """Guess a domain name from a file path.

    ``features/<name>/...`` style directories win; otherwise hook and
    context filenames (``useCart.ts``, ``CartContext.tsx``) name the
    domain.
    """
    parts = [p for p in path.replace("\\", "/").split("/") if p]
    for idx, part in enumerate(parts[:-1]):
        if part in DOMAIN_DIRECTORIES:
            return parts[idx + 1]

    filename = parts[-1] if parts else ""
    match = _HOOK_FILE_RE.match(filename)
    if match:
        return match.group(1).lower()
    match = _CONTEXT_FILE_RE.match(filename)
    if match:
        return match.group(1).lower()
    return None


def calculate_priority(
    path: str,
    *,
    content: str = "",
    relative_path: str | None = None,
) -> int:
    """Score how early a file should be analyzed (0–100).

    State-defining files (contexts, reducers, custom hooks, providers)
    and entry points come first; large, deeply nested and import-heavy
    files later.
    """
    score = float(PRIORITY_BASE)
    stem = _SCRIPT_EXT_RE.sub("", posixpath.basename(path)).lower()

    if stem in _ENTRY_POINT_NAMES:
        score += 30
    if "createContext" in content:
        score += 25
    if _CUSTOM_HOOK_EXPORT_RE.search(content):
        score += 20
    if "useReducer" in content:
        score += 20
    if "Provider" in content:
        score += 15

    score += min(len(_EXPORT_RE.findall(content)) * 2, 20)
    score -= min(len(_IMPORT_RE.findall(content)), 15)
    score -= min(len(content) * 0.0001, 10)

    depth = (relative_path or path).strip("/").count("/")
    score -= min(depth * 3, 15)

    return int(max(PRIORITY_MIN, min(PRIORITY_MAX, round(score))))


def content_hash(content: str) -> str:
    return hashlib.sha256(content.encode()).hexdigest()


def create_file_tasks(
    paths: Iterable[str],
    root: str = "",
    *,
    contents: dict[str, str] | None = None,
) -> list[FileTask]:
    """Build pending tasks for ``paths``, highest priority first.

    Ties keep scan order.
    """
    contents = contents or {}
    tasks: list[FileTask] = []
    for path in paths:
        rel = posixpath.relpath(path, root) if root else path
        text = contents.get(path, "")
        tasks.append(
            FileTask(
                path=path,
                relative_path=rel,
                priority=calculate_priority(
                    path, content=text, relative_path=rel
                ),
                status=TaskStatus.PENDING,
                hash=content_hash(text) if text else None,
            )
        )
    return sorted(tasks, key=lambda t: -t.priority)
