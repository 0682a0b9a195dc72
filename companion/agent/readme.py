"""
README synthesis for documentation steps.

Builds a README from the project manifest (package.json or pyproject.toml)
and a depth-limited directory tree.
"""

import json
import logging
import tomllib
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

from companion.agent.context import REQUIREMENT_NAME

logger = logging.getLogger(__name__)

TREE_MAX_DEPTH = 2
TREE_SKIP = {"node_modules", ".git", "out", ".vscode", ".DS_Store", "__pycache__", ".venv", "venv", "dist", "build"}


@dataclass
class ProjectManifest:
    """The parts of a manifest a README needs."""

    name: str
    description: str = "Project description."
    scripts: dict[str, str] = field(default_factory=dict)
    dependencies: list[str] = field(default_factory=list)
    dev_dependencies: list[str] = field(default_factory=list)
    install_command: str | None = None


def _from_package_json(path: Path, fallback_name: str) -> ProjectManifest | None:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to parse package.json: {e}")
        return None
    if not isinstance(data, dict):
        return None
    return ProjectManifest(
        name=data.get("name") or fallback_name,
        description=data.get("description") or "Project description.",
        scripts=dict(data.get("scripts") or {}),
        dependencies=list((data.get("dependencies") or {}).keys()),
        dev_dependencies=list((data.get("devDependencies") or {}).keys()),
        install_command="npm install",
    )


def _names(specs: list[Any]) -> list[str]:
    names = []
    for spec in specs:
        match = REQUIREMENT_NAME.match(str(spec))
        if match:
            names.append(match.group(1))
    return names


def _from_pyproject(path: Path, fallback_name: str) -> ProjectManifest | None:
    try:
        with open(path, "rb") as f:
            data = tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to parse pyproject.toml: {e}")
        return None
    project = data.get("project", {})
    optional = project.get("optional-dependencies", {})
    dev = [spec for specs in optional.values() for spec in specs]
    return ProjectManifest(
        name=project.get("name") or fallback_name,
        description=project.get("description") or "Project description.",
        scripts=dict(project.get("scripts") or {}),
        dependencies=_names(project.get("dependencies", [])),
        dev_dependencies=list(dict.fromkeys(_names(dev))),
        install_command="pip install -e .",
    )


def load_manifest(root: Path) -> ProjectManifest:
    """Read package.json, then pyproject.toml; fall back to the directory name."""
    fallback = root.name
    package_json = root / "package.json"
    if package_json.exists():
        manifest = _from_package_json(package_json, fallback)
        if manifest:
            return manifest
    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        manifest = _from_pyproject(pyproject, fallback)
        if manifest:
            return manifest
    return ProjectManifest(name=fallback)


def build_file_tree(directory: Path, depth: int = 0, max_depth: int = TREE_MAX_DEPTH) -> list[str]:
    """Indented listing of directory, skipping vendored and build folders."""
    if depth > max_depth:
        return []
    lines = []
    try:
        entries = sorted(directory.iterdir(), key=lambda p: (not p.is_dir(), p.name))
    except OSError as e:
        logger.warning(f"Cannot list {directory}: {e}")
        return []
    indent = "  " * depth
    for entry in entries:
        if entry.name in TREE_SKIP:
            continue
        if entry.is_dir():
            lines.append(f"{indent}{entry.name}/")
            lines.extend(build_file_tree(entry, depth + 1, max_depth))
        else:
            lines.append(f"{indent}{entry.name}")
    return lines


def _bullets(items: list[str], empty: str) -> str:
    return "\n".join(f"- {item}" for item in items) if items else empty


def generate_readme(root: Path) -> str:
    manifest = load_manifest(root)
    scripts = (
        "\n".join(f"- **{name}**: `{command}`" for name, command in manifest.scripts.items())
        or "_No scripts defined_"
    )
    tree = "\n".join(build_file_tree(root))

    sections = [
        f"# {manifest.name}",
        manifest.description,
        "## Installation",
        f"```bash\n{manifest.install_command}\n```" if manifest.install_command else "_No manifest found_",
        f"## Project Structure (depth {TREE_MAX_DEPTH})",
        f"```\n{tree}\n```",
        "## Scripts",
        scripts,
        "## Runtime Dependencies",
        _bullets(manifest.dependencies, "_No runtime dependencies_"),
        "## Dev Dependencies",
        _bullets(manifest.dev_dependencies, "_No dev dependencies_"),
    ]
    return "\n\n".join(sections) + "\n"


def readme_footer(now: datetime | None = None) -> str:
    stamp = (now or datetime.now(timezone.utc)).isoformat()
    return f"\n\n---\n_Updated by CodeCompanion on {stamp}_"
