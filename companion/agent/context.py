"""
Context Analyzer - workspace snapshot for a task

Captures the workspace root, current file and language, project type,
dependencies, manifest scripts, git state and recent changes. The
orchestrator calls analyze() once per task; every step then sees the same
frozen TaskContext.

Missing manifests, non-git directories and a missing git binary are
normal: the corresponding fields are simply left empty.
"""

import asyncio
import json
import logging
import re
import tomllib
from abc import ABC, abstractmethod
from datetime import datetime
from pathlib import Path
from typing import Any

from companion.state import FileChange, GitInfo, TaskContext, UserPreferences

logger = logging.getLogger(__name__)

GIT_TIMEOUT = 10.0  # seconds per git call

# Marker file -> project type, checked in order
PROJECT_MARKERS: list[tuple[tuple[str, ...], str]] = [
    (("package.json",), "node"),
    (("requirements.txt", "pyproject.toml"), "python"),
    (("Cargo.toml",), "rust"),
    (("go.mod",), "go"),
    (("pom.xml", "build.gradle"), "java"),
    (("Gemfile",), "ruby"),
    (("composer.json",), "php"),
    (("*.csproj", "*.sln"), "csharp"),
    (("CMakeLists.txt", "Makefile"), "cpp"),
]

LANGUAGE_BY_EXTENSION = {
    ".py": "python",
    ".js": "javascript",
    ".jsx": "javascriptreact",
    ".ts": "typescript",
    ".tsx": "typescriptreact",
    ".rs": "rust",
    ".go": "go",
    ".java": "java",
    ".rb": "ruby",
    ".php": "php",
    ".cs": "csharp",
    ".c": "c",
    ".h": "c",
    ".cpp": "cpp",
    ".hpp": "cpp",
    ".md": "markdown",
    ".json": "json",
    ".sh": "shellscript",
}

CHANGE_TYPES = {"A": "created", "M": "modified", "D": "deleted"}

REQUIREMENT_NAME = re.compile(r"^\s*([A-Za-z0-9][A-Za-z0-9._\-]*)")


def language_for(file_path: str | None) -> str | None:
    if not file_path:
        return None
    return LANGUAGE_BY_EXTENSION.get(Path(file_path).suffix.lower())


class ContextProvider(ABC):
    """Source of TaskContext snapshots."""

    @abstractmethod
    async def analyze(self, params: dict[str, Any]) -> TaskContext:
        """Capture a snapshot; params may override current_file and language."""


class ContextAnalyzer(ContextProvider):
    """Builds TaskContext from the filesystem and git."""

    def __init__(
        self,
        workspace_root: str | Path | None,
        current_file: str | None = None,
        language: str | None = None,
        open_files: tuple[str, ...] | list[str] = (),
        preferences: UserPreferences | None = None,
    ):
        self.workspace_root = str(Path(workspace_root).resolve()) if workspace_root else None
        self.current_file = current_file
        self.language = language
        self.open_files = tuple(open_files)
        self.preferences = preferences or UserPreferences()

    async def analyze(self, params: dict[str, Any]) -> TaskContext:
        current_file = params.get("current_file") or params.get("filePath") or params.get("file_path")
        current_file = current_file or self.current_file
        language = params.get("language") or self.language or language_for(current_file)

        project_type = None
        dependencies: list[str] = []
        scripts: dict[str, str] = {}
        git_info = None
        recent_changes: list[FileChange] = []

        if self.workspace_root:
            root = Path(self.workspace_root)
            project_type = detect_project_type(root)
            dependencies = read_dependencies(root)
            scripts = read_scripts(root)
            git_info = await self.get_git_info()
            if git_info is not None:
                recent_changes = await self.get_recent_changes()

        open_files = self.open_files
        if current_file and current_file not in open_files:
            open_files = (current_file, *open_files)

        return TaskContext(
            workspace_root=self.workspace_root,
            current_file=current_file,
            language=language,
            project_type=project_type,
            dependencies=tuple(dependencies),
            git_info=git_info,
            user_preferences=self.preferences,
            recent_changes=tuple(recent_changes),
            open_files=open_files,
            scripts=scripts,
        )

    async def _git(self, *args: str) -> str | None:
        """Run a git command in the workspace; None if git fails or is missing."""
        try:
            proc = await asyncio.create_subprocess_exec(
                "git",
                *args,
                cwd=self.workspace_root,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as e:
            logger.debug(f"git unavailable: {e}")
            return None

        try:
            stdout, _ = await asyncio.wait_for(proc.communicate(), timeout=GIT_TIMEOUT)
        except TimeoutError:
            proc.kill()
            await proc.wait()
            logger.warning(f"git {' '.join(args)} timed out")
            return None

        if proc.returncode != 0:
            return None
        return stdout.decode("utf-8", errors="replace").strip()

    async def get_git_info(self) -> GitInfo | None:
        """Branch, HEAD commit, dirty flag and origin URL; None outside a repository."""
        if await self._git("rev-parse", "--is-inside-work-tree") is None:
            return None

        branch = await self._git("branch", "--show-current") or ""
        last_commit = await self._git("log", "-1", "--format=%H") or ""
        porcelain = await self._git("status", "--porcelain") or ""
        remote_url = await self._git("remote", "get-url", "origin")

        return GitInfo(
            branch=branch,
            last_commit=last_commit,
            has_uncommitted_changes=bool(porcelain.strip()),
            remote_url=remote_url or None,
        )

    async def get_recent_changes(self) -> list[FileChange]:
        """Files touched by commits from the last day."""
        output = await self._git(
            "log", "--name-status", "--since=1 day ago", "--pretty=format:%H|%an|%aI|%s"
        )
        if not output:
            return []
        return parse_name_status_log(output)


def parse_name_status_log(output: str) -> list[FileChange]:
    """Parse `git log --name-status --pretty=format:%H|%an|%aI|%s` output."""
    changes = []
    timestamp = datetime.now()
    subject = None

    for line in output.splitlines():
        if not line.strip():
            continue
        if "\t" not in line and line.count("|") >= 3:
            _, _, date, subject = line.split("|", 3)
            try:
                timestamp = datetime.fromisoformat(date)
            except ValueError:
                timestamp = datetime.now()
            continue
        parts = line.split("\t")
        status = parts[0][:1]
        if status in CHANGE_TYPES and len(parts) >= 2:
            changes.append(
                FileChange(
                    file_path=parts[-1],
                    change_type=CHANGE_TYPES[status],
                    timestamp=timestamp,
                    description=subject,
                )
            )
    return changes


def detect_project_type(root: Path) -> str:
    for markers, project_type in PROJECT_MARKERS:
        for marker in markers:
            if "*" in marker:
                if any(root.glob(marker)):
                    return project_type
            elif (root / marker).exists():
                return project_type
    return "unknown"


def _read_json(path: Path) -> dict[str, Any]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, json.JSONDecodeError) as e:
        logger.warning(f"Failed to parse {path.name}: {e}")
        return {}
    return data if isinstance(data, dict) else {}


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with open(path, "rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        logger.warning(f"Failed to parse {path.name}: {e}")
        return {}


def read_dependencies(root: Path) -> list[str]:
    """Dependency names from package.json, requirements.txt, pyproject.toml and Cargo.toml."""
    deps: list[str] = []

    package_json = root / "package.json"
    if package_json.exists():
        data = _read_json(package_json)
        for section in ("dependencies", "devDependencies"):
            if isinstance(data.get(section), dict):
                deps.extend(data[section].keys())

    requirements = root / "requirements.txt"
    if requirements.exists():
        try:
            lines = requirements.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            logger.warning(f"Failed to read requirements.txt: {e}")
            lines = []
        for line in lines:
            line = line.strip()
            if not line or line.startswith(("#", "-")):
                continue
            match = REQUIREMENT_NAME.match(line)
            if match:
                deps.append(match.group(1))

    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        data = _read_toml(pyproject)
        for spec in data.get("project", {}).get("dependencies", []):
            match = REQUIREMENT_NAME.match(spec)
            if match:
                deps.append(match.group(1))
        poetry = data.get("tool", {}).get("poetry", {}).get("dependencies", {})
        deps.extend(name for name in poetry if name != "python")

    cargo = root / "Cargo.toml"
    if cargo.exists():
        deps.extend(_read_toml(cargo).get("dependencies", {}).keys())

    # Preserve order, drop duplicates
    return list(dict.fromkeys(deps))


def read_scripts(root: Path) -> dict[str, str]:
    """Runnable scripts from package.json or [project.scripts] in pyproject.toml."""
    package_json = root / "package.json"
    if package_json.exists():
        scripts = _read_json(package_json).get("scripts")
        if isinstance(scripts, dict):
            return {str(k): str(v) for k, v in scripts.items()}

    pyproject = root / "pyproject.toml"
    if pyproject.exists():
        scripts = _read_toml(pyproject).get("project", {}).get("scripts")
        if isinstance(scripts, dict):
            return {str(k): str(v) for k, v in scripts.items()}

    return {}
