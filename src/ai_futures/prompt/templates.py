"""Prompt template stores."""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

from ai_futures.errors import TemplateNotFoundError

PACKAGED_TEMPLATE_DIR = Path(__file__).resolve().parent / "builtin"
DEFAULT_TEMPLATE = "default"


@dataclass(frozen=True, slots=True)
class PromptTemplate:
    name: str
    content: str


class TemplateStore(Protocol):
    def get(self, name: str) -> PromptTemplate:
        """Return the named template or raise ``TemplateNotFoundError``."""

    def names(self) -> list[str]:
        """Sorted names of every stored template."""


class DirectoryTemplateStore:
    """Templates stored as ``<name>.txt`` files in one directory."""

    def __init__(self, directory: Path) -> None:
        self._directory = Path(directory)

    @property
    def directory(self) -> Path:
        return self._directory

    def get(self, name: str) -> PromptTemplate:
        # Names are plain identifiers; anything path-like is not a stored template.
        if not name or Path(name).name != name:
            raise TemplateNotFoundError(name)
        path = self._directory / f"{name}.txt"
        if not path.is_file():
            raise TemplateNotFoundError(name)
        return PromptTemplate(name=name, content=path.read_text(encoding="utf-8").strip())

    def names(self) -> list[str]:
        if not self._directory.is_dir():
            return []
        return sorted(path.stem for path in self._directory.glob("*.txt"))


class InMemoryTemplateStore:
    """Dict-backed store, mostly for tests and embedding callers."""

    def __init__(self, templates: dict[str, str] | None = None) -> None:
        self._templates = dict(templates or {})

    def add(self, name: str, content: str) -> None:
        self._templates[name] = content

    def get(self, name: str) -> PromptTemplate:
        try:
            return PromptTemplate(name=name, content=self._templates[name])
        except KeyError:
            raise TemplateNotFoundError(name) from None

    def names(self) -> list[str]:
        return sorted(self._templates)


def load_template_store(directory: Path | None = None) -> DirectoryTemplateStore:
    """Store for ``directory``, or the templates shipped with the package."""
    return DirectoryTemplateStore(directory if directory is not None else PACKAGED_TEMPLATE_DIR)
