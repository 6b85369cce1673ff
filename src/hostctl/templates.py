"""Template lookup and placeholder rendering.

Configuration templates use ``{NAME}`` placeholders and optional sections
delimited by full-line markers::

    # SECTION cgi_support BEGIN.
    ScriptAlias /cgi-bin/ {WEB_DIR}/cgi-bin/
    # SECTION cgi_support END.

Rendering never fails on an unknown placeholder; it is left in place so that
literal braces in configuration syntax survive. Sections are stripped by the
callers depending on feature flags, letting one template serve many vhost
variants.

Template *sources* are resolved through a Jinja2 loader chain: files in the
operator override directory shadow the templates bundled with the package.
"""
from __future__ import annotations

import re
from collections.abc import Iterator, Mapping, MutableMapping
from dataclasses import dataclass
from pathlib import Path

from jinja2 import ChoiceLoader, Environment, FileSystemLoader, PackageLoader, TemplateNotFound

from .errors import HostctlError

_PLACEHOLDER = re.compile(r"\{([A-Za-z0-9_]+)\}")
_MARKER_LINE = re.compile(r"^[ \t]+# SECTION \S+ (?:BEGIN|END)\.\n", re.MULTILINE)
_BLANK_RUN = re.compile(r"\n{3,}")


class TemplateMissing(HostctlError):
    """Raised when a template or skeleton entry cannot be found."""


def render(template: str, context: Mapping[str, object]) -> str:
    """Replace every ``{NAME}`` token in *template* with ``context[NAME]``."""

    def _substitute(match: re.Match[str]) -> str:
        name = match.group(1)
        if name in context:
            return str(context[name])
        return match.group(0)

    return _PLACEHOLDER.sub(_substitute, template)


def section_markers(name: str) -> tuple[str, str]:
    """Return the begin/end marker lines for section *name*."""
    return f"# SECTION {name} BEGIN.", f"# SECTION {name} END."


def strip_section(
    text: str,
    begin: str,
    end: str,
    replacement: str = "",
    *,
    count: int = 0,
) -> str:
    """Replace the span from the *begin* line through the *end* line.

    Markers must occupy a whole line (surrounding blanks allowed) and are
    matched literally. ``count=0`` replaces every span, ``count=1`` only the
    first. Text without the markers is returned unchanged.
    """
    pattern = re.compile(
        rf"^[ \t]*{re.escape(begin.strip())}[ \t]*\n"
        rf".*?"
        rf"^[ \t]*{re.escape(end.strip())}[ \t]*(?:\n|\Z)",
        re.MULTILINE | re.DOTALL,
    )
    return pattern.sub(lambda _match: replacement, text, count=count)


def strip_named_section(text: str, name: str, replacement: str = "") -> str:
    """Strip every ``# SECTION <name>`` block from *text*."""
    begin, end = section_markers(name)
    return strip_section(text, begin, end, replacement)


def strip_marker_lines(text: str) -> str:
    """Drop leftover indented ``# SECTION <name> BEGIN.``/``END.`` lines."""
    return _MARKER_LINE.sub("", text)


def collapse_blank_lines(text: str) -> str:
    """Collapse runs of three or more newlines to a single blank line."""
    return _BLANK_RUN.sub("\n\n", text)


class ModuleContext(MutableMapping[str, object]):
    """Placeholder values collected for a single entity operation.

    Providers own one context each, merge entity data in with
    :meth:`update`, and must :meth:`flush` it once the produce cycle is over
    so that nothing leaks into the next entity.
    """

    def __init__(self) -> None:
        """Start with an empty mapping."""
        self._data: dict[str, object] = {}

    def __getitem__(self, key: str) -> object:
        return self._data[key]

    def __setitem__(self, key: str, value: object) -> None:
        self._data[key] = value

    def __delitem__(self, key: str) -> None:
        del self._data[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._data)

    def __len__(self) -> int:
        return len(self._data)

    def flush(self) -> None:
        """Forget every value."""
        self._data.clear()

    def snapshot(self) -> dict[str, object]:
        """Return a copy of the current values."""
        return dict(self._data)


@dataclass(slots=True)
class TemplateEngine:
    """Resolve template sources from override and bundled locations."""

    environment: Environment
    override_dir: Path | None = None

    @classmethod
    def with_overrides(cls, override_dir: Path | None) -> TemplateEngine:
        """Build an engine whose *override_dir* shadows bundled templates."""
        loaders: list[FileSystemLoader | PackageLoader] = []
        if override_dir is not None:
            loaders.append(FileSystemLoader(str(override_dir)))
        loaders.append(PackageLoader("hostctl", "templates"))
        environment = Environment(
            loader=ChoiceLoader(loaders),
            autoescape=False,
            keep_trailing_newline=True,
        )
        return cls(environment=environment, override_dir=override_dir)

    def load(self, name: str) -> str:
        """Return the raw source of template *name*."""
        loader = self.environment.loader
        if loader is None:  # pragma: no cover - always configured
            raise TemplateMissing(f"No template loader configured for {name}.")
        try:
            source, _filename, _uptodate = loader.get_source(self.environment, name)
        except TemplateNotFound as exc:
            raise TemplateMissing(f"Could not read template {name}.") from exc
        return source

    def exists(self, name: str) -> bool:
        """Return True when template *name* can be resolved."""
        try:
            self.load(name)
        except TemplateMissing:
            return False
        return True

    def render(self, name: str, context: Mapping[str, object]) -> str:
        """Load template *name* and substitute its placeholders."""
        return render(self.load(name), context)

    def bundled_path(self, relative: str) -> Path:
        """Return the on-disk path of a directory shipped with the package."""
        return Path(__file__).resolve().parent / "templates" / relative


__all__ = [
    "ModuleContext",
    "TemplateEngine",
    "TemplateMissing",
    "collapse_blank_lines",
    "render",
    "section_markers",
    "strip_marker_lines",
    "strip_named_section",
    "strip_section",
]
