"""
Role prompt construction for dispatched agent jobs.

The workflow engine depends only on the ``PromptBuilder`` protocol. The default
``TemplatePromptBuilder`` renders one jinja2 template per job kind from
``templates/`` (``IMPLEMENTOR.md``, ``AUDITOR.md``, ...) with strict
placeholders, then prepends a documentation block when the node carries docs.
"""

from __future__ import annotations

import hashlib
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Protocol

from jinja2 import Environment, StrictUndefined, meta

from relay_orchestrator.control_plane.jobs import JobKind
from relay_orchestrator.domain.models import DocReference

_PROMPT_KINDS = frozenset(
    {
        JobKind.IMPLEMENTOR,
        JobKind.AUDITOR,
        JobKind.TEST_WRITER,
        JobKind.TEST_AUDITOR,
        JobKind.FINAL_AUDIT,
    }
)


class PromptTemplateError(RuntimeError):
    """Base error for prompt template loading and rendering."""


class PromptTemplateNotFoundError(PromptTemplateError, FileNotFoundError):
    """Raised when a job-kind template file does not exist."""


class PromptTemplateVariableError(PromptTemplateError, ValueError):
    """Raised when a template references a variable the request does not carry."""


@dataclass(frozen=True, slots=True)
class PromptRequest:
    """Everything a prompt may mention about the job being dispatched."""

    kind: JobKind
    top_task_title: str
    node_title: str
    node_details: str
    docs: tuple[DocReference, ...] = ()
    parent_title: str = ""
    parent_details: str = ""
    pass_number: int = 1
    max_passes: int = 1
    strictness: str = ""
    context_block: str = ""
    task_tree: str = ""
    feedback: str | None = None
    report: str | None = None
    changed_files: str | None = None
    cleanup: bool = False

    def template_variables(self) -> dict[str, object]:
        variables = asdict(self)
        variables.pop("docs")
        variables["kind"] = self.kind.value
        return variables


class PromptBuilder(Protocol):
    def build(self, request: PromptRequest) -> str: ...


@dataclass(frozen=True, slots=True)
class RenderedPrompt:
    """Rendered prompt plus hashes for reproducibility in logs."""

    prompt: str
    prompt_hash: str
    template_name: str
    template_hash: str


class TemplatePromptBuilder:
    """Deterministic jinja2-backed ``PromptBuilder``."""

    def __init__(self, *, template_root: Path | str | None = None) -> None:
        root = Path(template_root) if template_root is not None else _default_template_root()
        resolved_root = root.resolve()
        if not resolved_root.is_dir():
            raise PromptTemplateNotFoundError(f"template root does not exist: {resolved_root}")

        self._template_root = resolved_root
        self._environment = Environment(
            undefined=StrictUndefined,
            autoescape=False,
            trim_blocks=False,
            lstrip_blocks=False,
            newline_sequence="\n",
            keep_trailing_newline=True,
        )
        self._allowed_variables = frozenset(field.name for field in fields(PromptRequest)) - {"docs"}

    @property
    def template_root(self) -> Path:
        return self._template_root

    def build(self, request: PromptRequest) -> str:
        return self.render(request).prompt

    def render(self, request: PromptRequest) -> RenderedPrompt:
        if request.kind not in _PROMPT_KINDS:
            raise PromptTemplateError(f"job kind {request.kind.value!r} does not take a prompt")

        template_name = f"{request.kind.value.upper()}.md"
        template_path = self._template_root / template_name
        if not template_path.is_file():
            raise PromptTemplateNotFoundError(
                f"template not found for job kind: {template_name!r} under {self._template_root}"
            )
        template_source = _normalize_newlines(template_path.read_text(encoding="utf-8"))

        declared = meta.find_undeclared_variables(self._environment.parse(template_source))
        unexpected = sorted(declared - self._allowed_variables)
        if unexpected:
            raise PromptTemplateVariableError(
                f"{template_name} uses unknown variable(s): " + ", ".join(unexpected)
            )

        body = self._environment.from_string(template_source).render(**request.template_variables())
        prompt = docs_prefix(request.docs) + _normalize_newlines(body)
        return RenderedPrompt(
            prompt=prompt,
            prompt_hash=_sha256(prompt),
            template_name=template_name,
            template_hash=_sha256(template_source),
        )


def docs_prefix(docs: tuple[DocReference, ...]) -> str:
    """Render the "Task documentation requirements" block, or ``""`` without docs."""
    if not docs:
        return ""

    lines = [
        "Task documentation requirements:",
        "- Before starting this task, read every linked document from the web.",
        "- Use these docs as primary references while completing this task.",
        "Task docs:",
    ]
    for index, doc in enumerate(docs, start=1):
        lines.append(f"{index}. {doc.title.strip()}")
        lines.append(f"   URL: {doc.url.strip()}")
        if doc.summary.strip():
            lines.append(f"   Summary: {doc.summary.strip()}")
    lines.append("")
    return "\n".join(lines)


def _default_template_root() -> Path:
    return Path(__file__).resolve().parent / "templates"


def _normalize_newlines(text: str) -> str:
    return text.replace("\r\n", "\n").replace("\r", "\n")


def _sha256(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


__all__ = [
    "PromptBuilder",
    "PromptRequest",
    "PromptTemplateError",
    "PromptTemplateNotFoundError",
    "PromptTemplateVariableError",
    "RenderedPrompt",
    "TemplatePromptBuilder",
    "docs_prefix",
]
