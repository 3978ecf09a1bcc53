"""
Synthesis plane: role prompt construction for dispatched agent jobs.

Functional requirements
- Prompts are deterministic for identical requests.
- Templates fail loudly on unknown or missing variables.
"""

from relay_orchestrator.synthesis_plane.prompt_templates import (
    PromptBuilder,
    PromptRequest,
    PromptTemplateError,
    PromptTemplateNotFoundError,
    PromptTemplateVariableError,
    RenderedPrompt,
    TemplatePromptBuilder,
    docs_prefix,
)

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
