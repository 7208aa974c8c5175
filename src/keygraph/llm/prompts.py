"""Prompt template loading and rendering.

Loads prompt templates from config/prompts/*.yaml and renders their system
and user messages with ``str.format`` placeholders.
"""

from pathlib import Path
from typing import Any

import yaml
from pydantic import BaseModel, Field

from keygraph.core.config import get_settings


class PromptTemplate(BaseModel):
    """A prompt template from YAML."""

    name: str
    version: str
    description: str
    temperature: float
    system_prompt: str = ""
    user_prompt: str
    inputs: dict[str, Any] = Field(default_factory=dict)


class PromptRenderer:
    """Render prompt templates with context variables.

    Templates are cached in memory after the first load.
    """

    def __init__(self, prompts_dir: Path | None = None):
        """Initialize prompt renderer.

        Args:
            prompts_dir: Directory containing prompt YAML files.
                If None, uses prompts/ under the settings config path
        """
        if prompts_dir is None:
            prompts_dir = get_settings().config_path / "prompts"

        self.prompts_dir = prompts_dir
        self._cache: dict[str, PromptTemplate] = {}

    def load_template(self, name: str) -> PromptTemplate:
        """Load and cache a prompt template.

        Raises:
            FileNotFoundError: If template file doesn't exist
            pydantic.ValidationError: If template doesn't match schema
        """
        if name in self._cache:
            return self._cache[name]

        template_path = self.prompts_dir / f"{name}.yaml"
        if not template_path.exists():
            available = sorted(p.stem for p in self.prompts_dir.glob("*.yaml"))
            raise FileNotFoundError(
                f"Prompt template not found: {template_path}. Available templates: {available}"
            )

        with open(template_path) as f:
            template = PromptTemplate(**yaml.safe_load(f))

        self._cache[name] = template
        return template

    def render_split(self, template_name: str, context: dict[str, Any]) -> tuple[str, str, float]:
        """Render a template into its system and user messages.

        Args:
            template_name: Name of template to render (file stem)
            context: Values for the template's inputs

        Returns:
            Tuple of (system_prompt, user_prompt, temperature)

        Raises:
            ValueError: If a required input is missing
            KeyError: If the template references an undefined variable
        """
        template = self.load_template(template_name)

        full_context: dict[str, Any] = {}
        for input_name, input_spec in template.inputs.items():
            if input_name in context:
                full_context[input_name] = context[input_name]
            elif input_spec.get("required", False):
                raise ValueError(
                    f"Missing required input '{input_name}' for template '{template.name}'"
                )
            elif "default" in input_spec:
                full_context[input_name] = input_spec["default"]

        try:
            system = template.system_prompt.format(**full_context)
            user = template.user_prompt.format(**full_context)
        except KeyError as e:
            raise KeyError(
                f"Template '{template_name}' has undefined variable: {e}. "
                f"Available context: {list(full_context.keys())}"
            ) from e
        return system.strip(), user, template.temperature
