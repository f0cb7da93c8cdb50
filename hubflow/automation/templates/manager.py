"""
Hubflow Template Manager

Creates, stores and instantiates parameterized workflow templates.
"""

from __future__ import annotations

import re
import uuid
from dataclasses import replace
from datetime import datetime
from typing import Any, Dict, List, Optional, Union

import structlog

from hubflow.automation.errors import InvalidParameterError, MissingParameterError
from hubflow.automation.types import Workflow, WorkflowParameter, WorkflowTemplate

logger = structlog.get_logger(__name__)


class TemplateManager:
    """
    Manages workflow templates.

    Features:
    - Template creation from existing workflows
    - {{param}} instantiation with required/default/pattern checks
    - Template storage and retrieval
    - Usage tracking
    """

    # Parameter pattern for {{ name }}
    PARAMETER_PATTERN = re.compile(r"\{\{\s*(\w+)\s*\}\}")

    def __init__(self):
        self._templates: Dict[str, WorkflowTemplate] = {}

    # === Template Management ===

    async def create_template(
        self,
        workflow: Workflow,
        name: str,
        parameters: Optional[List[WorkflowParameter]] = None,
        description: str = "",
        tags: Optional[List[str]] = None,
    ) -> WorkflowTemplate:
        """Snapshot a workflow as a reusable template and register it."""
        template = WorkflowTemplate(
            base_workflow=workflow,
            name=name,
            description=description or workflow.description,
            parameters=list(parameters or []),
            tags=list(tags or []),
        )
        await self.register(template)
        return template

    async def register(self, template: WorkflowTemplate) -> str:
        """Register a template."""
        self._templates[template.id] = template

        logger.info(
            "template_registered",
            template_id=template.id,
            name=template.name,
            parameters=len(template.parameters),
        )

        return template.id

    async def get(self, template_id: str) -> Optional[WorkflowTemplate]:
        """Get a template by ID."""
        return self._templates.get(template_id)

    async def get_by_name(self, name: str) -> Optional[WorkflowTemplate]:
        """Get a template by name."""
        for template in self._templates.values():
            if template.name == name:
                return template
        return None

    async def list(
        self,
        tag: Optional[str] = None,
        search: Optional[str] = None,
        limit: int = 100,
    ) -> List[WorkflowTemplate]:
        """List templates with filters."""
        templates = list(self._templates.values())

        if tag:
            templates = [t for t in templates if tag in t.tags]

        if search:
            search_lower = search.lower()
            templates = [
                t for t in templates
                if search_lower in t.name.lower() or search_lower in t.description.lower()
            ]

        # Sort by usage count
        templates.sort(key=lambda t: t.usage_count, reverse=True)

        return templates[:limit]

    async def delete(self, template_id: str) -> bool:
        """Delete a template."""
        return self._templates.pop(template_id, None) is not None

    # === Template Instantiation ===

    async def instantiate(
        self,
        template: Union[str, WorkflowTemplate],
        values: Optional[Dict[str, str]] = None,
    ) -> Workflow:
        """
        Create a workflow from a template.

        Args:
            template: Template or registered template ID
            values: Parameter values keyed by parameter name

        Returns:
            New workflow with a fresh ID
        """
        if isinstance(template, str):
            template_id = template
            template = self._templates.get(template_id)
            if not template:
                raise ValueError(f"Template not found: {template_id}")

        bound = self.bind_parameters(template, values or {})

        def substitute(value: str) -> str:
            def replace_token(match: re.Match) -> str:
                name = match.group(1)
                if name in bound:
                    return bound[name]
                return match.group(0)

            return self.PARAMETER_PATTERN.sub(replace_token, value)

        base = template.base_workflow
        steps = [
            replace(
                step,
                action=step.action.map_strings(substitute),
                on_success_step_ids=list(step.on_success_step_ids),
                on_failure_step_ids=list(step.on_failure_step_ids),
            )
            for step in base.steps
        ]

        metadata = dict(base.metadata)
        metadata.update({
            "template_id": template.id,
            "template_name": template.name,
            "instantiated_at": datetime.now().isoformat(),
        })

        workflow = replace(
            base,
            id=str(uuid.uuid4()),
            steps=steps,
            metadata=metadata,
        )

        # Update template usage
        template.usage_count += 1

        logger.info(
            "template_instantiated",
            template_id=template.id,
            template_name=template.name,
            workflow_id=workflow.id,
        )

        return workflow

    @staticmethod
    def bind_parameters(
        template: WorkflowTemplate,
        values: Dict[str, str],
    ) -> Dict[str, str]:
        """
        Resolve the final parameter values for an instantiation.

        Raises:
            MissingParameterError: A required parameter has no value
            InvalidParameterError: A supplied value fails its pattern
        """
        bound = dict(values)

        for parameter in template.parameters:
            if parameter.name in values:
                value = values[parameter.name]
                pattern = parameter.validation_pattern
                if pattern and not re.fullmatch(pattern, value):
                    raise InvalidParameterError(parameter.name, value, pattern)
            elif parameter.required:
                raise MissingParameterError(parameter.name)
            elif parameter.default_value is not None:
                bound[parameter.name] = parameter.default_value

        return bound

    # === Statistics ===

    def get_stats(self) -> Dict[str, Any]:
        """Get template manager statistics."""
        total_usage = sum(t.usage_count for t in self._templates.values())

        return {
            "total_templates": len(self._templates),
            "total_usage": total_usage,
            "top_templates": sorted(
                [{"name": t.name, "usage": t.usage_count} for t in self._templates.values()],
                key=lambda x: x["usage"],
                reverse=True,
            )[:5],
        }
