"""
Hubflow Workflow Templates

Parameterized, reusable workflows instantiated with {{param}} substitution.
"""

from hubflow.automation.templates.manager import TemplateManager

__all__ = [
    "TemplateManager",
]
