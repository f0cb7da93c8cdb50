"""
Hubflow - workflow orchestration core

A runtime for declarative automation workflows with:
- Conditional branching and retry with backoff
- Cooperative pause/resume
- Sequential and parallel composition
- Parameterized templates
"""

__version__ = "1.0.0"
__author__ = "Hubflow Team"

from hubflow.core.config import HubflowConfig
from hubflow.automation.coordinator import AutomationCoordinator

__all__ = ["AutomationCoordinator", "HubflowConfig", "__version__"]
