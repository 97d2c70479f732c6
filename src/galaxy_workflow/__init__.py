"""Galaxy Workflow.

Coordinates the multi-step onboarding and galaxy creation flows:
- a step-gated session ledger that makes side effects exactly-once per step
- an append-only placement ledger for galaxy coordinates
- a stage runner and workflow stepper driving the guided wizards
"""

__version__ = "0.1.0"

from galaxy_workflow.config import WorkflowSettings

__all__ = ["__version__", "WorkflowSettings"]
