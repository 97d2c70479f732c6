"""Guided workflows: stage execution, the stepper and the concrete workflows."""

from galaxy_workflow.workflow.galaxy_creation import (
    TemplateMetadataGenerator,
    UrlRepositoryAnalyzer,
    build_galaxy_creation_workflow,
    validate_git_url,
)
from galaxy_workflow.workflow.onboarding import build_onboarding_workflow
from galaxy_workflow.workflow.repository_api import HttpRepositoryAnalyzer
from galaxy_workflow.workflow.stage_runner import (
    EffectfulTask,
    PacingTask,
    StageExecutionState,
    StagePlan,
    StageResult,
    StageRunner,
)
from galaxy_workflow.workflow.stepper import (
    StageDefinition,
    StepperStatus,
    WorkflowContext,
    WorkflowDefinition,
    WorkflowStepper,
)

__all__ = [
    "EffectfulTask",
    "HttpRepositoryAnalyzer",
    "PacingTask",
    "StageExecutionState",
    "StagePlan",
    "StageResult",
    "StageRunner",
    "StageDefinition",
    "StepperStatus",
    "TemplateMetadataGenerator",
    "UrlRepositoryAnalyzer",
    "WorkflowContext",
    "WorkflowDefinition",
    "WorkflowStepper",
    "build_galaxy_creation_workflow",
    "build_onboarding_workflow",
    "validate_git_url",
]
