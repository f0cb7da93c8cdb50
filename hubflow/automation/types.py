"""
Hubflow Workflow Automation Types

Core dataclasses for workflow definitions and execution.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime
from enum import Enum
from typing import TYPE_CHECKING, Any, Callable, ClassVar, Dict, List, Optional, Union

if TYPE_CHECKING:
    from hubflow.automation.execution.context import ExecutionContext


def _new_id() -> str:
    return str(uuid.uuid4())


def _map_values(values: Dict[str, str], fn: Callable[[str], str]) -> Dict[str, str]:
    return {key: fn(value) for key, value in values.items()}


def _map_optional(value: Optional[str], fn: Callable[[str], str]) -> Optional[str]:
    return fn(value) if value is not None else None


# === Enums ===


class ExecutionStatus(str, Enum):
    """Status of a workflow execution."""
    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({
    ExecutionStatus.COMPLETED,
    ExecutionStatus.FAILED,
    ExecutionStatus.CANCELLED,
})


class ActionStatus(str, Enum):
    """Outcome of a single step action."""
    SUCCESS = "success"
    FAILURE = "failure"
    SKIPPED = "skipped"
    TIMEOUT = "timeout"


class ActionKind(str, Enum):
    """Types of workflow actions."""
    COMMAND = "command"
    DATA_PIPELINE = "data_pipeline"
    AI_QUERY = "ai_query"
    TEST = "test"
    DEPLOY = "deploy"
    MACRO = "macro"
    CUSTOM = "custom"


class ConditionType(str, Enum):
    """Types of step conditions."""
    ALWAYS = "always"
    IF_SUCCESS = "if_success"
    IF_FAILURE = "if_failure"
    IF_VARIABLE = "if_variable"
    CUSTOM = "custom"


class ErrorHandlingPolicy(str, Enum):
    """What a workflow does when a step fails without a failure branch."""
    STOP_ON_ERROR = "stop_on_error"
    CONTINUE_ON_ERROR = "continue_on_error"


class BackoffStrategy(str, Enum):
    """Delay growth between retry attempts."""
    FIXED = "fixed"
    LINEAR = "linear"
    EXPONENTIAL = "exponential"
    FIBONACCI = "fibonacci"
    DECORRELATED_JITTER = "decorrelated_jitter"


class CompositionMode(str, Enum):
    """How a composite workflow runs its sub-workflows."""
    SEQUENTIAL = "sequential"
    PARALLEL = "parallel"
    CONDITIONAL = "conditional"


class AutomationStatus(str, Enum):
    """Coarse status of the automation system."""
    IDLE = "idle"
    RUNNING = "running"
    PAUSED = "paused"
    ERROR = "error"


class PipelineType(str, Enum):
    CRAWL = "crawl"
    IMPORT = "import"
    VALIDATE = "validate"
    EXTRACT = "extract"
    SYNC = "sync"


class ResponseFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    MARKDOWN = "markdown"


class TestType(str, Enum):
    __test__ = False  # not a pytest class

    UNIT = "unit"
    INTEGRATION = "integration"
    PERFORMANCE = "performance"
    SECURITY = "security"
    REGRESSION = "regression"


class ReportFormat(str, Enum):
    TEXT = "text"
    JSON = "json"
    HTML = "html"
    JUNIT = "junit"


class ParameterType(str, Enum):
    """Declared type of a template parameter."""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    URL = "url"
    PATH = "path"
    EMAIL = "email"


# === Retry Policy ===


@dataclass
class RetryPolicy:
    """Retry behavior for a step or workflow."""
    max_attempts: int = 3  # includes the initial attempt
    backoff_strategy: BackoffStrategy = BackoffStrategy.EXPONENTIAL
    retryable_errors: List[str] = field(default_factory=list)  # empty = retry everything

    base_delay: float = 1.0
    max_delay: float = 60.0
    backoff_multiplier: float = 2.0
    jitter_factor: float = 0.0
    retry_on_timeout: bool = True
    retry_on_network_error: bool = True  # ConnectionError and DNS failures

    def __post_init__(self):
        self.max_attempts = max(1, self.max_attempts)
        self.base_delay = max(0.0, self.base_delay)
        self.max_delay = max(self.base_delay, self.max_delay)
        self.backoff_multiplier = max(1.0, self.backoff_multiplier)
        self.jitter_factor = min(1.0, max(0.0, self.jitter_factor))

    @classmethod
    def no_retry(cls) -> "RetryPolicy":
        return cls(max_attempts=1)

    @classmethod
    def aggressive(cls) -> "RetryPolicy":
        return cls(max_attempts=5, base_delay=0.5, max_delay=30.0)

    @classmethod
    def conservative(cls) -> "RetryPolicy":
        return cls(max_attempts=3, base_delay=2.0, max_delay=120.0, backoff_multiplier=3.0)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "max_attempts": self.max_attempts,
            "backoff_strategy": self.backoff_strategy.value,
            "retryable_errors": list(self.retryable_errors),
            "base_delay": self.base_delay,
            "max_delay": self.max_delay,
            "backoff_multiplier": self.backoff_multiplier,
            "jitter_factor": self.jitter_factor,
            "retry_on_timeout": self.retry_on_timeout,
            "retry_on_network_error": self.retry_on_network_error,
        }


# === Conditions ===


@dataclass
class WorkflowCondition:
    """A gate evaluated before a step runs."""
    condition_type: ConditionType = ConditionType.ALWAYS
    expression: str = ""  # used by IF_VARIABLE and CUSTOM

    def to_dict(self) -> Dict[str, Any]:
        return {"type": self.condition_type.value, "expression": self.expression}


# === Actions ===


@dataclass
class CommandAction:
    """Run a command pattern through the command backend."""
    kind: ClassVar[ActionKind] = ActionKind.COMMAND

    pattern: str = ""
    parameters: Dict[str, str] = field(default_factory=dict)
    requires_sudo: bool = False
    capture_output: bool = True
    output_variable: Optional[str] = None
    working_directory: Optional[str] = None

    def map_strings(self, fn: Callable[[str], str]) -> "CommandAction":
        return replace(
            self,
            pattern=fn(self.pattern),
            parameters=_map_values(self.parameters, fn),
            working_directory=_map_optional(self.working_directory, fn),
        )


@dataclass
class PipelineConfig:
    source_url: Optional[str] = None
    max_depth: Optional[int] = None
    max_pages: Optional[int] = None
    concurrency: Optional[int] = None
    auto_validate: bool = False


@dataclass
class ValidationConfig:
    schema_path: Optional[str] = None
    strict_mode: bool = False


@dataclass
class RecoveryConfig:
    auto_repair: bool = False
    max_attempts: int = 1


@dataclass
class DataPipelineAction:
    """Run a data pipeline."""
    kind: ClassVar[ActionKind] = ActionKind.DATA_PIPELINE

    pipeline_type: PipelineType = PipelineType.SYNC
    config: PipelineConfig = field(default_factory=PipelineConfig)
    validation: ValidationConfig = field(default_factory=ValidationConfig)
    recovery: RecoveryConfig = field(default_factory=RecoveryConfig)

    def map_strings(self, fn: Callable[[str], str]) -> "DataPipelineAction":
        return replace(
            self,
            config=replace(self.config, source_url=_map_optional(self.config.source_url, fn)),
            validation=replace(
                self.validation,
                schema_path=_map_optional(self.validation.schema_path, fn),
            ),
        )


@dataclass
class AIQueryContext:
    conversation_id: Optional[str] = None
    knowledge_domain: Optional[str] = None
    user_preferences: Dict[str, str] = field(default_factory=dict)


@dataclass
class AIQueryAction:
    """Ask an AI backend a question."""
    kind: ClassVar[ActionKind] = ActionKind.AI_QUERY

    query: str = ""
    context: AIQueryContext = field(default_factory=AIQueryContext)
    response_format: ResponseFormat = ResponseFormat.TEXT
    output_variable: Optional[str] = None

    def map_strings(self, fn: Callable[[str], str]) -> "AIQueryAction":
        return replace(
            self,
            query=fn(self.query),
            context=replace(
                self.context,
                knowledge_domain=_map_optional(self.context.knowledge_domain, fn),
                user_preferences=_map_values(self.context.user_preferences, fn),
            ),
        )


@dataclass
class TestConfig:
    __test__ = False  # not a pytest class

    target: Optional[str] = None
    parallel: bool = True
    coverage: bool = False


@dataclass
class TestAction:
    """Run a test suite."""
    __test__ = False  # not a pytest class
    kind: ClassVar[ActionKind] = ActionKind.TEST

    test_type: TestType = TestType.UNIT
    config: TestConfig = field(default_factory=TestConfig)
    report_format: ReportFormat = ReportFormat.TEXT

    def map_strings(self, fn: Callable[[str], str]) -> "TestAction":
        return replace(
            self,
            config=replace(self.config, target=_map_optional(self.config.target, fn)),
        )


@dataclass
class DeployAction:
    """Deploy a target to an environment."""
    kind: ClassVar[ActionKind] = ActionKind.DEPLOY

    target: str = ""
    environment: str = ""
    config: Dict[str, str] = field(default_factory=dict)

    def map_strings(self, fn: Callable[[str], str]) -> "DeployAction":
        return replace(
            self,
            target=fn(self.target),
            environment=fn(self.environment),
            config=_map_values(self.config, fn),
        )


@dataclass
class MacroAction:
    """Replay a recorded macro."""
    kind: ClassVar[ActionKind] = ActionKind.MACRO

    macro_id: str = ""
    parameters: Dict[str, str] = field(default_factory=dict)

    def map_strings(self, fn: Callable[[str], str]) -> "MacroAction":
        return replace(self, parameters=_map_values(self.parameters, fn))


@dataclass
class CustomAction:
    """Application-defined action resolved by identifier."""
    kind: ClassVar[ActionKind] = ActionKind.CUSTOM

    identifier: str = ""
    parameters: Dict[str, str] = field(default_factory=dict)

    def map_strings(self, fn: Callable[[str], str]) -> "CustomAction":
        return replace(self, parameters=_map_values(self.parameters, fn))


WorkflowAction = Union[
    CommandAction,
    DataPipelineAction,
    AIQueryAction,
    TestAction,
    DeployAction,
    MacroAction,
    CustomAction,
]


# === Workflow Definition ===


@dataclass
class WorkflowStep:
    """A step in a workflow."""
    id: str = field(default_factory=_new_id)
    name: str = ""
    action: WorkflowAction = field(default_factory=CustomAction)

    # Flow control
    condition: Optional[WorkflowCondition] = None
    timeout: Optional[float] = None  # seconds, per attempt
    retry_policy: Optional[RetryPolicy] = None

    # Branching
    on_success_step_ids: List[str] = field(default_factory=list)
    on_failure_step_ids: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        result = {
            "id": self.id,
            "name": self.name,
            "action": self.action.kind.value,
            "on_success": list(self.on_success_step_ids),
            "on_failure": list(self.on_failure_step_ids),
        }
        if self.condition:
            result["condition"] = self.condition.to_dict()
        if self.timeout is not None:
            result["timeout"] = self.timeout
        if self.retry_policy:
            result["retry_policy"] = self.retry_policy.to_dict()
        return result


@dataclass
class Workflow:
    """A workflow definition."""
    id: str = field(default_factory=_new_id)
    name: str = ""
    description: str = ""
    steps: List[WorkflowStep] = field(default_factory=list)

    # Settings
    error_handling: ErrorHandlingPolicy = ErrorHandlingPolicy.STOP_ON_ERROR
    retry_policy: Optional[RetryPolicy] = None
    timeout: Optional[float] = None  # seconds, whole run

    metadata: Dict[str, str] = field(default_factory=dict)

    def get_step(self, step_id: str) -> Optional[WorkflowStep]:
        """Get a step by ID."""
        for step in self.steps:
            if step.id == step_id:
                return step
        return None

    @property
    def is_composite(self) -> bool:
        return self.metadata.get("is_composite") == "true"

    def validate(self) -> List[str]:
        """Validate workflow definition. Returns list of errors."""
        errors = []

        if not self.name:
            errors.append("Workflow must have a name")

        if not self.steps:
            errors.append("Workflow must have at least one step")

        return errors

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "steps": [s.to_dict() for s in self.steps],
            "error_handling": self.error_handling.value,
            "retry_policy": self.retry_policy.to_dict() if self.retry_policy else None,
            "timeout": self.timeout,
            "metadata": dict(self.metadata),
        }


# === Execution Types ===


@dataclass
class ActionResult:
    """Outcome of one step's action."""
    status: ActionStatus
    output: Optional[str] = None
    error: Optional[str] = None
    duration: Optional[float] = None  # seconds
    metadata: Dict[str, str] = field(default_factory=dict)

    @property
    def succeeded(self) -> bool:
        return self.status == ActionStatus.SUCCESS

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "status": self.status.value,
            "output": self.output,
            "error": self.error,
            "duration": self.duration,
            "metadata": dict(self.metadata),
        }


@dataclass
class ExecutionError:
    """An error recorded against an execution."""
    kind: str
    message: str
    id: str = field(default_factory=_new_id)
    step_id: Optional[str] = None
    timestamp: datetime = field(default_factory=datetime.now)
    recovery_attempted: bool = False
    recovered: bool = False

    @classmethod
    def from_exception(cls, error: BaseException, step_id: Optional[str] = None) -> "ExecutionError":
        from hubflow.automation.errors import error_kind

        return cls(kind=error_kind(error), message=str(error), step_id=step_id)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "kind": self.kind,
            "message": self.message,
            "step_id": self.step_id,
            "timestamp": self.timestamp.isoformat(),
            "recovery_attempted": self.recovery_attempted,
            "recovered": self.recovered,
        }


@dataclass
class Execution:
    """The live record of one run of a workflow."""
    workflow: Workflow
    context: "ExecutionContext"
    id: str = field(default_factory=_new_id)
    status: ExecutionStatus = ExecutionStatus.PENDING
    start_time: datetime = field(default_factory=datetime.now)
    end_time: Optional[datetime] = None
    current_step_id: Optional[str] = None
    results: Dict[str, ActionResult] = field(default_factory=dict)
    errors: List[ExecutionError] = field(default_factory=list)

    @property
    def workflow_id(self) -> str:
        return self.workflow.id

    @property
    def duration(self) -> Optional[float]:
        if self.end_time is None:
            return None
        return (self.end_time - self.start_time).total_seconds()

    def is_terminal(self) -> bool:
        """Check if execution is in a terminal state."""
        return self.status.is_terminal

    def copy(self) -> "Execution":
        """Snapshot that shares nothing mutable with this record."""
        return replace(
            self,
            context=self.context.copy(),
            results={
                k: replace(v, metadata=dict(v.metadata)) for k, v in self.results.items()
            },
            errors=list(self.errors),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "workflow_id": self.workflow.id,
            "workflow_name": self.workflow.name,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat() if self.end_time else None,
            "current_step_id": self.current_step_id,
            "variables": dict(self.context.variables),
            "results": {k: v.to_dict() for k, v in self.results.items()},
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass(frozen=True)
class WorkflowResult:
    """Read-only snapshot of a finished execution."""
    execution_id: str
    status: ExecutionStatus
    start_time: datetime
    end_time: datetime
    duration: float
    step_results: Dict[str, ActionResult]
    errors: List[ExecutionError]

    @classmethod
    def from_execution(cls, execution: Execution) -> "WorkflowResult":
        end_time = execution.end_time or datetime.now()
        return cls(
            execution_id=execution.id,
            status=execution.status,
            start_time=execution.start_time,
            end_time=end_time,
            duration=(end_time - execution.start_time).total_seconds(),
            step_results=dict(execution.results),
            errors=list(execution.errors),
        )

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "execution_id": self.execution_id,
            "status": self.status.value,
            "start_time": self.start_time.isoformat(),
            "end_time": self.end_time.isoformat(),
            "duration": self.duration,
            "step_results": {k: v.to_dict() for k, v in self.step_results.items()},
            "errors": [e.to_dict() for e in self.errors],
        }


# === Template Types ===


@dataclass
class WorkflowParameter:
    """A named, substitutable template parameter."""
    name: str
    description: str = ""
    parameter_type: ParameterType = ParameterType.STRING
    default_value: Optional[str] = None
    required: bool = True
    validation_pattern: Optional[str] = None
    id: str = field(default_factory=_new_id)


@dataclass
class WorkflowTemplate:
    """A reusable, parameterized base workflow."""
    base_workflow: Workflow
    name: str = ""
    description: str = ""
    parameters: List[WorkflowParameter] = field(default_factory=list)
    tags: List[str] = field(default_factory=list)
    id: str = field(default_factory=_new_id)
    created_at: datetime = field(default_factory=datetime.now)

    # Statistics
    usage_count: int = 0

    def get_parameter(self, name: str) -> Optional[WorkflowParameter]:
        for parameter in self.parameters:
            if parameter.name == name:
                return parameter
        return None

    def to_dict(self) -> Dict[str, Any]:
        """Convert to dictionary."""
        return {
            "id": self.id,
            "name": self.name,
            "description": self.description,
            "workflow": self.base_workflow.to_dict(),
            "parameters": [
                {
                    "name": p.name,
                    "type": p.parameter_type.value,
                    "required": p.required,
                    "default": p.default_value,
                }
                for p in self.parameters
            ],
            "tags": list(self.tags),
            "usage_count": self.usage_count,
            "created_at": self.created_at.isoformat(),
        }
