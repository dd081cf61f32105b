# models.py
# Data contracts for the agent runtime.
# No business logic lives here — pure schema and validation.

from typing import Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field


# ---------------------------------------------------------------------------
# Conversation
# ---------------------------------------------------------------------------


class ToolCall(BaseModel):
    """A fully assembled tool invocation requested by the model."""

    id: str = Field(default="", description="Provider-assigned call id.")
    name: str = Field(..., description="Tool name — looked up in the registry.")
    arguments: dict[str, Any] = Field(default_factory=dict)


class Message(BaseModel):
    """One entry of the conversation history. Ordering is significant."""

    role: Literal["system", "user", "assistant", "tool"]
    content: str = ""
    tool_call_id: str | None = None
    tool_calls: list[ToolCall] | None = None


class ToolCallDelta(BaseModel):
    """An indexed fragment of a streamed tool call."""

    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments: str | None = Field(default=None, description="Raw JSON text piece.")


class StreamChunk(BaseModel):
    """Fragment emitted by the model collaborator while streaming."""

    content: str | None = None
    tool_calls: list[ToolCallDelta] | None = None
    done: bool = False


class ToolDefinition(BaseModel):
    """Tool description offered to the model."""

    name: str
    description: str
    parameters: dict[str, Any] = Field(default_factory=dict)


class ChatRequest(BaseModel):
    model: str
    messages: list[Message]
    tools: list[ToolDefinition] | None = None
    temperature: float | None = None
    max_tokens: int | None = None


class ChatResponse(BaseModel):
    content: str = ""
    tool_calls: list[ToolCall] | None = None
    finish_reason: Literal["stop", "tool_calls", "length", "error"] = "stop"


# ---------------------------------------------------------------------------
# Tool execution
# ---------------------------------------------------------------------------


class ToolExecutionResult(BaseModel):
    """Outcome of a single tool call. Never an exception."""

    success: bool
    output: str | None = None
    error: str | None = None


class ToolExecution(BaseModel):
    """Display-oriented summary of a tool call inside a run."""

    name: str
    status: Literal["running", "complete", "error"]
    args: dict[str, Any] = Field(default_factory=dict)
    output: str | None = None
    error: str | None = None


class ContextStats(BaseModel):
    system_prompt_tokens: int = 0
    conversation_tokens: int = 0
    total_tokens: int = 0
    max_context_tokens: int = 0
    truncation_applied: bool = False


class AgentChunk(BaseModel):
    """Unit yielded by the harness to its caller."""

    content: str = ""
    iteration: int
    done: bool = False
    tool_calls: list[str] | None = None
    tool_results: list[ToolExecution] | None = None
    context_stats: ContextStats | None = None
    error: str | None = Field(default=None, description="Set on a failed terminal chunk.")


class AgentResponse(BaseModel):
    content: str
    iterations: int
    messages: list[Message]
    error: str | None = None


# ---------------------------------------------------------------------------
# Confirmation protocol
# ---------------------------------------------------------------------------


class ConfirmationAction(BaseModel):
    tool: str
    description: str
    args: dict[str, Any] = Field(default_factory=dict)


class ConfirmationRequest(BaseModel):
    """Every dangerous call of one batch, in batch order."""

    actions: list[ConfirmationAction]


class ApproveAll(BaseModel):
    kind: Literal["approve_all"] = "approve_all"
    remember: bool = Field(default=False, description="Apply to the rest of the session.")


class DenyAll(BaseModel):
    kind: Literal["deny_all"] = "deny_all"
    remember: bool = False


class Partial(BaseModel):
    """Allow exactly one dangerous call, by its index in the request."""

    kind: Literal["partial"] = "partial"
    selected_index: int


ConfirmationResult = Union[ApproveAll, DenyAll, Partial]


# ---------------------------------------------------------------------------
# Persisted task state
# ---------------------------------------------------------------------------

AgentPhase = Literal["plan", "build", "explore"]
AgentStatus = Literal["pending", "in_progress", "completed", "failed"]

_TRANSITIONS: dict[str, set[str]] = {
    "pending": {"in_progress"},
    "in_progress": {"completed", "failed"},
    "completed": set(),
    "failed": set(),
}


class _StateModel(BaseModel):
    """Base for on-disk records: camelCase on disk, snake_case in Python."""

    model_config = ConfigDict(populate_by_name=True)


class StateMetadata(_StateModel):
    agent_name: str = Field(..., alias="agentName")
    agent_version: str = Field(..., alias="agentVersion")
    invocation_timestamp: str = Field(..., alias="invocationTimestamp")
    parameters: dict[str, Any] = Field(default_factory=dict)


class PlanResult(_StateModel):
    plan: str


class FileChange(_StateModel):
    type: Literal["create", "modify", "delete"]
    path: str
    diff: str | None = None


class BuildStep(_StateModel):
    step_number: int = Field(..., alias="stepNumber")
    description: str
    status: Literal["pending", "completed", "failed", "skipped"]
    changes: list[FileChange] | None = None


class BuildResult(_StateModel):
    steps: list[BuildStep] = Field(default_factory=list)


class ExplorationResult(_StateModel):
    findings: list[str] = Field(default_factory=list)
    recommendations: list[str] = Field(default_factory=list)
    metrics: dict[str, int | float | str] = Field(default_factory=dict)


class AgentResult(_StateModel):
    plan: PlanResult | None = None
    build: BuildResult | None = None
    exploration: ExplorationResult | None = None


class StateError(_StateModel):
    timestamp: str
    phase: AgentPhase
    message: str
    details: dict[str, Any] | None = None


class Artifact(_StateModel):
    name: str
    path: str
    type: Literal["file", "directory"]
    created_at: str = Field(..., alias="createdAt")


class StateFile(_StateModel):
    """Full snapshot of one task attempt, identified by its file path."""

    model_config = ConfigDict(populate_by_name=True, validate_assignment=True)

    metadata: StateMetadata
    phase: AgentPhase = Field(..., frozen=True, description="Fixed for the lifetime of a run.")
    task_description: str = Field(..., alias="taskDescription")
    status: AgentStatus
    results: AgentResult = Field(default_factory=AgentResult)
    errors: list[StateError]
    artifacts: list[Artifact]

    def transition(self, status: AgentStatus) -> None:
        """Advance status along pending → in_progress → completed|failed."""
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(f"Illegal status transition: {self.status} → {status}")
        self.status = status
