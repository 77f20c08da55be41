"""Request, result and envelope models for the code-assist API."""

from typing import Literal, Optional

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    StrictBool,
    StrictInt,
    StrictStr,
    field_validator,
)

from codegate.app.core.config import settings

Action = Literal["generate", "analyze", "optimize", "review"]
ACTIONS: tuple[str, ...] = ("generate", "analyze", "optimize", "review")


class ExecutionOptions(BaseModel):
    """Optional knobs that shape the prompt sent to the assistant."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    include_tests: Optional[StrictBool] = Field(default=None, alias="includeTests")
    include_comments: Optional[StrictBool] = Field(default=None, alias="includeComments")
    code_style: Optional[Literal["modern", "legacy"]] = Field(default=None, alias="codeStyle")
    max_tokens: Optional[StrictInt] = Field(default=None, alias="maxTokens", ge=100, le=8192)


class ExecutionRequest(BaseModel):
    """A validated code-assistance request. Immutable once constructed."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    action: Action
    prompt: StrictStr
    language: Optional[StrictStr] = None
    framework: Optional[StrictStr] = None
    options: ExecutionOptions = Field(default_factory=ExecutionOptions)

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Prompt cannot be empty")
        if len(v) > settings.max_prompt_length:
            raise ValueError(
                f"Prompt must be under {settings.max_prompt_length} characters"
            )
        return v

    @field_validator("options", mode="before")
    @classmethod
    def default_options(cls, v):
        # An explicit null behaves like an omitted options object
        return {} if v is None else v


class ExecutionResult(BaseModel):
    """Structured view of the assistant's free-form output."""

    code: Optional[str] = None
    analysis: Optional[str] = None
    suggestions: Optional[list[str]] = None
    explanation: Optional[str] = None


class ErrorDetail(BaseModel):
    code: str
    message: str


class ResponseMetadata(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    timestamp: str
    execution_time: int = Field(..., alias="executionTime", description="Milliseconds")
    session_id: str = Field(..., alias="sessionId")


class CodeAssistResponse(BaseModel):
    """Response envelope shared by every outcome, success or failure."""

    success: bool
    data: Optional[ExecutionResult] = None
    error: Optional[ErrorDetail] = None
    metadata: ResponseMetadata

    def to_payload(self) -> dict:
        """Serialize with wire field names, omitting unset optional fields."""
        return self.model_dump(by_alias=True, exclude_none=True)
