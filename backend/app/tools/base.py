from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime
from enum import Enum
from types import MappingProxyType
from typing import Any, Awaitable, Callable, Dict, FrozenSet, Mapping, Optional, Tuple

from app.core.clock import Clock, tenant_clock
from app.services.db_service import DBService
from app.services.voice_formatting import localized


class ToolErrorCode(str, Enum):
    TOOL_NOT_FOUND = "TOOL_NOT_FOUND"
    TOOL_NOT_ENABLED = "TOOL_NOT_ENABLED"
    INVALID_PARAMS = "INVALID_PARAMS"
    TIMEOUT = "TIMEOUT"
    EXECUTION_ERROR = "EXECUTION_ERROR"


WILDCARD = "*"


@dataclass(frozen=True)
class ExecutionContext:
    """Everything one tool invocation may use. Built per call, never shared."""

    tenant_id: str
    call_id: str
    assistant_type: str
    db: Optional[DBService] = None
    locale: str = "es"
    channel: str = "voice"  # voice, chat, messaging
    branch_id: Optional[str] = None
    vertical: Optional[str] = None
    timezone: str = "UTC"
    caller_phone: Optional[str] = None
    entities: Mapping[str, Any] = field(default_factory=dict)
    clock: Optional[Clock] = None

    def __post_init__(self):
        object.__setattr__(self, "entities", MappingProxyType(dict(self.entities)))
        if self.clock is None:
            object.__setattr__(self, "clock", tenant_clock(self.timezone))

    def now(self) -> datetime:
        return self.clock()

    def say(self, es: str, en: str) -> str:
        return localized(self.locale, es, en)


@dataclass(frozen=True)
class ExecutionResult:
    success: bool
    voice_message: str
    data: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None
    forward_to_client: bool = False
    end_call: bool = False
    metadata: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def ok(cls, voice_message: str, data: Optional[Dict[str, Any]] = None, **kwargs: Any) -> "ExecutionResult":
        return cls(success=True, voice_message=voice_message, data=data, **kwargs)

    @classmethod
    def failure(
        cls,
        error_code: str,
        voice_message: str,
        error: Optional[str] = None,
        **kwargs: Any,
    ) -> "ExecutionResult":
        code = error_code.value if isinstance(error_code, Enum) else error_code
        return cls(success=False, voice_message=voice_message, error=error or code, error_code=code, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


Handler = Callable[[Dict[str, Any], ExecutionContext], Awaitable[ExecutionResult]]
# (params, locale) -> spoken confirmation question
ConfirmationGenerator = Callable[[Mapping[str, Any], str], str]


@dataclass(frozen=True)
class ToolDefinition:
    name: str
    description: str
    category: str
    parameters: Mapping[str, Any]
    handler: Handler
    enabled_for: Tuple[str, ...]
    required_capabilities: FrozenSet[str] = frozenset()
    requires_confirmation: bool = False
    # locale -> template with {param} placeholders
    confirmation_template: Optional[Mapping[str, str]] = None
    confirmation_message: Optional[ConfirmationGenerator] = None
    timeout_seconds: Optional[float] = None

    def is_enabled_for(self, tenant_type: Optional[str]) -> bool:
        return WILDCARD in self.enabled_for or (tenant_type is not None and tenant_type in self.enabled_for)
