from __future__ import annotations

import logging
import re
from collections import Counter
from typing import Any, Dict, Iterable, List, Mapping, Optional

from app.services.voice_formatting import is_english, localized
from app.tools.base import ToolDefinition
from app.tools.exceptions import InvalidToolDefinitionError
from app.tools.schema import CompiledSchema, ValidationIssue

logger = logging.getLogger(__name__)

DEFAULT_CONFIRMATION = {
    "es": "¿Desea proceder con esta acción?",
    "en": "Would you like to proceed?",
}

_PLACEHOLDER = re.compile(r"\{(\w+)\}")


class ToolCatalog:
    """
    Registry of the tools the assistant may call.

    Owned by the composition root (see app.main); tests build their own.
    """

    def __init__(self, tools: Iterable[ToolDefinition] = ()):
        self._tools: Dict[str, ToolDefinition] = {}
        self._schemas: Dict[str, CompiledSchema] = {}
        for tool in tools:
            self.register(tool)

    def register(self, tool: ToolDefinition) -> None:
        name = getattr(tool, "name", None)
        if not name or not isinstance(name, str):
            raise InvalidToolDefinitionError(str(name), "name is required")
        if not callable(getattr(tool, "handler", None)):
            raise InvalidToolDefinitionError(name, "handler must be callable")
        if not tool.enabled_for:
            raise InvalidToolDefinitionError(name, "enabled_for must not be empty")
        schema = CompiledSchema.compile(name, tool.parameters)

        if name in self._tools:
            logger.warning("Tool '%s' is already registered, overwriting", name)
        self._tools[name] = tool
        self._schemas[name] = schema
        logger.debug("Registered tool '%s' (%s)", name, tool.category)

    # ==================== LOOKUPS ====================

    def get(self, name: str) -> Optional[ToolDefinition]:
        return self._tools.get(name)

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_names(self) -> List[str]:
        return sorted(self._tools)

    def get_for_tenant_type(self, tenant_type: str) -> List[ToolDefinition]:
        return [tool for tool in self._tools.values() if tool.is_enabled_for(tenant_type)]

    def get_by_category(self, category: str) -> List[ToolDefinition]:
        return [tool for tool in self._tools.values() if tool.category == category]

    def get_for_capabilities(self, capabilities: Iterable[str]) -> List[ToolDefinition]:
        """Tools whose required capabilities are all present."""
        available = set(capabilities)
        return [tool for tool in self._tools.values() if tool.required_capabilities <= available]

    # ==================== VALIDATION ====================

    def validate(self, name: str, params: Mapping[str, Any]) -> List[ValidationIssue]:
        return self._schemas[name].validate(params)

    def apply_defaults(self, name: str, params: Mapping[str, Any]) -> Dict[str, Any]:
        return self._schemas[name].apply_defaults(params)

    # ==================== CONFIRMATION ====================

    def requires_confirmation(self, name: str) -> bool:
        tool = self._tools.get(name)
        return bool(tool and tool.requires_confirmation)

    def get_confirmation_message(self, name: str, params: Mapping[str, Any], locale: str = "es") -> Optional[str]:
        """Generator, then template, then the generic question."""
        tool = self._tools.get(name)
        if tool is None or not tool.requires_confirmation:
            return None

        if tool.confirmation_message is not None:
            return tool.confirmation_message(params, locale)

        if tool.confirmation_template:
            template = tool.confirmation_template.get(
                "en" if is_english(locale) else "es"
            ) or next(iter(tool.confirmation_template.values()))

            def substitute(match: "re.Match[str]") -> str:
                value = params.get(match.group(1))
                return match.group(0) if value is None else str(value)

            return _PLACEHOLDER.sub(substitute, template)

        return localized(locale, DEFAULT_CONFIRMATION["es"], DEFAULT_CONFIRMATION["en"])

    # ==================== EXPORT ====================

    def describe_for_tenant_type(self, tenant_type: str) -> List[Dict[str, Any]]:
        """Capability discovery for the conversation driver."""
        return [
            {"name": tool.name, "description": tool.description, "parameters": dict(tool.parameters)}
            for tool in self.get_for_tenant_type(tenant_type)
        ]

    def to_openai_functions(self, tenant_type: str) -> List[Dict[str, Any]]:
        return [
            {
                "type": "function",
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": dict(tool.parameters),
                },
            }
            for tool in self.get_for_tenant_type(tenant_type)
        ]

    def to_vapi_functions(self, tenant_type: str, server_url: Optional[str] = None) -> List[Dict[str, Any]]:
        functions = []
        for tool in self.get_for_tenant_type(tenant_type):
            entry: Dict[str, Any] = {
                "type": "function",
                "async": False,
                "function": {
                    "name": tool.name,
                    "description": tool.description,
                    "parameters": dict(tool.parameters),
                },
            }
            if server_url:
                entry["server"] = {"url": server_url}
            functions.append(entry)
        return functions

    def stats(self) -> Dict[str, Any]:
        return {
            "total": len(self._tools),
            "by_category": dict(Counter(tool.category for tool in self._tools.values())),
            "requiring_confirmation": sum(1 for tool in self._tools.values() if tool.requires_confirmation),
        }
