from __future__ import annotations

import json
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from pydantic import BaseModel, ConfigDict, Field

from app.tools.catalog import ToolCatalog
from app.tools.tool_router import ToolRouter

router = APIRouter(tags=["tools"])


class _BaseToolArgs(BaseModel):
    """Common base for request bodies; tolerant of extra fields from Vapi."""

    model_config = ConfigDict(extra="ignore")


class ToolCallRequest(_BaseToolArgs):
    tenant_id: str
    call_id: Optional[str] = None
    arguments: Dict[str, Any] = Field(default_factory=dict)
    branch_id: Optional[str] = None
    assistant_type: Optional[str] = None
    locale: Optional[str] = None
    channel: str = "voice"
    caller_phone: Optional[str] = None


def get_tool_router(request: Request) -> ToolRouter:
    return request.app.state.tool_router


def get_catalog(request: Request) -> ToolCatalog:
    return request.app.state.tool_catalog


def _first_tool_call(payload: Dict[str, Any]) -> Dict[str, Any]:
    """Pull the first tool call out of a Vapi tool payload.

    Expected shape (simplified):
    {
        "message": {
            "call": {"id": "...", "customer": {"number": "+52..."}},
            "toolCallList": [
                {
                    "id": "call_abc",
                    "function": {
                        "name": "check_secure_availability",
                        "arguments": { ... } or "{...}"  # JSON string
                    }
                }
            ]
        }
    }
    """

    message = payload.get("message") or {}
    tool_calls: List[Dict[str, Any]] = (
        message.get("toolCallList")
        or message.get("toolCalls")
        or []
    )

    if not tool_calls:
        raise HTTPException(status_code=400, detail="Missing toolCallList in request payload")

    tool_call = tool_calls[0] or {}
    function = tool_call.get("function") or {}
    name = function.get("name")
    if not name:
        raise HTTPException(status_code=400, detail="Tool call has no function name")

    args = function.get("arguments") or {}

    # Vapi sometimes sends arguments as a JSON string
    if isinstance(args, str):
        try:
            args = json.loads(args)
        except json.JSONDecodeError:
            raise HTTPException(status_code=400, detail="Invalid JSON in tool arguments")

    if not isinstance(args, dict):
        raise HTTPException(status_code=400, detail="Tool arguments must be an object")

    return {"id": tool_call.get("id"), "name": name, "arguments": args}


def _vapi_result(message: str, tool_call_id: Optional[str] = None) -> Dict[str, Any]:
    """Wrap a spoken result in Vapi's expected response envelope.

    If a tool_call_id is provided, include it so Vapi can match the result to
    the originating tool call.
    """

    result: Dict[str, Any] = {"result": message}
    if tool_call_id:
        result["toolCallId"] = tool_call_id
    return {"results": [result]}


@router.post("/tools/{tool_name}")
async def execute_tool(
    tool_name: str,
    body: ToolCallRequest,
    tool_router: ToolRouter = Depends(get_tool_router),
):
    """Run one tool for a tenant; tool failures come back in the result body."""
    result = await tool_router.execute(
        tool_name,
        body.arguments,
        tenant_id=body.tenant_id,
        call_id=body.call_id,
        caller_phone=body.caller_phone,
        branch_id=body.branch_id,
        locale=body.locale,
        assistant_type=body.assistant_type,
        channel=body.channel,
    )
    return result.to_dict()


@router.post("/tools/vapi/{tenant_id}")
async def vapi_tool_call(
    tenant_id: str,
    request: Request,
    tool_router: ToolRouter = Depends(get_tool_router),
):
    """Vapi server-tool webhook."""
    payload = await request.json()
    tool_call = _first_tool_call(payload)

    call = (payload.get("message") or {}).get("call") or {}
    caller_phone = (call.get("customer") or {}).get("number")

    result = await tool_router.execute(
        tool_call["name"],
        tool_call["arguments"],
        tenant_id=tenant_id,
        call_id=call.get("id"),
        caller_phone=caller_phone,
    )
    return _vapi_result(result.voice_message, tool_call["id"])


@router.get("/tools/catalog/{assistant_type}")
async def list_tools(assistant_type: str, catalog: ToolCatalog = Depends(get_catalog)):
    return catalog.describe_for_tenant_type(assistant_type)
