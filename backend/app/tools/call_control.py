from __future__ import annotations

import logging
from datetime import date, timedelta
from typing import Any, Dict, List, Optional

from app.services.hold_engine import WEEKDAY_KEYS
from app.services.voice_formatting import ENGLISH_DAYS, SPANISH_DAYS, day_name, format_business_hours_for_voice
from app.tools.base import WILDCARD, ExecutionContext, ExecutionResult, ToolDefinition
from app.tools.common import hold_engine, parse_date

logger = logging.getLogger(__name__)

DAYS_READ_OUT = 3


def _resolve_day(value: Optional[str], today: date) -> Optional[date]:
    """ISO date, today/tomorrow (es or en), or a weekday name for the coming week."""
    if not value:
        return None
    text = value.strip().lower()
    if text in ("today", "hoy"):
        return today
    if text in ("tomorrow", "mañana", "manana"):
        return today + timedelta(days=1)

    names = [WEEKDAY_KEYS, [d.lower() for d in ENGLISH_DAYS], SPANISH_DAYS]
    for table in names:
        if text in table:
            offset = (table.index(text) - today.weekday()) % 7
            return today + timedelta(days=offset)
    return parse_date(text)


async def get_business_hours(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    engine = hold_engine(context)
    today = context.now().date()
    requested = _resolve_day(params.get("day"), today)
    if params.get("day") and requested is None:
        return ExecutionResult.failure(
            "InvalidDay",
            context.say("No entendí qué día le interesa.", "I didn't catch which day you meant."),
        )

    days = [requested] if requested else [today + timedelta(days=i) for i in range(DAYS_READ_OUT)]
    entries: List[Dict[str, Any]] = []
    for day in days:
        window = await engine.opening_hours(day, context.branch_id)
        entry: Dict[str, Any] = {"day": day_name(day, context.locale), "date": day.isoformat()}
        if window is None:
            entry["closed"] = True
        else:
            entry.update(open=window[0], close=window[1], closed=False)
        entries.append(entry)

    message = format_business_hours_for_voice(entries, context.locale, for_today=requested == today)
    data = [
        {
            "date": e["date"],
            "closed": e["closed"],
            "open": e["open"].strftime("%H:%M") if not e["closed"] else None,
            "close": e["close"].strftime("%H:%M") if not e["closed"] else None,
        }
        for e in entries
    ]
    return ExecutionResult.ok(message, data={"hours": data})


async def transfer_to_human(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    logger.info(
        "Transfer requested (urgency=%s, department=%s): %s",
        params.get("urgency"), params.get("department"), params["reason"],
    )
    return ExecutionResult.ok(
        context.say(
            "Con gusto le comunico con un miembro de nuestro equipo. Un momento, por favor.",
            "I'll connect you with a member of our team. One moment, please.",
        ),
        data={
            "shouldTransfer": True,
            "reason": params["reason"],
            "urgency": params.get("urgency"),
            "department": params.get("department"),
        },
        forward_to_client=True,
    )


async def end_call(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    released = 0
    if context.db is not None:
        released = await hold_engine(context).release_session_holds(context.call_id)
    return ExecutionResult.ok(
        context.say(
            "Gracias por llamar. ¡Que tenga un excelente día!",
            "Thank you for calling. Have a great day!",
        ),
        data={"reason": params.get("reason"), "summary": params.get("summary"), "releasedHolds": released},
        end_call=True,
    )


def call_control_tools() -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name="get_business_hours",
            description="Opening hours for a day, or the next few days.",
            category="info",
            parameters={
                "type": "object",
                "properties": {
                    "day": {"type": "string", "description": "YYYY-MM-DD, a weekday, today or tomorrow"},
                },
            },
            handler=get_business_hours,
            enabled_for=(WILDCARD,),
            required_capabilities=frozenset({"business_hours"}),
        ),
        ToolDefinition(
            name="transfer_to_human",
            description="Hand the call over to a staff member.",
            category="transfer",
            parameters={
                "type": "object",
                "properties": {
                    "reason": {"type": "string", "minLength": 1},
                    "urgency": {"type": "string", "enum": ["low", "medium", "high"], "default": "medium"},
                    "department": {
                        "type": "string",
                        "enum": ["general", "sales", "support", "billing", "manager"],
                    },
                },
                "required": ["reason"],
            },
            handler=transfer_to_human,
            enabled_for=(WILDCARD,),
            required_capabilities=frozenset({"human_transfer"}),
        ),
        ToolDefinition(
            name="end_call",
            description="End the call and release any slot still held for it.",
            category="call",
            parameters={
                "type": "object",
                "properties": {
                    "reason": {
                        "type": "string",
                        "enum": ["completed", "user_request", "error", "transferred"],
                        "default": "completed",
                    },
                    "summary": {"type": "string"},
                },
            },
            handler=end_call,
            enabled_for=(WILDCARD,),
        ),
    ]
