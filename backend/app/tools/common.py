"""Shared plumbing for the concrete tool handlers."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import Any, Mapping, Optional

from app.services.db_service import as_uuid
from app.services.hold_engine import HoldEngine
from app.services.voice_formatting import format_date_for_voice, format_time_for_voice
from app.tools.base import ExecutionContext, ExecutionResult, ToolErrorCode

VERTICAL_PREFIXES = {
    "rest_": "restaurant",
    "dental_": "dental",
}


def vertical_for(context: ExecutionContext) -> Optional[str]:
    if context.vertical:
        return context.vertical
    for prefix, vertical in VERTICAL_PREFIXES.items():
        if context.assistant_type.startswith(prefix):
            return vertical
    return None


def parse_date(value: Any) -> Optional[date]:
    try:
        return date.fromisoformat(str(value).strip()[:10])
    except ValueError:
        return None


def parse_time(value: Any) -> Optional[time]:
    """Accepts "HH:MM" and "HH:MM:SS"."""
    text = str(value).strip()
    for fmt in ("%H:%M", "%H:%M:%S"):
        try:
            return datetime.strptime(text, fmt).time()
        except ValueError:
            continue
    return None


def parse_iso(value: Optional[str]) -> Optional[datetime]:
    return datetime.fromisoformat(value) if value else None


def hold_engine(context: ExecutionContext) -> HoldEngine:
    if context.db is None:
        raise RuntimeError("Tool requires a database session")
    return HoldEngine(context.db, context.tenant_id, context.clock)


def spoken_when(context: ExecutionContext, when: datetime) -> str:
    """e.g. "lunes veinte de enero a las siete de la noche"."""
    day = format_date_for_voice(when, context.locale, today=context.now().date())
    hour = format_time_for_voice(when, context.locale)
    article = "a la" if hour.startswith("una ") else "a las"
    return context.say(f"{day} {article} {hour}", f"{day} at {hour}")


def invalid_params(context: ExecutionContext, es: str, en: str, error: str) -> ExecutionResult:
    return ExecutionResult.failure(ToolErrorCode.INVALID_PARAMS, context.say(es, en), error=error)


def staff_id_error(params: Mapping[str, Any], context: ExecutionContext) -> Optional[ExecutionResult]:
    """INVALID_PARAMS result when a staffId was given but is not an id."""
    staff_id = params.get("staffId")
    if staff_id and as_uuid(staff_id) is None:
        return invalid_params(
            context,
            "No reconocí al profesional que indicó.",
            "I didn't recognize that staff member.",
            f"Invalid staffId: {staff_id}",
        )
    return None
