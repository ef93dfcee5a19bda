"""
One-step booking tools: the caller has already agreed, so the slot is booked
without a hold. Live holds and bookings still block the slot.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping

from app.services.hold_engine import HoldError
from app.services.voice_formatting import (
    format_cents_for_voice,
    format_confirmation_code_for_voice,
    format_date_short,
    format_party_size_for_voice,
    format_phone_for_voice,
    format_time_for_voice,
    is_english,
    localized,
)
from app.tools.base import ExecutionContext, ExecutionResult, ToolDefinition, ToolErrorCode
from app.tools.common import (
    hold_engine,
    invalid_params,
    parse_date,
    parse_iso,
    parse_time,
    spoken_when,
    staff_id_error,
    vertical_for,
)
from app.tools.secure_booking import HOLD_FAILURE_MESSAGES

logger = logging.getLogger(__name__)

DENTAL_TYPES = ("dental_basic", "dental_standard", "dental_complete")
RESTAURANT_TYPES = ("rest_basic", "rest_standard", "rest_complete")

DUPLICATE_MESSAGE = (
    "Ya tiene una reservación registrada a esa hora. ¿Le gustaría elegir otro horario?",
    "You already have a booking at that time. Would you like to pick a different time?",
)


def _spoken_slot(params: Mapping[str, Any], locale: str) -> str:
    day = format_date_short(params.get("date", ""), locale)
    hour = format_time_for_voice(params.get("time", ""), locale)
    if is_english(locale):
        return f"{day} at {hour}"
    article = "a la" if hour.startswith("una ") else "a las"
    return f"el {day} {article} {hour}"


async def _book(params: Dict[str, Any], context: ExecutionContext, booking_type: str) -> ExecutionResult:
    day, at = parse_date(params["date"]), parse_time(params["time"])
    if day is None or at is None:
        return invalid_params(
            context,
            "No entendí la fecha o la hora.",
            "I didn't understand the date or time.",
            "Invalid date or time",
        )
    bad_staff = staff_id_error(params, context)
    if bad_staff is not None:
        return bad_staff

    engine = hold_engine(context)
    result = await engine.create_booking(
        slot_start=datetime.combine(day, at),
        duration_minutes=params["durationMinutes"],
        customer_phone=params["customerPhone"],
        customer_name=params["customerName"],
        vertical=vertical_for(context),
        booking_type=booking_type,
        branch_id=context.branch_id,
        staff_id=params.get("staffId"),
        service_id=params.get("serviceId"),
        party_size=params.get("partySize"),
        customer_email=params.get("customerEmail"),
        notes=params.get("notes") or params.get("specialRequests"),
        source_call_id=context.call_id,
    )

    if not result.success:
        logger.info("Direct %s not created for call %s: %s", booking_type, context.call_id, result.error)
        code = result.error_code
        if code == HoldError.DUPLICATE_BOOKING:
            es, en = DUPLICATE_MESSAGE
        elif code == HoldError.DEPOSIT_REQUIRED:
            amount = format_cents_for_voice(result.deposit_amount_cents or 0, locale=context.locale)
            es = f"Para reservar ese horario se requiere un depósito de {amount}. ¿Quiere que lo aparte mientras tanto?"
            en = f"Booking that time requires a deposit of {amount}. Shall I hold it for you meanwhile?"
        else:
            es, en = HOLD_FAILURE_MESSAGES.get(code, HOLD_FAILURE_MESSAGES[HoldError.SLOT_HELD])
        return ExecutionResult.failure(
            code.value if code else ToolErrorCode.EXECUTION_ERROR,
            context.say(es, en),
            error=result.error,
            data={"booking": result.booking, "depositAmountCents": result.deposit_amount_cents},
            forward_to_client=code == HoldError.CUSTOMER_BLOCKED,
        )

    booking = result.booking
    when = spoken_when(context, parse_iso(booking["booking_datetime"]))
    code = format_confirmation_code_for_voice(booking["confirmation_code"], context.locale)
    if booking_type == "reservation":
        party = format_party_size_for_voice(booking["party_size"], context.locale)
        message = context.say(
            f"¡Listo! Su reservación para {party} quedó confirmada para {when}. "
            f"Su código de confirmación es {code}.",
            f"All set! Your reservation for {party} is confirmed for {when}. "
            f"Your confirmation code is {code}.",
        )
    else:
        phone = format_phone_for_voice(booking["customer_phone"][-10:], context.locale)
        message = context.say(
            f"¡Listo! Su cita quedó confirmada para {when}. Su código de confirmación es {code}. "
            f"Le enviaremos un recordatorio al {phone}.",
            f"All set! Your appointment is confirmed for {when}. Your confirmation code is {code}. "
            f"We'll send a reminder to {phone}.",
        )

    return ExecutionResult.ok(
        message,
        data={"booking": booking, "confirmationCode": booking["confirmation_code"]},
        forward_to_client=True,
    )


async def create_appointment(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    return await _book(params, context, "appointment")


async def create_reservation(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    return await _book(params, context, "reservation")


def _appointment_confirmation(params: Mapping[str, Any], locale: str) -> str:
    slot = _spoken_slot(params, locale)
    name = params.get("customerName", "")
    return localized(
        locale,
        f"Voy a agendar una cita {slot} para {name}. ¿Confirma la cita?",
        f"I'll book an appointment on {slot} for {name}. Shall I confirm it?",
    )


def _reservation_confirmation(params: Mapping[str, Any], locale: str) -> str:
    slot = _spoken_slot(params, locale)
    party = format_party_size_for_voice(params.get("partySize") or 2, locale)
    name = params.get("customerName", "")
    message = localized(
        locale,
        f"Voy a reservar para {party} {slot} a nombre de {name}.",
        f"I'll reserve a table for {party} on {slot} under the name {name}.",
    )
    if params.get("specialRequests"):
        message += " " + localized(
            locale,
            f"Con la solicitud especial: {params['specialRequests']}.",
            f"Special request: {params['specialRequests']}.",
        )
    return message + " " + localized(locale, "¿Confirma la reservación?", "Shall I confirm it?")


def direct_booking_tools() -> List[ToolDefinition]:
    return [
        ToolDefinition(
            name="create_appointment",
            description="Book an appointment in one step once the caller has agreed to a time.",
            category="booking",
            parameters={
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "YYYY-MM-DD"},
                    "time": {"type": "string", "description": "HH:MM"},
                    "customerName": {"type": "string", "minLength": 2},
                    "customerPhone": {"type": "string", "minLength": 7},
                    "customerEmail": {"type": "string"},
                    "serviceId": {"type": "string"},
                    "staffId": {"type": "string"},
                    "durationMinutes": {"type": "integer", "minimum": 5, "maximum": 480, "default": 30},
                    "notes": {"type": "string", "maxLength": 1000},
                },
                "required": ["date", "time", "customerName", "customerPhone"],
            },
            handler=create_appointment,
            enabled_for=DENTAL_TYPES,
            required_capabilities=frozenset({"appointments"}),
            requires_confirmation=True,
            confirmation_message=_appointment_confirmation,
            timeout_seconds=15.0,
        ),
        ToolDefinition(
            name="create_reservation",
            description="Reserve a table in one step once the caller has agreed to a time.",
            category="booking",
            parameters={
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "YYYY-MM-DD"},
                    "time": {"type": "string", "description": "HH:MM"},
                    "partySize": {"type": "integer", "minimum": 1, "maximum": 20},
                    "customerName": {"type": "string", "minLength": 2},
                    "customerPhone": {"type": "string", "minLength": 7},
                    "customerEmail": {"type": "string"},
                    "specialRequests": {"type": "string", "maxLength": 1000},
                    "durationMinutes": {"type": "integer", "minimum": 15, "maximum": 480, "default": 90},
                },
                "required": ["date", "time", "partySize", "customerName", "customerPhone"],
            },
            handler=create_reservation,
            enabled_for=RESTAURANT_TYPES,
            required_capabilities=frozenset({"reservations"}),
            requires_confirmation=True,
            confirmation_message=_reservation_confirmation,
            timeout_seconds=15.0,
        ),
    ]
