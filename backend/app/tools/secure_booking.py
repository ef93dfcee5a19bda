"""
Booking tools backed by the hold engine.

The usual flow during a call is check_secure_availability, then
create_secure_hold while the caller confirms, then convert_hold_to_booking.
Holds left behind by an abandoned call expire on their own or are released
by end_call.
"""
from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, Dict, List, Mapping

from app.services.hold_engine import HoldError
from app.services.trust_evaluator import ACTION_REQUIRE_CONFIRMATION, ACTION_REQUIRE_DEPOSIT, TrustEvaluator
from app.services.utils import normalize_phone
from app.services.voice_formatting import (
    format_alternatives_for_voice,
    format_cents_for_voice,
    format_confirmation_code_for_voice,
    format_date_for_voice,
    format_duration_for_voice,
    format_party_size_for_voice,
    format_slots_for_voice,
    format_time_for_voice,
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

logger = logging.getLogger(__name__)

SECURE_BOOKING_TYPES = (
    "dental_basic",
    "dental_standard",
    "dental_complete",
    "rest_basic",
    "rest_standard",
    "rest_complete",
)

CAPABILITY = "secure_booking"
MAX_ALTERNATIVES = 3


def _slot_data(day: str, at: str, duration: int) -> Dict[str, Any]:
    return {"date": day, "time": at, "durationMinutes": duration}


# ==================== check_secure_availability ====================

async def check_secure_availability(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    day = parse_date(params["date"])
    if day is None:
        return invalid_params(context, "No entendí la fecha.", "I didn't understand the date.", "Invalid date")

    at = None
    if params.get("time"):
        at = parse_time(params["time"])
        if at is None:
            return invalid_params(context, "No entendí la hora.", "I didn't understand the time.", "Invalid time")

    bad_staff = staff_id_error(params, context)
    if bad_staff is not None:
        return bad_staff

    now = context.now()
    if day < now.date():
        return ExecutionResult.failure(
            "DateInPast",
            context.say(
                "Esa fecha ya pasó. Por favor elija una fecha futura.",
                "That date has already passed. Please choose a future date.",
            ),
            error="Date in past",
            data={"available": False, "reason": "past"},
        )

    engine = hold_engine(context)
    duration = params["durationMinutes"]
    staff_id = params.get("staffId")
    spoken_day = format_date_for_voice(day, context.locale, today=now.date())

    if at is None:
        result = await engine.check_availability(
            day, None, duration, staff_id=staff_id, branch_id=context.branch_id
        )
        slots = [slot.isoformat() for slot in result.slots]
        if result.reason == "closed":
            return ExecutionResult.ok(
                context.say(
                    f"Lo siento, estamos cerrados {spoken_day}. ¿Le gustaría verificar otra fecha?",
                    f"Sorry, we're closed {spoken_day}. Would you like to check another date?",
                ),
                data={"available": False, "reason": "closed", "alternativeSlots": []},
            )
        if not result.slots:
            return ExecutionResult.ok(
                context.say(
                    f"Lo siento, no hay horarios disponibles para {spoken_day}. ¿Le gustaría verificar otra fecha?",
                    f"I'm sorry, there are no available times for {spoken_day}. "
                    "Would you like to check another date?",
                ),
                data={"available": False, "reason": "full", "alternativeSlots": []},
            )
        times = format_slots_for_voice(result.slots, context.locale)
        return ExecutionResult.ok(
            context.say(
                f"Para {spoken_day} tengo estos horarios disponibles: {times}. ¿Cuál prefiere?",
                f"For {spoken_day}, I have these times available: {times}. Which one would you prefer?",
            ),
            data={"available": True, "alternativeSlots": slots},
        )

    requested = _slot_data(day.isoformat(), at.strftime("%H:%M"), duration)
    result = await engine.check_availability(
        day, at, duration, staff_id=staff_id, branch_id=context.branch_id
    )

    if result.available:
        when = spoken_when(context, result.start)
        return ExecutionResult.ok(
            context.say(
                f"Sí, {when} está disponible. ¿Le gustaría que lo aparte?",
                f"Yes, {when} is available. Would you like me to book that for you?",
            ),
            data={"available": True, "requestedSlot": requested},
        )

    if result.reason == "past":
        return ExecutionResult.ok(
            context.say(
                "Esa hora ya pasó. ¿Le gustaría verificar un horario más tarde?",
                "That time has already passed. Would you like to check a later time?",
            ),
            data={"available": False, "reason": "past", "requestedSlot": requested},
        )

    alternatives: List[datetime] = []
    if params.get("includeAlternatives", True):
        options = await engine.check_availability(
            day, None, duration, staff_id=staff_id, branch_id=context.branch_id, limit=MAX_ALTERNATIVES + 1
        )
        alternatives = [slot for slot in options.slots if slot != result.start][:MAX_ALTERNATIVES]

    if result.reason == "held":
        lead = context.say(
            "Ese horario está siendo reservado por otra persona.",
            "That time is currently being held by someone else.",
        )
    else:
        lead = context.say("Ese horario ya está reservado.", "That time slot is already booked.")

    if alternatives:
        spoken = format_alternatives_for_voice(
            [format_time_for_voice(slot, context.locale) for slot in alternatives], context.locale
        )
        follow = context.say(f"¿Qué tal {spoken}?", f"How about {spoken}?")
    else:
        follow = context.say("¿Le gustaría probar otro horario?", "Would you like to try a different time?")

    return ExecutionResult.ok(
        f"{lead} {follow}",
        data={
            "available": False,
            "reason": result.reason,
            "requestedSlot": requested,
            "alternativeSlots": [slot.isoformat() for slot in alternatives],
        },
    )


# ==================== create_secure_hold ====================

HOLD_FAILURE_MESSAGES = {
    HoldError.SLOT_IN_PAST: (
        "Esa hora ya pasó. ¿Le gustaría elegir un horario más tarde?",
        "That time has already passed. Would you like to pick a later time?",
    ),
    HoldError.SLOT_HELD: (
        "Ese horario está siendo reservado por otra persona. ¿Le gustaría probar otro horario?",
        "That time is currently being held by someone else. Would you like to try a different time?",
    ),
    HoldError.SLOT_BOOKED: (
        "Ese horario ya está reservado. ¿Le gustaría probar otro horario?",
        "That time slot is already booked. Would you like to try a different time?",
    ),
    HoldError.CUSTOMER_BLOCKED: (
        "Lo siento, no puedo completar la reservación por teléfono. Le comunico con el personal.",
        "I'm sorry, I can't complete this booking by phone. Let me connect you with our staff.",
    ),
    HoldError.HOLD_NOT_ACTIVE: (
        "Ese horario apartado ya no está activo. ¿Quiere que lo verifique de nuevo?",
        "That hold is no longer active. Would you like me to check again?",
    ),
    HoldError.INVALID_REQUEST: (
        "Necesito un número de teléfono válido para apartar el horario.",
        "I need a valid phone number to hold the time.",
    ),
}


async def create_secure_hold(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
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

    phone = normalize_phone(params.get("customerPhone") or "") or normalize_phone(context.caller_phone or "")
    vertical = vertical_for(context)
    hold_type = params.get("holdType") or ("reservation" if vertical == "restaurant" else "appointment")
    duration = params["durationMinutes"]

    metadata: Dict[str, Any] = {"source": context.channel}
    if params.get("partySize") is not None:
        metadata["party_size"] = params["partySize"]

    engine = hold_engine(context)
    result = await engine.create_hold(
        slot_start=datetime.combine(day, at),
        duration_minutes=duration,
        customer_phone=phone,
        vertical=vertical,
        hold_type=hold_type,
        branch_id=context.branch_id,
        service_id=params.get("serviceId"),
        staff_id=params.get("staffId"),
        customer_name=params.get("customerName"),
        session_id=context.call_id,
        idempotency_key=params.get("idempotencyKey"),
        metadata=metadata,
    )

    if not result.success:
        logger.info("Hold not created for call %s: %s", context.call_id, result.error)
        es, en = HOLD_FAILURE_MESSAGES.get(result.error_code, HOLD_FAILURE_MESSAGES[HoldError.SLOT_HELD])
        return ExecutionResult.failure(
            result.error_code.value if result.error_code else ToolErrorCode.EXECUTION_ERROR,
            context.say(es, en),
            error=result.error,
            data={"hold": result.hold},
            forward_to_client=result.error_code == HoldError.CUSTOMER_BLOCKED,
        )

    hold = result.hold
    when = spoken_when(context, parse_iso(hold["slot_datetime"]))
    minutes = result.expires_in_minutes
    held_for = format_duration_for_voice(minutes, context.locale)
    message = context.say(
        f"Listo, aparté {when}. Tengo el horario reservado por {held_for}.",
        f"Done, I'm holding {when} for you for {held_for}.",
    )

    action = result.trust.action if result.trust is not None else None
    if hold["requires_deposit"] and hold["deposit_amount_cents"]:
        amount = format_cents_for_voice(hold["deposit_amount_cents"], locale=context.locale)
        message += " " + context.say(
            f"Para confirmar se requiere un depósito de {amount}.",
            f"A deposit of {amount} is required to confirm.",
        )
    elif hold["requires_confirmation"]:
        message += " " + context.say(
            "Le enviaremos un mensaje para confirmar su asistencia. ¿Confirmo la reservación?",
            "We'll send you a message to confirm your attendance. Shall I confirm the booking?",
        )
    else:
        message += " " + context.say("¿Confirmo la reservación?", "Shall I confirm the booking?")

    return ExecutionResult.ok(
        message,
        data={
            "hold": hold,
            "holdId": hold["hold_id"],
            "expiresInMinutes": minutes,
            "trustAction": action,
            "requiresConfirmation": hold["requires_confirmation"],
            "requiresDeposit": hold["requires_deposit"],
            "depositAmountCents": hold["deposit_amount_cents"],
        },
    )


# ==================== release_secure_hold ====================

async def release_secure_hold(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    engine = hold_engine(context)
    result = await engine.release(params["holdId"], params.get("reason") or "customer_cancelled")
    if not result.success:
        return ExecutionResult.failure(
            result.error_code.value,
            context.say("No encontré ese horario apartado.", "I couldn't find that hold."),
            error=result.error,
        )
    return ExecutionResult.ok(
        context.say("Listo, liberé ese horario.", "Done, I've released that time."),
        data={"released": result.released, "previousStatus": result.previous_status},
    )


# ==================== convert_hold_to_booking ====================

def _convert_confirmation(params: Mapping[str, Any], locale: str) -> str:
    name = params.get("customerName")
    if name:
        return localized(
            locale,
            f"¿Confirmo la reservación a nombre de {name}?",
            f"Shall I confirm the booking under the name {name}?",
        )
    return localized(locale, "¿Confirmo la reservación?", "Shall I confirm the booking?")


async def convert_hold_to_booking(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    engine = hold_engine(context)
    result = await engine.convert(
        params["holdId"],
        customer_name=params.get("customerName"),
        customer_email=params.get("customerEmail"),
        notes=params.get("notes"),
        deposit_payment_id=params.get("depositPaymentId"),
        source_call_id=context.call_id,
    )

    if not result.success:
        code = result.error_code
        if code == HoldError.HOLD_NOT_FOUND:
            es, en = "No encontré ese horario apartado.", "I couldn't find that hold."
        elif code == HoldError.HOLD_EXPIRED:
            es = "El tiempo para confirmar ese horario expiró. ¿Quiere que lo verifique de nuevo?"
            en = "The time to confirm that slot ran out. Would you like me to check it again?"
        elif code == HoldError.DEPOSIT_REQUIRED:
            amount = format_cents_for_voice(result.deposit_amount_cents or 0, locale=context.locale)
            es = f"Para confirmar necesito que se realice el depósito de {amount}."
            en = f"To confirm, the deposit of {amount} needs to be paid first."
        else:
            es = "Ese horario ya no está disponible para confirmar."
            en = "That slot can no longer be confirmed."
        return ExecutionResult.failure(
            code.value,
            context.say(es, en),
            error=result.error,
            data={"previousStatus": result.previous_status, "depositAmountCents": result.deposit_amount_cents},
        )

    booking = result.booking
    when = spoken_when(context, parse_iso(booking["booking_datetime"]))
    code = format_confirmation_code_for_voice(booking["confirmation_code"], context.locale)
    if booking["booking_type"] == "reservation":
        noun_es, noun_en = "reservación", "reservation"
        if booking["party_size"]:
            party_es = format_party_size_for_voice(booking["party_size"], "es")
            party_en = format_party_size_for_voice(booking["party_size"], "en")
            noun_es, noun_en = f"{noun_es} para {party_es}", f"{noun_en} for {party_en}"
    else:
        noun_es, noun_en = "cita", "appointment"
    return ExecutionResult.ok(
        context.say(
            f"¡Listo! Su {noun_es} quedó confirmada para {when}. Su código de confirmación es {code}.",
            f"All set! Your {noun_en} is confirmed for {when}. Your confirmation code is {code}.",
        ),
        data={"booking": booking, "confirmationCode": booking["confirmation_code"]},
    )


# ==================== verify_customer_trust ====================

async def verify_customer_trust(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    engine = hold_engine(context)
    trust: TrustEvaluator = engine.trust
    phone = params.get("customerPhone") or context.caller_phone
    decision = await trust.evaluate(vertical_for(context), phone, branch_id=context.branch_id)

    if decision.is_blocked:
        message = context.say(
            "Este número no puede hacer reservaciones por teléfono.",
            "This number can't make bookings by phone.",
        )
    elif decision.action == ACTION_REQUIRE_DEPOSIT:
        amount = format_cents_for_voice(decision.deposit_amount_cents or 0, locale=context.locale)
        message = context.say(
            f"Para este cliente se requiere un depósito de {amount}.",
            f"A deposit of {amount} is required for this customer.",
        )
    elif decision.action == ACTION_REQUIRE_CONFIRMATION:
        message = context.say(
            "Este cliente necesita confirmar su reservación.",
            "This customer needs to confirm the booking.",
        )
    else:
        message = context.say("El cliente puede reservar normalmente.", "The customer can book normally.")

    return ExecutionResult.ok(message, data={"trust": decision.to_dict()})


# ==================== cancel_booking ====================

async def cancel_booking(params: Dict[str, Any], context: ExecutionContext) -> ExecutionResult:
    engine = hold_engine(context)
    phone = params.get("customerPhone") or context.caller_phone
    result = await engine.cancel_booking(params["confirmationCode"], phone, params.get("reason"))

    if not result.success:
        if result.error_code == HoldError.BOOKING_NOT_FOUND:
            es = "No encontré una reservación con ese código y teléfono. ¿Podría repetirme el código?"
            en = "I couldn't find a booking with that code and phone number. Could you repeat the code?"
        else:
            es, en = "Esa reservación ya estaba cancelada.", "That booking was already cancelled."
        return ExecutionResult.failure(
            result.error_code.value, context.say(es, en), error=result.error, data={"booking": result.booking}
        )

    booking = result.booking
    when = spoken_when(context, parse_iso(booking["booking_datetime"]))
    return ExecutionResult.ok(
        context.say(
            f"Listo, cancelé su reservación de {when}.",
            f"Done, your booking for {when} has been cancelled.",
        ),
        data={"booking": booking},
    )


# ==================== definitions ====================

def secure_booking_tools() -> List[ToolDefinition]:
    capabilities = frozenset({CAPABILITY})
    return [
        ToolDefinition(
            name="check_secure_availability",
            description="Check whether a time is free, counting active holds and bookings.",
            category="secure_booking",
            parameters={
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "Date to check (YYYY-MM-DD)"},
                    "time": {"type": "string", "description": "Time to check (HH:MM)"},
                    "durationMinutes": {"type": "integer", "minimum": 5, "maximum": 480, "default": 30},
                    "partySize": {"type": "integer", "minimum": 1, "maximum": 50},
                    "staffId": {"type": "string"},
                    "includeAlternatives": {"type": "boolean", "default": True},
                },
                "required": ["date"],
            },
            handler=check_secure_availability,
            enabled_for=SECURE_BOOKING_TYPES,
            required_capabilities=capabilities,
            timeout_seconds=10.0,
        ),
        ToolDefinition(
            name="create_secure_hold",
            description="Temporarily hold a slot for the caller while they confirm.",
            category="secure_booking",
            parameters={
                "type": "object",
                "properties": {
                    "date": {"type": "string", "description": "YYYY-MM-DD"},
                    "time": {"type": "string", "description": "HH:MM"},
                    "customerPhone": {"type": "string", "minLength": 7},
                    "customerName": {"type": "string"},
                    "durationMinutes": {"type": "integer", "minimum": 5, "maximum": 480, "default": 30},
                    "partySize": {"type": "integer", "minimum": 1, "maximum": 50},
                    "serviceId": {"type": "string"},
                    "staffId": {"type": "string"},
                    "holdType": {"type": "string", "enum": ["appointment", "reservation", "order"]},
                    "idempotencyKey": {"type": "string", "maxLength": 128},
                },
                "required": ["date", "time", "customerPhone"],
            },
            handler=create_secure_hold,
            enabled_for=SECURE_BOOKING_TYPES,
            required_capabilities=capabilities,
            requires_confirmation=True,
            confirmation_template={
                "es": "¿Desea que aparte el horario del {date} a las {time}?",
                "en": "Would you like me to hold {date} at {time}?",
            },
        ),
        ToolDefinition(
            name="release_secure_hold",
            description="Release a hold the caller no longer wants.",
            category="secure_booking",
            parameters={
                "type": "object",
                "properties": {
                    "holdId": {"type": "string"},
                    "reason": {"type": "string"},
                },
                "required": ["holdId"],
            },
            handler=release_secure_hold,
            enabled_for=SECURE_BOOKING_TYPES,
            required_capabilities=capabilities,
        ),
        ToolDefinition(
            name="convert_hold_to_booking",
            description="Turn an active hold into a confirmed booking.",
            category="secure_booking",
            parameters={
                "type": "object",
                "properties": {
                    "holdId": {"type": "string"},
                    "customerName": {"type": "string"},
                    "customerEmail": {"type": "string"},
                    "notes": {"type": "string", "maxLength": 1000},
                    "depositPaymentId": {"type": "string"},
                },
                "required": ["holdId"],
            },
            handler=convert_hold_to_booking,
            enabled_for=SECURE_BOOKING_TYPES,
            required_capabilities=capabilities,
            requires_confirmation=True,
            confirmation_message=_convert_confirmation,
        ),
        ToolDefinition(
            name="verify_customer_trust",
            description="Look up how much friction a caller's booking will get.",
            category="secure_booking",
            parameters={
                "type": "object",
                "properties": {"customerPhone": {"type": "string"}},
                "required": ["customerPhone"],
            },
            handler=verify_customer_trust,
            enabled_for=SECURE_BOOKING_TYPES,
            required_capabilities=capabilities,
        ),
        ToolDefinition(
            name="cancel_booking",
            description="Cancel a confirmed booking by confirmation code.",
            category="secure_booking",
            parameters={
                "type": "object",
                "properties": {
                    "confirmationCode": {"type": "string", "minLength": 4},
                    "customerPhone": {"type": "string"},
                    "reason": {"type": "string"},
                },
                "required": ["confirmationCode", "customerPhone"],
            },
            handler=cancel_booking,
            enabled_for=SECURE_BOOKING_TYPES,
            required_capabilities=capabilities,
            requires_confirmation=True,
            confirmation_template={
                "es": "¿Confirma que desea cancelar la reservación {confirmationCode}?",
                "en": "Do you confirm you want to cancel booking {confirmationCode}?",
            },
        ),
    ]
