"""
Spoken-language formatting for voice responses.

Every helper takes a ``locale`` ("es" or "en"); anything that is not
English is rendered in Spanish.
"""
from __future__ import annotations

import re
from datetime import date, datetime, time
from typing import Dict, Iterable, List, Optional, Sequence, Union

SPANISH_NUMBERS: Dict[int, str] = {
    0: "cero", 1: "uno", 2: "dos", 3: "tres", 4: "cuatro", 5: "cinco",
    6: "seis", 7: "siete", 8: "ocho", 9: "nueve", 10: "diez",
    11: "once", 12: "doce", 13: "trece", 14: "catorce", 15: "quince",
    16: "dieciséis", 17: "diecisiete", 18: "dieciocho", 19: "diecinueve",
    20: "veinte", 21: "veintiuno", 22: "veintidós", 23: "veintitrés",
    24: "veinticuatro", 25: "veinticinco", 26: "veintiséis",
    27: "veintisiete", 28: "veintiocho", 29: "veintinueve",
    30: "treinta", 40: "cuarenta", 50: "cincuenta", 60: "sesenta",
    70: "setenta", 80: "ochenta", 90: "noventa", 100: "cien",
}

ENGLISH_NUMBERS: Dict[int, str] = {
    0: "zero", 1: "one", 2: "two", 3: "three", 4: "four", 5: "five",
    6: "six", 7: "seven", 8: "eight", 9: "nine", 10: "ten",
    11: "eleven", 12: "twelve", 13: "thirteen", 14: "fourteen",
    15: "fifteen", 16: "sixteen", 17: "seventeen", 18: "eighteen",
    19: "nineteen", 20: "twenty", 30: "thirty", 40: "forty", 50: "fifty",
    60: "sixty", 70: "seventy", 80: "eighty", 90: "ninety",
    100: "one hundred",
}

# Monday first, matching date.weekday()
SPANISH_DAYS = ["lunes", "martes", "miércoles", "jueves", "viernes", "sábado", "domingo"]
ENGLISH_DAYS = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]

SPANISH_MONTHS = [
    "enero", "febrero", "marzo", "abril", "mayo", "junio",
    "julio", "agosto", "septiembre", "octubre", "noviembre", "diciembre",
]
ENGLISH_MONTHS = [
    "January", "February", "March", "April", "May", "June",
    "July", "August", "September", "October", "November", "December",
]

CURRENCY_WORDS = {
    "MXN": {"es": ("peso", "pesos"), "en": ("peso", "pesos")},
    "USD": {"es": ("dólar", "dólares"), "en": ("dollar", "dollars")},
    "EUR": {"es": ("euro", "euros"), "en": ("euro", "euros")},
}


def is_english(locale: Optional[str]) -> bool:
    return bool(locale) and locale.lower().startswith("en")


def localized(locale: Optional[str], es: str, en: str) -> str:
    """Pick the phrase for the caller's locale."""
    return en if is_english(locale) else es


def format_small_number(num: int, locale: str = "es") -> str:
    """Words for -99..100; larger numbers are returned as digits."""
    numbers = ENGLISH_NUMBERS if is_english(locale) else SPANISH_NUMBERS
    if num < 0:
        return localized(locale, "menos ", "negative ") + format_small_number(-num, locale)
    if num in numbers:
        return numbers[num]
    if num < 100:
        tens, ones = (num // 10) * 10, num % 10
        if is_english(locale):
            return f"{numbers[tens]}-{numbers[ones]}"
        return f"{numbers[tens]} y {numbers[ones]}"
    return str(num)


def _coerce_date(value: Union[str, date, datetime]) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value)[:10])
    except ValueError:
        return None


def _coerce_time(value: Union[str, time, datetime]) -> Optional[time]:
    if isinstance(value, datetime):
        return value.time()
    if isinstance(value, time):
        return value
    match = re.match(r"^\s*(\d{1,2}):(\d{2})", str(value))
    if not match:
        return None
    hours, minutes = int(match.group(1)), int(match.group(2))
    if hours > 23 or minutes > 59:
        return None
    return time(hours, minutes)


# ==================== DATES ====================

def format_date_for_voice(
    value: Union[str, date, datetime],
    locale: str = "es",
    today: Optional[date] = None,
) -> str:
    """2025-01-20 -> "lunes veinte de enero" / "Monday, January 20"."""
    d = _coerce_date(value)
    if d is None:
        return str(value)

    today = today or date.today()
    delta = (d - today).days
    if delta == 0:
        return localized(locale, "hoy", "today")
    if delta == 1:
        return localized(locale, "mañana", "tomorrow")

    if is_english(locale):
        return f"{ENGLISH_DAYS[d.weekday()]}, {ENGLISH_MONTHS[d.month - 1]} {d.day}"
    day_word = format_small_number(d.day, "es") if d.day <= 30 else str(d.day)
    return f"{SPANISH_DAYS[d.weekday()]} {day_word} de {SPANISH_MONTHS[d.month - 1]}"


def format_date_short(value: Union[str, date, datetime], locale: str = "es") -> str:
    d = _coerce_date(value)
    if d is None:
        return str(value)
    if is_english(locale):
        return f"{ENGLISH_MONTHS[d.month - 1]} {d.day}"
    return f"{d.day} de {SPANISH_MONTHS[d.month - 1]}"


# ==================== TIMES ====================

def _hour12(hours: int) -> int:
    if hours == 0:
        return 12
    return hours - 12 if hours > 12 else hours


def _spanish_hour(hour12: int) -> str:
    # "la una", not "la uno"
    return "una" if hour12 == 1 else format_small_number(hour12, "es")


def format_time_for_voice(value: Union[str, time, datetime], locale: str = "es") -> str:
    """19:30 -> "siete y media de la noche" / "half past 7 PM"."""
    t = _coerce_time(value)
    if t is None:
        return str(value)

    hours, minutes = t.hour, t.minute
    hour12 = _hour12(hours)
    next_hour = 1 if hour12 == 12 else hour12 + 1

    if is_english(locale):
        period = "AM" if hours < 12 else "PM"
        if minutes == 0:
            return f"{hour12} {period}"
        if minutes == 15:
            return f"quarter past {hour12} {period}"
        if minutes == 30:
            return f"half past {hour12} {period}"
        if minutes == 45:
            return f"quarter to {next_hour} {period}"
        return f"{hour12}:{minutes:02d} {period}"

    if hours < 12:
        period = "de la mañana"
    elif hours < 18:
        period = "de la tarde"
    else:
        period = "de la noche"

    hour_word = _spanish_hour(hour12)
    if minutes == 0:
        return f"{hour_word} {period}"
    if minutes == 15:
        return f"{hour_word} y cuarto {period}"
    if minutes == 30:
        return f"{hour_word} y media {period}"
    if minutes == 45:
        return f"cuarto para las {_spanish_hour(next_hour)} {period}"
    return f"{hour_word} con {format_small_number(minutes, 'es')} {period}"


def format_time_short(value: Union[str, time, datetime], locale: str = "es") -> str:
    """14:30 -> "2:30 pm"; on the hour -> "2 pm"."""
    t = _coerce_time(value)
    if t is None:
        return str(value)
    hour12 = _hour12(t.hour)
    if is_english(locale):
        period = "AM" if t.hour < 12 else "PM"
    else:
        period = "am" if t.hour < 12 else "pm"
    if t.minute == 0:
        return f"{hour12} {period}"
    return f"{hour12}:{t.minute:02d} {period}"


# ==================== MONEY ====================

def _currency_word(currency: str, amount: int, locale: str) -> str:
    words = CURRENCY_WORDS.get(currency.upper(), CURRENCY_WORDS["MXN"])
    singular, plural = words["en" if is_english(locale) else "es"]
    return singular if amount == 1 else plural


def format_price_for_voice(price: float, currency: str = "MXN", locale: str = "es") -> str:
    """150.5 -> "150 pesos con 50 centavos"."""
    units = int(price)
    cents = int(round((price - units) * 100))
    if cents == 100:
        units, cents = units + 1, 0
    word = _currency_word(currency, units, locale)
    if cents == 0:
        return f"{units} {word}"
    if is_english(locale):
        return f"{units} {word} and {cents} cents"
    return f"{units} {word} con {cents} centavos"


def format_cents_for_voice(amount_cents: int, currency: str = "MXN", locale: str = "es") -> str:
    return format_price_for_voice(amount_cents / 100.0, currency, locale)


# ==================== LISTS ====================

def _join(items: Sequence[str], conjunction: str) -> str:
    if not items:
        return ""
    if len(items) == 1:
        return items[0]
    return f"{', '.join(items[:-1])} {conjunction} {items[-1]}"


def format_list_for_voice(items: Sequence[str], locale: str = "es") -> str:
    """["a", "b", "c"] -> "a, b y c"."""
    return _join(list(items), localized(locale, "y", "and"))


def format_alternatives_for_voice(items: Sequence[str], locale: str = "es") -> str:
    """["a", "b", "c"] -> "a, b o c"."""
    return _join(list(items), localized(locale, "o", "or"))


def format_slots_for_voice(
    slots: Sequence[Union[str, time, datetime]],
    locale: str = "es",
    max_slots: int = 4,
) -> str:
    if not slots:
        return localized(locale, "No hay horarios disponibles", "No available times")

    spoken = format_alternatives_for_voice(
        [format_time_short(slot, locale) for slot in slots[:max_slots]], locale
    )
    remaining = len(slots) - max_slots
    if remaining > 0:
        spoken += localized(locale, f", y {remaining} opciones más", f", and {remaining} more options")
    return spoken


# ==================== DURATIONS ====================

def format_duration_for_voice(minutes: int, locale: str = "es") -> str:
    """90 -> "una hora y media"."""
    if minutes < 60:
        if is_english(locale):
            return "1 minute" if minutes == 1 else f"{minutes} minutes"
        return "un minuto" if minutes == 1 else f"{minutes} minutos"

    hours, rest = divmod(minutes, 60)
    if is_english(locale):
        if rest == 0:
            return "1 hour" if hours == 1 else f"{hours} hours"
        if rest == 30:
            return f"{hours} and a half hours"
        return f"{hours} hours and {rest} minutes"

    hours_word = "una hora" if hours == 1 else f"{hours} horas"
    if rest == 0:
        return hours_word
    if rest == 30:
        return f"{hours_word} y media"
    return f"{hours_word} y {rest} minutos"


# ==================== PHONES & CODES ====================

def format_phone_for_voice(phone: str, locale: str = "es") -> str:
    """Digit by digit; ten-digit numbers grouped 2-4-4."""
    digits = re.sub(r"\D", "", phone or "")
    if len(digits) == 10:
        groups = [digits[:2], digits[2:6], digits[6:]]
    else:
        groups = [digits[i:i + 4] for i in range(0, len(digits), 4)]
    return ", ".join(
        " ".join(format_small_number(int(d), locale) for d in group) for group in groups
    )


def format_confirmation_code_for_voice(code: str, locale: str = "es") -> str:
    """APT-K7M2QX -> "A, P, T, K, siete, M, dos, Q, X"; separators are skipped."""
    spoken: List[str] = []
    for char in code.upper():
        if char.isdigit():
            spoken.append(format_small_number(int(char), locale))
        elif char.isalpha():
            spoken.append(char)
    return ", ".join(spoken)


def format_party_size_for_voice(size: int, locale: str = "es") -> str:
    if is_english(locale):
        if size == 1:
            return "one person"
        if size == 2:
            return "two people"
        return f"{size} people"
    if size == 1:
        return "una persona"
    if size == 2:
        return "dos personas"
    return f"{size} personas"


# ==================== BUSINESS HOURS ====================

def format_business_hours_for_voice(
    hours: Iterable[dict],
    locale: str = "es",
    for_today: bool = False,
) -> str:
    """Entries are {"day", "open", "close", "closed"}; at most three days are read out."""
    entries = list(hours)
    if not entries:
        return localized(locale, "Horarios no disponibles", "Hours not available")

    if for_today:
        today = entries[0]
        if today.get("closed"):
            return localized(locale, "Hoy estamos cerrados", "We're closed today")
        open_at = format_time_short(today["open"], locale)
        close_at = format_time_short(today["close"], locale)
        return localized(
            locale,
            f"Hoy abrimos de {open_at} a {close_at}",
            f"Today we're open from {open_at} to {close_at}",
        )

    parts = []
    for entry in entries[:3]:
        if entry.get("closed"):
            parts.append(localized(locale, f"{entry['day']}: cerrado", f"{entry['day']}: closed"))
            continue
        open_at = format_time_short(entry["open"], locale)
        close_at = format_time_short(entry["close"], locale)
        parts.append(localized(
            locale,
            f"{entry['day']}: de {open_at} a {close_at}",
            f"{entry['day']}: {open_at} to {close_at}",
        ))
    return ". ".join(parts)


def day_name(d: date, locale: str = "es") -> str:
    return (ENGLISH_DAYS if is_english(locale) else SPANISH_DAYS)[d.weekday()]
