"""Brazilian Portuguese number words for text-to-speech."""

from decimal import ROUND_HALF_UP, Decimal

UNITS = [
    "zero", "um", "dois", "três", "quatro", "cinco", "seis", "sete", "oito", "nove",
    "dez", "onze", "doze", "treze", "catorze", "quinze", "dezesseis", "dezessete", "dezoito", "dezenove",
]
TENS = ["", "", "vinte", "trinta", "quarenta", "cinquenta", "sessenta", "setenta", "oitenta", "noventa"]
HUNDREDS = [
    "", "cento", "duzentos", "trezentos", "quatrocentos",
    "quinhentos", "seiscentos", "setecentos", "oitocentos", "novecentos",
]

MILLION = ("milhão", "milhões")
BILLION = ("bilhão", "bilhões")

_ONE_PLACE = Decimal("0.1")
_CENTS = Decimal("0.01")


def _below_thousand(n: int) -> str:
    if n == 100:
        return "cem"
    hundreds, rest = divmod(n, 100)
    parts = []
    if hundreds:
        parts.append(HUNDREDS[hundreds])
    if rest:
        if rest < 20:
            parts.append(UNITS[rest])
        else:
            tens, units = divmod(rest, 10)
            parts.append(TENS[tens])
            if units:
                parts.append(UNITS[units])
    return " e ".join(parts)


def number_to_words(n: int) -> str:
    """Spell a non-negative integer below one trillion."""
    if n < 0:
        return "menos " + number_to_words(-n)
    if n == 0:
        return UNITS[0]

    billions, n = divmod(n, 10**9)
    millions, n = divmod(n, 10**6)
    thousands, rest = divmod(n, 1000)

    groups: list[tuple[int, str]] = []
    if billions:
        groups.append((billions, f"{_below_thousand(billions)} {BILLION[0] if billions == 1 else BILLION[1]}"))
    if millions:
        groups.append((millions, f"{_below_thousand(millions)} {MILLION[0] if millions == 1 else MILLION[1]}"))
    if thousands:
        groups.append((thousands, "mil" if thousands == 1 else f"{_below_thousand(thousands)} mil"))
    if rest:
        groups.append((rest, _below_thousand(rest)))

    words = groups[0][1]
    for index, (value, text) in enumerate(groups[1:], start=1):
        is_last = index == len(groups) - 1
        joiner = " e " if is_last and (value < 100 or value % 100 == 0) else " "
        words += joiner + text
    return words


def digits_to_words(digits: str) -> str:
    """Fractional digits, keeping leading zeros audible ("05" -> "zero cinco")."""
    stripped = digits.lstrip("0")
    zeros = ["zero"] * (len(digits) - len(stripped))
    if stripped:
        zeros.append(number_to_words(int(stripped)))
    return " ".join(zeros) if zeros else "zero"


def parse_br_number(integer_part: str, fraction: str | None = None) -> Decimal:
    """'1.500.000' + '00' -> Decimal('1500000.00')."""
    text = integer_part.replace(".", "")
    if fraction:
        text = f"{text}.{fraction}"
    return Decimal(text)


def magnitude_phrase(value: Decimal, *, currency: bool = False) -> str:
    """Round to one decimal at the million or billion scale and say it."""
    names = BILLION if value >= 10**9 else MILLION
    quotient = (value / (10**9 if names is BILLION else 10**6)).quantize(_ONE_PLACE, rounding=ROUND_HALF_UP)
    if names is MILLION and quotient >= 1000:
        names = BILLION
        quotient = (value / 10**9).quantize(_ONE_PLACE, rounding=ROUND_HALF_UP)
    whole = int(quotient)
    tenth = int((quotient - whole) * 10)
    suffix = " de reais" if currency else ""

    if tenth == 0:
        return f"{number_to_words(whole)} {names[0] if whole == 1 else names[1]}{suffix}"
    if tenth == 5:
        return f"{number_to_words(whole)} {names[0] if whole == 1 else names[1]} e meio{suffix}"
    return f"{number_to_words(whole)} vírgula {number_to_words(tenth)} {names[1]}{suffix}"


def thousands_phrase(value: Decimal) -> str:
    quotient = (value / 1000).quantize(_ONE_PLACE, rounding=ROUND_HALF_UP)
    if quotient >= 1000:
        return magnitude_phrase(value, currency=True)
    whole = int(quotient)
    tenth = int((quotient - whole) * 10)
    head = "mil" if whole == 1 else f"{number_to_words(whole)} mil"

    if tenth == 0:
        return f"{head} reais"
    if tenth == 5:
        return f"{head} e quinhentos reais"
    return f"{number_to_words(whole)} vírgula {number_to_words(tenth)} mil reais"


def small_amount_phrase(value: Decimal) -> str:
    value = value.quantize(_CENTS, rounding=ROUND_HALF_UP)
    reais = int(value)
    centavos = int((value - reais) * 100)

    if reais == 0 and centavos:
        return f"{number_to_words(centavos)} {'centavo' if centavos == 1 else 'centavos'}"

    phrase = "um real" if reais == 1 else f"{number_to_words(reais)} reais"
    if centavos:
        phrase += f" e {number_to_words(centavos)} {'centavo' if centavos == 1 else 'centavos'}"
    return phrase


def currency_to_words(value: Decimal) -> str:
    if value >= 10**6:
        return magnitude_phrase(value, currency=True)
    if value >= 1000:
        return thousands_phrase(value)
    return small_amount_phrase(value)


def percent_to_words(sign: str, integer_part: str, fraction: str | None = None) -> str:
    words = number_to_words(int(integer_part.replace(".", "")))
    if fraction:
        words += f" vírgula {digits_to_words(fraction)}"
    prefix = "menos " if sign == "-" else ""
    return f"{prefix}{words} por cento"


def grouped_integer_to_words(value: Decimal) -> str:
    if value >= 10**6:
        return magnitude_phrase(value)
    whole = int(value)
    words = number_to_words(whole)
    fraction = value - whole
    if fraction:
        digits = format(fraction, "f").split(".")[1].rstrip("0")
        if digits:
            words += f" vírgula {digits_to_words(digits)}"
    return words


def magnitude_multiplier(word: str | None) -> int:
    """'mil' -> 10**3, 'mi'/'milhão'/'milhões' -> 10**6, 'bi'/'bilhão'/'bilhões' -> 10**9."""
    if not word:
        return 1
    word = word.lower()
    if word == "mil":
        return 10**3
    if word.startswith("mi"):
        return 10**6
    return 10**9
