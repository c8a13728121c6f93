import re
from dataclasses import dataclass

_SEPARATORS = re.compile(r"[\s-]")
_CALLING_CODE = re.compile(r"^\+[0-9]{1,4}$")


@dataclass(frozen=True)
class PhoneRule:
    pattern: re.Pattern
    message: str


PHONE_RULES: dict[str, PhoneRule] = {
    "+977": PhoneRule(
        re.compile(r"^9[678][0-9]{8}$"),
        "Nepal mobile numbers must be 10 digits starting with 96, 97 or 98.",
    ),
    "+1": PhoneRule(
        re.compile(r"^[0-9]{10}$"),
        "US/Canada numbers must be 10 digits.",
    ),
    "+44": PhoneRule(
        re.compile(r"^[0-9]{7,10}$"),
        "UK numbers must be 7 to 10 digits.",
    ),
    "+91": PhoneRule(
        re.compile(r"^[6-9][0-9]{9}$"),
        "Indian mobile numbers must be 10 digits starting with 6, 7, 8 or 9.",
    ),
}

GENERIC_RULE = PhoneRule(
    re.compile(r"^[0-9]{6,15}$"),
    "Phone number must be 6 to 15 digits.",
)


def clean_number(raw: str | None) -> str:
    if not raw:
        return ""
    return _SEPARATORS.sub("", raw)


def normalize_calling_code(code: str | None) -> str:
    if not code:
        return ""
    code = clean_number(code)
    return code if code.startswith("+") else f"+{code}"


def is_valid_calling_code(code: str | None) -> bool:
    return bool(_CALLING_CODE.match(normalize_calling_code(code)))


def validate_phone(calling_code: str, number: str) -> str | None:
    """Return an error message, or None when the number fits the code's rule."""
    cleaned = clean_number(number)
    if not cleaned:
        return "Phone number is required."
    rule = PHONE_RULES.get(normalize_calling_code(calling_code), GENERIC_RULE)
    if not rule.pattern.match(cleaned):
        return rule.message
    return None


def format_phone(calling_code: str, number: str) -> str:
    """Join code and local number, e.g. ``+977`` + ``98-4123 4567`` -> ``+9779841234567``."""
    return f"{normalize_calling_code(calling_code)}{clean_number(number)}"
