"""Card number and expiry validation helpers.

Nothing here talks to a processor: these checks run before any vendor call
so obviously bad input never costs a round trip.
"""

from datetime import date

from payment_gateway.models.exceptions import ValidationFailed
from payment_gateway.models.requests import DirectTokenizationRequest
from payment_gateway.models.tokenization import CardBrand


def normalize_card_number(card_number: str) -> str:
    """Strip the spaces and dashes people type into card fields."""
    return card_number.replace(" ", "").replace("-", "")


def luhn_valid(card_number: str) -> bool:
    """Check a card number with the Luhn algorithm (13-19 digits)."""
    digits = normalize_card_number(card_number)
    if not digits.isdigit() or not 13 <= len(digits) <= 19:
        return False

    total = 0
    for index, char in enumerate(reversed(digits)):
        digit = int(char)
        if index % 2 == 1:
            digit *= 2
            if digit > 9:
                digit -= 9
        total += digit
    return total % 10 == 0


def detect_card_brand(card_number: str) -> str:
    """Detect card brand from card number.

    Uses industry-standard card number prefixes to detect brand.

    Args:
        card_number: Full card number

    Returns:
        Card brand name (lowercase), "unknown" when no prefix matches
    """
    card_number = normalize_card_number(card_number)

    if not card_number.isdigit():
        return "unknown"

    # Visa: starts with 4
    if card_number.startswith("4"):
        return "visa"

    # Mastercard: starts with 51-55 or 2221-2720
    if card_number.startswith(("51", "52", "53", "54", "55")):
        return "mastercard"
    if len(card_number) >= 4 and 2221 <= int(card_number[:4]) <= 2720:
        return "mastercard"

    # American Express: starts with 34 or 37
    if card_number.startswith(("34", "37")):
        return "amex"

    # Discover: starts with 6011 or 65
    if card_number.startswith(("6011", "65")):
        return "discover"

    # Diners Club: 300-305, 36, 38
    if card_number.startswith(("300", "301", "302", "303", "304", "305", "36", "38")):
        return "diners"

    # JCB: 35, 2131, 1800
    if card_number.startswith(("35", "2131", "1800")):
        return "jcb"

    return "unknown"


# Vendor brand spellings seen in Stripe, Transbank and MercadoPago payloads
_BRAND_ALIASES = {
    "visa": CardBrand.VISA,
    "visa_debit": CardBrand.VISA,
    "debvisa": CardBrand.VISA,
    "mastercard": CardBrand.MASTERCARD,
    "master": CardBrand.MASTERCARD,
    "debmaster": CardBrand.MASTERCARD,
    "mc": CardBrand.MASTERCARD,
    "amex": CardBrand.AMEX,
    "americanexpress": CardBrand.AMEX,
    "american_express": CardBrand.AMEX,
}


def to_card_brand(value: str | None) -> CardBrand:
    """Collapse any vendor or detected brand name onto CardBrand."""
    if not value:
        return CardBrand.OTHER
    key = value.strip().lower().replace(" ", "")
    return _BRAND_ALIASES.get(key, CardBrand.OTHER)


def mask_card_number(card_number: str) -> str:
    return f"****{normalize_card_number(card_number)[-4:]}"


def expand_year(year: int) -> int:
    """Turn a 2-digit year into a 4-digit one (30 -> 2030)."""
    return 2000 + year if year < 100 else year


def expiration_valid(month: int, year: int, today: date | None = None) -> bool:
    """True if the card has not expired by the end of its expiry month."""
    if not 1 <= month <= 12:
        return False
    today = today or date.today()
    full_year = expand_year(year)
    if full_year < today.year:
        return False
    if full_year == today.year and month < today.month:
        return False
    return True


def validate_card_input(request: DirectTokenizationRequest, today: date | None = None) -> None:
    """
    Validate raw card data before it is sent to a processor.

    Raises:
        ValidationFailed: with every problem found listed in details["errors"]
    """
    errors: list[str] = []

    if not luhn_valid(request.card_number):
        errors.append("card_number is not a valid card number")

    if not 1 <= request.card_exp_month <= 12:
        errors.append("card_exp_month must be between 1 and 12")
    elif not expiration_valid(request.card_exp_month, request.card_exp_year, today):
        errors.append("card is expired")

    cvv = request.card_cvv
    if not cvv.isdigit() or len(cvv) not in (3, 4):
        errors.append("card_cvv must be 3 or 4 digits")

    if not request.card_holder_name.strip():
        errors.append("card_holder_name cannot be empty")

    if errors:
        raise ValidationFailed("Invalid card data", details={"errors": errors})
