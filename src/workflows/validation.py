from __future__ import annotations

import re
from decimal import ROUND_DOWN, Decimal, InvalidOperation, localcontext
from typing import Tuple

from .errors import ValidationError


WEI_PER_IP = 10**18
ZERO_ADDRESS = "0x" + "0" * 40

_ADDRESS_RE = re.compile(r"^0x[0-9a-fA-F]{40}$")
_DECIMAL_RE = re.compile(r"^(\d+(\.\d*)?|\.\d+)$")
_INT_RE = re.compile(r"^\d+$")
# CIDv0 (base58btc "Qm...") or CIDv1 in base32 ("b...")
_CID_RE = re.compile(r"^(Qm[1-9A-HJ-NP-Za-km-z]{44,}|b[a-z2-7]{50,})$")


def parse_asset_id(text: str) -> int:
    s = text.strip().lstrip("#")
    if not _INT_RE.match(s) or int(s) < 1:
        raise ValidationError(
            "❌ Please send a valid Asset ID (positive number)\n\n💡 Use /myassets or send /cancel"
        )
    return int(s)


def parse_price(text: str) -> Tuple[str, int]:
    """
    Parse a non-negative decimal IP amount.

    Returns (display, wei) where wei = amount * 10**18 truncated toward zero.
    """
    s = text.strip()
    if len(s) > 40 or not _DECIMAL_RE.match(s):
        raise ValidationError("❌ Please enter a valid price (0 or positive number)\n\n💡 Example: 0.1")
    with localcontext() as ctx:
        ctx.prec = 100
        try:
            amount = Decimal(s)
        except InvalidOperation:
            raise ValidationError("❌ Please enter a valid price (0 or positive number)") from None
        wei = int((amount * WEI_PER_IP).to_integral_value(rounding=ROUND_DOWN))
        display = format(amount.normalize(), "f")
    return display, wei


def parse_yes_no(text: str) -> bool:
    answer = text.strip().lower()
    if answer in ("yes", "y"):
        return True
    if answer in ("no", "n"):
        return False
    raise ValidationError("❌ Please type yes or no")


def parse_royalty(text: str) -> int:
    s = text.strip().rstrip("%").strip()
    if not _INT_RE.match(s) or not 0 <= int(s) <= 100:
        raise ValidationError("❌ Please enter a whole number between 0 and 100")
    return int(s)


def parse_address(text: str) -> str:
    address = text.strip()
    if not _ADDRESS_RE.match(address):
        raise ValidationError(
            "❌ Invalid Wallet Address\n\n"
            "Address must:\n"
            "• Start with 0x\n"
            "• Be 42 characters long\n"
            "• Contain only hex characters\n\n"
            "Try again or send /cancel"
        )
    return address


def same_address(a: str, b: str) -> bool:
    return a.lower() == b.lower()


def parse_content_hash(text: str) -> str:
    s = text.strip()
    if not _CID_RE.match(s):
        raise ValidationError("❌ Invalid IPFS hash format. Should start with 'Qm'.\n\nTry again or send /cancel")
    return s


def format_ip(wei: int, places: int = 4) -> str:
    amount = (Decimal(wei) / WEI_PER_IP).quantize(Decimal(1).scaleb(-places), rounding=ROUND_DOWN)
    return f"{amount:f}"
