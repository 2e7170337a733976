from __future__ import annotations

import math
import re
from datetime import datetime
from typing import Any

_DATE_FORMATS = ("%d/%m/%Y %H:%M:%S", "%d/%m/%Y %H:%M", "%d/%m/%Y")


def digits_only(value: Any) -> str:
    return re.sub(r"\D", "", str(value or ""))


def to_float(value: Any) -> float:
    """Parse backend money/number values; anything unparseable is 0."""
    if value is None or isinstance(value, bool):
        return 0.0
    if isinstance(value, (int, float)):
        number = float(value)
        return 0.0 if math.isnan(number) or math.isinf(number) else number
    text = str(value).replace("R$", "").replace(" ", "").strip()
    if not text:
        return 0.0
    if "," in text:
        # pt-BR notation: "1.234,50"
        text = text.replace(".", "").replace(",", ".")
    try:
        number = float(text)
    except ValueError:
        return 0.0
    return 0.0 if math.isnan(number) or math.isinf(number) else number


def to_int(value: Any) -> int:
    return int(to_float(value))


def parse_date(value: Any) -> datetime | None:
    text = str(value or "").strip()
    if not text:
        return None
    try:
        parsed = datetime.fromisoformat(text.replace("Z", "+00:00"))
        return parsed.replace(tzinfo=None)
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def bytes_to_gb(value: Any) -> str:
    number = to_float(value)
    if not number:
        return "0,00 GB"
    gb = number / (1024 * 1024 * 1024)
    return f"{gb:.2f}".replace(".", ",") + " GB"


def format_currency(value: Any) -> str:
    number = to_float(value)
    # Swap separators to pt-BR: 1,234.50 -> 1.234,50
    text = f"{abs(number):,.2f}".replace(",", "_").replace(".", ",").replace("_", ".")
    return f"-R$ {text}" if number < 0 else f"R$ {text}"


def format_date(value: Any) -> str:
    text = str(value or "").strip()
    if not text:
        return "--/--/----"
    if "T" in text:
        text = text.split("T")[0]
    if " " in text:
        text = text.split(" ")[0]
    if "/" in text:
        return text
    parts = text.split("-")
    if len(parts) == 3:
        return f"{parts[2]}/{parts[1]}/{parts[0]}"
    parsed = parse_date(text)
    return parsed.strftime("%d/%m/%Y") if parsed else text


def format_datetime(value: Any) -> str:
    parsed = value if isinstance(value, datetime) else parse_date(value)
    if parsed is None:
        return str(value or "") or "--/--/---- --:--"
    return parsed.strftime("%d/%m/%Y %H:%M:%S")


def format_duration(seconds: Any) -> str:
    total = to_int(seconds)
    if total <= 0:
        return "0m"
    hours, remainder = divmod(total, 3600)
    minutes = remainder // 60
    if hours > 0:
        return f"{hours}h {minutes}m"
    return f"{minutes}m"
