import csv
from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from io import StringIO

from schemas import CSVRow


def parse_date(value: str) -> date:
    value = value.strip()
    try:
        return datetime.strptime(value, "%Y-%m-%d").date()
    except ValueError:
        return datetime.strptime(value, "%d.%m.%Y").date()


def parse_amount(value: str, *, allow_negative: bool = False) -> int:
    clean = value.strip().replace("€", "").replace("$", "").replace(" ", "")
    clean = clean.replace(",", ".")
    if clean.count(".") > 1:
        parts = clean.split(".")
        clean = "".join(parts[:-1]) + "." + parts[-1]
    try:
        amount = Decimal(clean)
    except InvalidOperation as exc:
        raise ValueError("Invalid amount") from exc
    cents = int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    if cents < 0 and not allow_negative:
        raise ValueError("Amount must be positive")
    return cents


def _optional(raw: dict, key: str):
    value = (raw.get(key) or "").strip()
    return value or None


def parse_csv(content: str) -> tuple[list[CSVRow], list[str]]:
    """Parse an import file; outflows are positive, inflows negative."""
    reader = csv.DictReader(StringIO(content))
    rows: list[CSVRow] = []
    errors: list[str] = []
    missing = [c for c in ("Date", "Amount", "Category") if c not in (reader.fieldnames or [])]
    if missing:
        return rows, [f"Missing columns: {', '.join(missing)}"]
    for idx, raw in enumerate(reader, start=1):
        try:
            amount_value = parse_amount(raw.get("Amount") or "0", allow_negative=True)
            if amount_value == 0:
                raise ValueError("Amount must not be zero")
            rows.append(
                CSVRow(
                    date=parse_date(raw.get("Date") or ""),
                    amount_cents=amount_value,
                    merchant=_optional(raw, "Merchant"),
                    category=(raw.get("Category") or "").strip(),
                    account=_optional(raw, "Account"),
                    note=_optional(raw, "Note"),
                )
            )
        except ValueError as exc:
            errors.append(f"Row {idx}: {exc}")
    return rows, errors
