# services/schedule.py
from __future__ import annotations

import calendar
from datetime import date, datetime
from typing import Dict, List, Union

DateLike = Union[date, datetime, str]


# ---- Helpers -----------------------------------------------------------------

def round2(value) -> float:
    return round(float(value or 0), 2)


def parse_date(value: DateLike) -> date:
    """Aceita date, datetime ou string ISO ('2024-01-31' ou '2024-01-31T12:00:00')."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    if not value:
        raise ValueError("Data vazia")
    return date.fromisoformat(str(value).strip()[:10])


def add_months(value: DateLike, months: int) -> date:
    """Soma meses mantendo o dia; se o mês destino é menor, cai no último dia (31/01 + 1 = 28/02)."""
    d = parse_date(value)
    month_index = d.month - 1 + months
    year = d.year + month_index // 12
    month = month_index % 12 + 1
    day = min(d.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def month_diff(old: DateLike, new: DateLike) -> int:
    """Diferença em meses de calendário entre duas datas (0 se no mesmo mês)."""
    a, b = parse_date(old), parse_date(new)
    return (b.year - a.year) * 12 + (b.month - a.month)


# ---- Geração do cronograma -------------------------------------------------------

def generate_installments(gross, count, start_date: DateLike, flat_fee=0) -> List[Dict]:
    """
    Gera as parcelas de um contrato.

    Cada parcela recebe round2(gross / count), vencimento mensal a partir de
    start_date e a mesma taxa fixa. A diferença de arredondamento vai inteira
    para a última parcela, garantindo que a soma bata com o valor bruto.

    Returns:
        Lista de dicts {value, due_date (ISO), transaction_fee, status}.
        Vazia se gross ou count forem zero/inválidos.
    """
    gross = round2(gross)
    try:
        count = int(count or 0)
    except (TypeError, ValueError):
        count = 0

    if gross <= 0 or count < 1:
        return []

    fee = round2(flat_fee)
    installment_value = round2(gross / count)

    installments = [
        {
            "value": installment_value,
            "due_date": add_months(start_date, index).isoformat(),
            "transaction_fee": fee,
            "status": "pending",
        }
        for index in range(count)
    ]

    diff = round2(gross - sum(i["value"] for i in installments))
    if diff != 0:
        installments[-1]["value"] = round2(installments[-1]["value"] + diff)

    return installments


def schedule_total(installments: List[Dict]) -> float:
    return round2(sum(float(i.get("value") or 0) for i in installments))
