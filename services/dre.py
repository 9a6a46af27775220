# services/dre.py
from __future__ import annotations

from collections import defaultdict
from datetime import date
from typing import Dict, Iterable, List, Optional

from services.schedule import add_months, parse_date, round2

CATEGORIES = ("receitas", "despesas", "comissoes")


def _category(record: Dict) -> str:
    if record.get("direction") == "entrada":
        return "receitas"
    if record.get("type") == "comissao":
        return "comissoes"
    return "despesas"


def previous_month_key(month_key: str) -> str:
    return add_months(f"{month_key}-01", -1).strftime("%Y-%m")


def variation(current: float, previous: float) -> float:
    """Variação percentual mês a mês; 0 quando não há mês anterior."""
    if not previous:
        return 0.0
    return round2((current - previous) / previous * 100)


def build_dre(records: Iterable[Dict], year: Optional[str] = None) -> Dict:
    """
    Monta a matriz do DRE a partir das linhas de financial_overview.

    Categorias: receitas (direction == 'entrada'), comissoes (type == 'comissao')
    e despesas (o resto). Para cada categoria: total por mês e, por título, o
    valor/status/ids de cada mês. Resultado do mês = receitas - despesas - comissões.

    Args:
        records: linhas com title, type, direction, amount, date, status, id
        year: 'YYYY' a exibir; se não houver dados no ano, usa o mais recente

    Returns:
        Dict com year, available_years, months, categories, result_by_month,
        variations e year_totals.
    """
    matrix = {
        cat: {"total_by_month": defaultdict(float), "items": {}} for cat in CATEGORIES
    }
    months, years = set(), set()
    result_by_month = defaultdict(float)

    for record in records:
        if not record.get("date"):
            continue
        d = parse_date(record["date"])
        month_key = d.strftime("%Y-%m")
        months.add(month_key)
        years.add(str(d.year))

        cat = _category(record)
        amount = float(record.get("amount") or 0)
        title = record.get("title") or "Sem descrição"

        group = matrix[cat]
        group["total_by_month"][month_key] += amount
        cell = group["items"].setdefault(title, {}).setdefault(
            month_key, {"amount": 0.0, "statuses": [], "record_ids": []}
        )
        cell["amount"] = round2(cell["amount"] + amount)
        if record.get("status"):
            cell["statuses"].append(record["status"])
        if record.get("id"):
            cell["record_ids"].append(record["id"])

        result_by_month[month_key] += amount if cat == "receitas" else -amount

    available_years = sorted(years, reverse=True)
    selected = str(year or date.today().year)
    if available_years and selected not in available_years:
        selected = available_years[0]

    display_months = sorted(m for m in months if m.startswith(selected))

    categories = {}
    for cat, group in matrix.items():
        totals = {m: round2(v) for m, v in group["total_by_month"].items()}
        active_items = {
            title: cells for title, cells in group["items"].items()
            if any(abs(cells.get(m, {}).get("amount", 0)) > 0.001 for m in display_months)
        }
        categories[cat] = {
            "total_by_month": {m: totals.get(m, 0.0) for m in display_months},
            "variation_by_month": {
                m: variation(totals.get(m, 0.0), totals.get(previous_month_key(m), 0.0)) for m in display_months
            },
            "items": active_items,
            "year_total": round2(sum(totals.get(m, 0.0) for m in display_months)),
        }

    year_receitas = categories["receitas"]["year_total"]
    year_saidas = round2(categories["despesas"]["year_total"] + categories["comissoes"]["year_total"])

    return {
        "year": selected,
        "available_years": available_years,
        "months": display_months,
        "categories": categories,
        "result_by_month": {m: round2(result_by_month.get(m, 0.0)) for m in display_months},
        "year_totals": {
            "receitas": year_receitas,
            "saidas": year_saidas,
            "lucro": round2(year_receitas - year_saidas),
        },
    }


def status_summary(statuses: List[str]) -> str:
    """Resumo do status de uma célula: paid, pending ou mixed."""
    if not statuses:
        return ""
    if all(s == "paid" for s in statuses):
        return "paid"
    if any(s == "pending" for s in statuses):
        return "pending"
    return "mixed"
