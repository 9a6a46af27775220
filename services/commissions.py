# services/commissions.py
from __future__ import annotations

from typing import Dict, Iterable, List

from services.schedule import round2


def net_value(value, fee) -> float:
    """Valor líquido da parcela: bruto menos taxa, nunca negativo."""
    return max(0.0, round2(value) - round2(fee))


def compute_commission(value, fee, percentage) -> float:
    """Comissão sobre o líquido da parcela."""
    return round2(net_value(value, fee) * float(percentage or 0) / 100)


def valid_beneficiaries(beneficiaries: Iterable[Dict]) -> List[Dict]:
    """Remove beneficiários sem nome ou com percentual <= 0."""
    result = []
    for b in beneficiaries or []:
        name = (b.get("employee_name") or "").strip()
        try:
            pct = float(b.get("percentage") or 0)
        except (TypeError, ValueError):
            pct = 0.0
        if name and pct > 0:
            result.append({"employee_name": name, "percentage": pct})
    return result


def build_commission_rows(contract_id: str, beneficiaries: Iterable[Dict], installments: Iterable[Dict]) -> List[Dict]:
    """
    Uma comissão por (beneficiário x parcela).
    As parcelas precisam ter id (já persistidas).
    """
    installments = list(installments)
    rows = []
    for b in valid_beneficiaries(beneficiaries):
        for inst in installments:
            rows.append({
                "contract_id": contract_id,
                "installment_id": inst["id"],
                "employee_name": b["employee_name"],
                "percentage": b["percentage"],
                "value": compute_commission(inst.get("value"), inst.get("transaction_fee"), b["percentage"]),
                "status": "pending",
            })
    return rows


def distinct_beneficiaries(commissions: Iterable[Dict]) -> List[Dict]:
    """
    Beneficiários distintos de um contrato, por nome.
    Vale o primeiro percentual visto (ordem de created_at).
    """
    ordered = sorted(commissions or [], key=lambda c: c.get("created_at") or "")
    seen = {}
    for c in ordered:
        name = c.get("employee_name")
        if name and name not in seen:
            seen[name] = {"employee_name": name, "percentage": float(c.get("percentage") or 0)}
    return list(seen.values())
