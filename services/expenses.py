# services/expenses.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List

from services.schedule import add_months, parse_date, round2
from utils import to_bool

logger = logging.getLogger(__name__)

EXPENSE_CATEGORIES = ("fixo", "variavel", "extra", "imposto", "comissao")


class ExpenseValidationError(Exception):
    """Dados de despesa inválidos"""
    pass


class ExpenseNotFound(ExpenseValidationError):
    """Despesa inexistente"""
    pass


def validate_expense(data: Dict) -> Dict:
    """
    Valida e normaliza o formulário de despesa.

    Raises:
        ExpenseValidationError: descrição curta, valor <= 0, categoria ou data inválidas
    """
    description = (data.get("description") or "").strip()
    if len(description) < 2:
        raise ExpenseValidationError("Descrição obrigatória")

    try:
        amount = round2(data.get("amount"))
    except (TypeError, ValueError):
        amount = 0.0
    if amount <= 0:
        raise ExpenseValidationError("Valor obrigatório")

    category = data.get("category") or "variavel"
    if category not in EXPENSE_CATEGORIES:
        raise ExpenseValidationError(f"Categoria inválida: {category}")

    if not data.get("due_date"):
        raise ExpenseValidationError("Data de vencimento obrigatória")
    try:
        due_date = parse_date(data["due_date"]).isoformat()
    except ValueError:
        raise ExpenseValidationError("Data de vencimento inválida")

    is_paid = to_bool(data.get("is_paid")) or data.get("status") == "paid"
    is_recurring = to_bool(data.get("is_recurring"))

    return {
        "description": description,
        "amount": amount,
        "category": category,
        "due_date": due_date,
        "status": "paid" if is_paid else "pending",
        "paid_at": datetime.now().isoformat() if is_paid else None,
        "is_recurring": is_recurring,
        "recurrence_period": "monthly" if is_recurring else None,
    }


def expand_recurring(expense: Dict, months: int) -> List[Dict]:
    """
    Projeta as próximas ocorrências mensais de uma despesa recorrente
    (a própria despesa é a primeira). Despesa não recorrente volta sozinha.
    """
    if not expense.get("is_recurring") or months <= 1:
        return [expense]

    occurrences = [expense]
    for i in range(1, months):
        occurrences.append({
            **expense,
            "id": f"{expense.get('id')}:{i}",
            "due_date": add_months(expense["due_date"], i).isoformat(),
            "status": "pending",
            "paid_at": None,
            "projected": True,
        })
    return occurrences


class ExpenseService:
    def __init__(self, supabase):
        self.supabase = supabase

    def list_expenses(self, year: str = None) -> List[Dict]:
        query = self.supabase.table("expenses").select("*")
        if year:
            query = query.gte("due_date", f"{year}-01-01").lte("due_date", f"{year}-12-31")
        return query.order("due_date").execute().data or []

    def create_expense(self, data: Dict) -> Dict:
        row = validate_expense(data)
        created = self.supabase.table("expenses").insert(row).execute().data or []
        logger.info("DESPESAS: despesa criada (%s, R$ %.2f)", row["category"], row["amount"])
        return created[0] if created else row

    def update_expense(self, expense_id: str, data: Dict) -> Dict:
        row = validate_expense(data)
        row["updated_at"] = datetime.now().isoformat()
        updated = self.supabase.table("expenses").update(row).eq("id", expense_id).execute().data or []
        if not updated:
            raise ExpenseNotFound("Despesa não encontrada")
        return updated[0]

    def mark_paid(self, expense_id: str) -> Dict:
        updated = self.supabase.table("expenses").update({
            "status": "paid",
            "paid_at": datetime.now().isoformat(),
        }).eq("id", expense_id).execute().data or []
        if not updated:
            raise ExpenseNotFound("Despesa não encontrada")
        return updated[0]

    def delete_expense(self, expense_id: str):
        self.supabase.table("expenses").delete().eq("id", expense_id).execute()
