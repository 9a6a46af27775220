# services/completion.py
import logging
from typing import Dict, Iterable

logger = logging.getLogger(__name__)


def all_paid(installments: Iterable[Dict]) -> bool:
    """True se todas as parcelas estão pagas (vale também para lista vazia)."""
    return all(i.get("status") == "paid" for i in installments)


def check_and_complete(supabase, contract_id: str) -> bool:
    """
    Conclui o contrato quando todas as parcelas estão pagas.

    Só vai de 'active' para 'completed': um contrato concluído não volta a
    ativo se uma parcela deixar de estar paga. Contrato sem parcelas conta
    como quitado.

    Returns:
        True se o contrato está (ou acabou de ficar) concluído.
    """
    result = (
        supabase.table("installments")
        .select("status")
        .eq("contract_id", contract_id)
        .execute()
    )
    installments = result.data or []

    if not all_paid(installments):
        return False

    supabase.table("contracts").update({"status": "completed"}).eq("id", contract_id).execute()
    logger.info("CONTRATOS: contrato %s concluído (%d parcelas pagas)", contract_id, len(installments))
    return True
