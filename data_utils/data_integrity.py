# data_utils/data_integrity.py
"""
VALIDAÇÃO DE INTEGRIDADE DE CONTRATOS
total_value e o valor das comissões são caches de fórmulas sobre as
parcelas. Este validador recalcula as fórmulas e aponta (ou corrige) desvios.
"""

from typing import Dict, List
import logging
from datetime import datetime

from data_utils.safe_pagination import safe_paginated_query
from services.commissions import compute_commission
from services.completion import all_paid

logger = logging.getLogger(__name__)


class DataIntegrityError(Exception):
    """Erro de integridade de dados"""
    pass


class ContractIntegrityValidator:
    """Validador dos campos derivados de contratos e comissões"""

    def __init__(self, supabase, tolerance: float = 0.01):
        self.supabase = supabase
        self.tolerance = tolerance

    def validate_contract(self, contract_id: str, repair: bool = False) -> Dict[str, any]:
        """
        Valida um contrato.

        Args:
            contract_id: ID do contrato
            repair: regrava os valores derivados que estiverem divergentes

        Returns:
            Dict com resultado da validação
        """
        result = self.supabase.table("contracts").select("id, total_value, status").eq("id", contract_id).execute()
        if not result.data:
            raise DataIntegrityError(f"Contrato {contract_id} não encontrado")
        contract = result.data[0]

        installments = safe_paginated_query(
            self.supabase, "installments", "id, value, transaction_fee, status",
            filters={"contract_id": contract_id},
        )
        commissions = safe_paginated_query(
            self.supabase, "commissions", "id, installment_id, percentage, value",
            filters={"contract_id": contract_id},
        )
        return self._check(contract, installments, commissions, repair)

    def validate_all(self, repair: bool = False) -> List[Dict[str, any]]:
        """Valida todos os contratos ativos e concluídos."""
        contracts = safe_paginated_query(
            self.supabase, "contracts", "id, total_value, status",
            filters={"status": {"operator": "in", "value": ["active", "completed"]}},
        )
        if not contracts:
            return []

        ids = [c["id"] for c in contracts]
        installments = safe_paginated_query(
            self.supabase, "installments", "id, contract_id, value, transaction_fee, status",
            filters={"contract_id": {"operator": "in", "value": ids}},
        )
        commissions = safe_paginated_query(
            self.supabase, "commissions", "id, contract_id, installment_id, percentage, value",
            filters={"contract_id": {"operator": "in", "value": ids}},
        )

        results = []
        for contract in contracts:
            try:
                results.append(self._check(
                    contract,
                    [i for i in installments if i.get("contract_id") == contract["id"]],
                    [c for c in commissions if c.get("contract_id") == contract["id"]],
                    repair,
                ))
            except Exception as e:
                logger.error("Erro validando contrato %s: %s", contract["id"], e)
                results.append({"contract_id": contract["id"], "overall_status": "ERROR", "error": str(e)})

        passed = sum(1 for r in results if r.get("overall_status") == "PASS")
        failed = sum(1 for r in results if r.get("overall_status") == "FAIL")
        errors = sum(1 for r in results if r.get("overall_status") == "ERROR")
        logger.info("Validação de contratos: %d ok | %d divergentes | %d erros", passed, failed, errors)

        return results

    def _check(self, contract: Dict, installments: List[Dict], commissions: List[Dict], repair: bool) -> Dict[str, any]:
        stored_total = float(contract.get("total_value") or 0)
        computed_total = round(sum(float(i.get("value") or 0) for i in installments), 2)
        total_diff = abs(stored_total - computed_total)
        total_match = total_diff < self.tolerance

        by_installment = {i["id"]: i for i in installments}
        drifted = []
        for comm in commissions:
            inst = by_installment.get(comm.get("installment_id"))
            if not inst:
                continue
            expected = compute_commission(inst.get("value"), inst.get("transaction_fee"), comm.get("percentage"))
            if abs(float(comm.get("value") or 0) - expected) >= self.tolerance:
                drifted.append({"id": comm["id"], "stored": float(comm.get("value") or 0), "expected": expected})

        should_complete = all_paid(installments) and contract.get("status") != "completed"

        result = {
            "contract_id": contract["id"],
            "validation_timestamp": datetime.now().isoformat(),
            "stored_total": stored_total,
            "computed_total": computed_total,
            "total_difference": round(total_diff, 2),
            "total_match": total_match,
            "drifted_commissions": drifted,
            "pending_completion": should_complete,
            "overall_status": "PASS" if total_match and not drifted and not should_complete else "FAIL",
            "repaired": False,
        }

        if result["overall_status"] == "FAIL":
            logger.warning("Contrato %s divergente: total %.2f x %.2f, %d comissões",
                           contract["id"], stored_total, computed_total, len(drifted))
            if repair:
                self._repair(contract["id"], computed_total, total_match, drifted, should_complete)
                result["repaired"] = True

        return result

    def _repair(self, contract_id: str, computed_total: float, total_match: bool, drifted: List[Dict], complete: bool):
        if not total_match:
            self.supabase.table("contracts").update({"total_value": computed_total}).eq("id", contract_id).execute()
        for item in drifted:
            self.supabase.table("commissions").update({"value": item["expected"]}).eq("id", item["id"]).execute()
        if complete:
            self.supabase.table("contracts").update({"status": "completed"}).eq("id", contract_id).execute()
        logger.info("Contrato %s corrigido", contract_id)


def summarize(results: List[Dict[str, any]]) -> Dict[str, int]:
    return {
        "total": len(results),
        "pass": sum(1 for r in results if r.get("overall_status") == "PASS"),
        "fail": sum(1 for r in results if r.get("overall_status") == "FAIL"),
        "error": sum(1 for r in results if r.get("overall_status") == "ERROR"),
    }
