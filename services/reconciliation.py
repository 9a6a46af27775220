# services/reconciliation.py
"""
Cascata de edição de parcela.

Editar valor, taxa, vencimento ou status de uma parcela propaga para:
  1. as parcelas seguintes (deslocamento de vencimento em meses);
  2. as comissões ligadas à parcela (recalculadas sobre o novo líquido);
  3. o total do contrato (soma das parcelas);
  4. a conclusão do contrato (todas pagas).

O estado local é atualizado de forma otimista e volta ao snapshot se algo
falhar. As escritas remotas ficam num log de compensação e são desfeitas em
ordem reversa quando um passo posterior falha.
"""
from __future__ import annotations

import logging
from datetime import date
from typing import Dict, List, Optional

from data_utils.compensation import CompensationError, CompensationLog
from data_utils.optimistic import run_optimistic
from services.commissions import compute_commission
from services.completion import check_and_complete
from services.schedule import add_months, month_diff, parse_date, round2

logger = logging.getLogger(__name__)

INSTALLMENT_STATUSES = ("pending", "paid", "overdue", "cancelled")


class ContractError(Exception):
    """Erro de regra de negócio em contratos"""
    pass


class ContractNotFound(ContractError):
    """Contrato, parcela ou comissão inexistente"""
    pass


class ReconciliationError(ContractError):
    """Falha na cascata; compensated indica se o banco voltou ao estado anterior"""

    def __init__(self, message: str, compensated: bool = True):
        super().__init__(message)
        self.compensated = compensated


def installment_sort_key(installment: Dict):
    return (
        str(installment.get("due_date") or ""),
        str(installment.get("created_at") or ""),
        str(installment.get("id") or ""),
    )


class ReconciliationEngine:
    """Executa a cascata de edição de parcelas sobre um cliente Supabase."""

    def __init__(self, supabase):
        self.supabase = supabase

    # ---- leitura ----
    def load_state(self, contract_id: str) -> Dict:
        """Estado local do contrato: contrato, parcelas (por vencimento) e comissões."""
        contract = (
            self.supabase.table("contracts")
            .select("*")
            .eq("id", contract_id)
            .maybe_single()
            .execute()
        )
        if not contract or not contract.data:
            raise ContractNotFound(f"Contrato {contract_id} não encontrado")

        installments = (
            self.supabase.table("installments")
            .select("*")
            .eq("contract_id", contract_id)
            .order("due_date")
            .execute()
        ).data or []

        commissions = (
            self.supabase.table("commissions")
            .select("*")
            .eq("contract_id", contract_id)
            .order("created_at")
            .execute()
        ).data or []

        return {
            "contract": contract.data,
            "installments": sorted(installments, key=installment_sort_key),
            "commissions": commissions,
        }

    # ---- cascata ----
    def edit_installment(self, contract_id: str, installment_id: str, changes: Dict, state: Optional[Dict] = None) -> Dict:
        """
        Aplica a edição de uma parcela e toda a cascata.

        Args:
            contract_id: contrato dono da parcela
            installment_id: parcela editada
            changes: qualquer subconjunto de value, transaction_fee, due_date, status
            state: estado local (load_state); carregado do banco se omitido

        Returns:
            Dict com o resumo da cascata (shifted, commissions_updated,
            total_value, completed, state).

        Raises:
            ContractError: parcela inexistente ou status inválido
            ReconciliationError: falha de escrita (estado local já restaurado)
        """
        if state is None:
            state = self.load_state(contract_id)

        ordered = sorted(state["installments"], key=installment_sort_key)
        position = next((i for i, inst in enumerate(ordered) if inst.get("id") == installment_id), None)
        if position is None:
            raise ContractNotFound(f"Parcela {installment_id} não encontrada no contrato {contract_id}")

        original = dict(ordered[position])
        new_status = changes.get("status", original.get("status") or "pending")
        if new_status not in INSTALLMENT_STATUSES:
            raise ContractError(f"Status inválido: {new_status}")

        new_value = round2(changes["value"]) if "value" in changes else round2(original.get("value"))
        new_fee = round2(changes["transaction_fee"]) if "transaction_fee" in changes else round2(original.get("transaction_fee"))
        if new_value < 0 or new_fee < 0:
            raise ContractError("Valor e taxa não podem ser negativos")

        new_due = parse_date(changes.get("due_date") or original["due_date"]).isoformat()
        diff = month_diff(original["due_date"], new_due)

        installment_update = {
            "value": new_value,
            "due_date": new_due,
            "status": new_status,
            "transaction_fee": new_fee,
        }
        if new_status == "paid" and not original.get("payment_date"):
            installment_update["payment_date"] = changes.get("payment_date") or date.today().isoformat()

        shifted = {}
        if diff:
            for inst in ordered[position + 1:]:
                shifted[inst["id"]] = (inst["due_date"], add_months(inst["due_date"], diff).isoformat())

        previous_contract = dict(state["contract"])

        def apply(st):
            for inst in st["installments"]:
                if inst.get("id") == installment_id:
                    inst.update(installment_update)
                elif inst.get("id") in shifted:
                    inst["due_date"] = shifted[inst["id"]][1]
            for comm in st["commissions"]:
                if comm.get("installment_id") == installment_id:
                    comm["value"] = compute_commission(new_value, new_fee, comm.get("percentage"))
            st["installments"].sort(key=installment_sort_key)
            st["contract"]["total_value"] = round2(sum(float(i.get("value") or 0) for i in st["installments"]))

        def commit(st):
            return self._commit_cascade(
                contract_id, original, installment_update, shifted, previous_contract, st
            )

        logger.info("CONTRATOS: editando parcela %s (contrato %s), deslocamento de %d mês(es)",
                    installment_id, contract_id, diff)
        summary = run_optimistic(state, apply, commit, name=f"edição da parcela {installment_id}")
        summary["state"] = state
        return summary

    def _commit_cascade(self, contract_id, original, installment_update, shifted, previous_contract, st) -> Dict:
        log = CompensationLog(name=f"parcela {original['id']}")
        sb = self.supabase
        installment_id = original["id"]

        try:
            # 1. parcela editada
            sb.table("installments").update(installment_update).eq("id", installment_id).execute()
            undo_fields = {k: original.get(k) for k in installment_update}
            log.record(
                "restaurar parcela editada",
                lambda: sb.table("installments").update(undo_fields).eq("id", installment_id).execute(),
            )

            # 2. deslocamento das parcelas seguintes
            for other_id, (old_due, new_due) in shifted.items():
                sb.table("installments").update({"due_date": new_due}).eq("id", other_id).execute()
                log.record(
                    f"restaurar vencimento da parcela {other_id}",
                    lambda other_id=other_id, old_due=old_due: (
                        sb.table("installments").update({"due_date": old_due}).eq("id", other_id).execute()
                    ),
                )

            # 3. comissões ligadas
            linked = (
                sb.table("commissions")
                .select("id, percentage, value")
                .eq("installment_id", installment_id)
                .execute()
            ).data or []
            for comm in linked:
                new_comm_value = compute_commission(
                    installment_update["value"], installment_update["transaction_fee"], comm.get("percentage")
                )
                sb.table("commissions").update({"value": new_comm_value}).eq("id", comm["id"]).execute()
                log.record(
                    f"restaurar comissão {comm['id']}",
                    lambda comm=comm: (
                        sb.table("commissions").update({"value": comm.get("value")}).eq("id", comm["id"]).execute()
                    ),
                )

            # 4. total do contrato
            all_values = (
                sb.table("installments").select("value").eq("contract_id", contract_id).execute()
            ).data or []
            total = round2(sum(float(i.get("value") or 0) for i in all_values))
            sb.table("contracts").update({"total_value": total}).eq("id", contract_id).execute()
            log.record(
                "restaurar total do contrato",
                lambda: sb.table("contracts").update(
                    {"total_value": previous_contract.get("total_value")}
                ).eq("id", contract_id).execute(),
            )

            # 5. conclusão
            completed = check_and_complete(sb, contract_id)
            if completed and previous_contract.get("status") != "completed":
                log.record(
                    "restaurar status do contrato",
                    lambda: sb.table("contracts").update(
                        {"status": previous_contract.get("status")}
                    ).eq("id", contract_id).execute(),
                )

        except Exception as e:
            logger.error("CONTRATOS: cascata da parcela %s falhou após %d escrita(s): %s",
                         installment_id, len(log), e)
            compensated = True
            try:
                log.compensate()
            except CompensationError as ce:
                compensated = False
                logger.error("CONTRATOS: compensação incompleta: %s", ", ".join(ce.failures))
            raise ReconciliationError("Erro ao salvar parcela.", compensated=compensated) from e

        st["contract"]["total_value"] = total
        if completed:
            st["contract"]["status"] = "completed"

        return {
            "installment_id": installment_id,
            "shifted": list(shifted.keys()),
            "commissions_updated": len(linked),
            "total_value": total,
            "completed": completed,
        }
