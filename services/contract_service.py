# services/contract_service.py
"""
Serviço de contratos: criação, regeneração, parcelas avulsas, baixas e
consultas. Toda regra de valor derivado (comissão, total) passa por
services.commissions / services.reconciliation.
"""
from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Dict, Iterable, List, Optional

from data_utils.compensation import CompensationError, CompensationLog
from services.commissions import build_commission_rows, compute_commission, distinct_beneficiaries
from services.completion import check_and_complete
from services.reconciliation import (
    ContractError,
    ContractNotFound,
    ReconciliationEngine,
    installment_sort_key,
)
from services.schedule import generate_installments, parse_date, round2

logger = logging.getLogger(__name__)

CONTRACT_STATUSES = ("draft", "active", "completed", "cancelled")
TRANSACTION_STATUSES = ("pending", "paid", "overdue", "cancelled")


def _clamp_due_day(due_day, default: int = 20) -> int:
    try:
        value = int(due_day)
    except (TypeError, ValueError):
        value = default
    return min(31, max(1, value or default))


class ContractService:
    """Operações de contrato sobre um cliente Supabase."""

    def __init__(self, supabase, default_due_day: int = 20):
        self.supabase = supabase
        self.default_due_day = default_due_day
        self.engine = ReconciliationEngine(supabase)

    # ------------------------------------------------------------------
    # Criação
    # ------------------------------------------------------------------
    def create_contract(
        self,
        client_id: str,
        total_value,
        installments: Iterable[Dict],
        commissions: Iterable[Dict],
        due_day=None,
        notes: Optional[str] = None,
    ) -> Dict:
        """
        Cria contrato ativo, parcelas e comissões (beneficiário x parcela) e
        move o cliente para 'fechado'. Se algo falhar depois do contrato
        existir, tudo o que foi inserido é removido e o erro é repassado.
        """
        sb = self.supabase
        installments = list(installments)

        contract = (
            sb.table("contracts")
            .insert({
                "client_id": client_id,
                "total_value": round2(total_value),
                "status": "active",
                "due_day": _clamp_due_day(due_day, self.default_due_day),
                "notes": notes,
            })
            .execute()
        ).data
        if not contract:
            raise ContractError("Erro ao criar contrato")
        contract = contract[0]
        contract_id = contract["id"]

        log = CompensationLog(name=f"criação do contrato {contract_id}")
        log.record("remover contrato", lambda: self._delete_contract_rows(contract_id))

        try:
            created = self._insert_installments(contract_id, installments)
            comm_rows = build_commission_rows(contract_id, commissions, created)
            if comm_rows:
                sb.table("commissions").insert(comm_rows).execute()

            previous_client = (
                sb.table("clients").select("stage, closed_at").eq("id", client_id).maybe_single().execute()
            )
            sb.table("clients").update({
                "stage": "fechado",
                "closed_at": datetime.now().isoformat(),
            }).eq("id", client_id).execute()
            if previous_client and previous_client.data:
                old = previous_client.data
                log.record(
                    "restaurar etapa do cliente",
                    lambda: sb.table("clients").update(old).eq("id", client_id).execute(),
                )
        except Exception as e:
            logger.error("CONTRATOS: erro na criação do contrato %s, revertendo: %s", contract_id, e)
            self._safe_compensate(log)
            raise

        logger.info("CONTRATOS: contrato %s criado para cliente %s (%d parcelas, %d comissões)",
                    contract_id, client_id, len(created), len(comm_rows))
        contract["installments"] = created
        contract["commissions_count"] = len(comm_rows)
        return contract

    def create_contract_from_plan(
        self,
        client_id: str,
        gross,
        count,
        start_date,
        flat_fee=0,
        beneficiaries: Iterable[Dict] = (),
        due_day=None,
        notes: Optional[str] = None,
    ) -> Dict:
        """Gera o cronograma e cria o contrato. Plano vazio não é gravado."""
        installments = generate_installments(gross, count, start_date, flat_fee)
        if not installments:
            raise ContractError("Informe o valor total e a quantidade de parcelas.")
        return self.create_contract(client_id, gross, installments, beneficiaries, due_day, notes)

    def regenerate_contract(
        self,
        contract_id: str,
        gross,
        count,
        start_date,
        flat_fee=0,
        beneficiaries: Iterable[Dict] = (),
        due_day=None,
    ) -> Dict:
        """
        Substitui todas as parcelas e comissões do contrato por um novo
        cronograma (não é merge). Em caso de falha, as linhas antigas voltam.
        """
        sb = self.supabase
        installments = generate_installments(gross, count, start_date, flat_fee)
        if not installments:
            raise ContractError("Informe o valor total e a quantidade de parcelas.")

        state = self.engine.load_state(contract_id)
        old_contract = state["contract"]
        old_installments = state["installments"]
        old_commissions = state["commissions"]

        log = CompensationLog(name=f"regeneração do contrato {contract_id}")
        try:
            sb.table("contracts").update({
                "total_value": round2(gross),
                "due_day": _clamp_due_day(due_day or old_contract.get("due_day"), self.default_due_day),
                "updated_at": datetime.now().isoformat(),
            }).eq("id", contract_id).execute()
            log.record(
                "restaurar contrato",
                lambda: sb.table("contracts").update({
                    "total_value": old_contract.get("total_value"),
                    "due_day": old_contract.get("due_day"),
                }).eq("id", contract_id).execute(),
            )

            sb.table("commissions").delete().eq("contract_id", contract_id).execute()
            if old_commissions:
                log.record(
                    "reinserir comissões antigas",
                    lambda: sb.table("commissions").insert(old_commissions).execute(),
                )

            sb.table("installments").delete().eq("contract_id", contract_id).execute()
            if old_installments:
                log.record(
                    "reinserir parcelas antigas",
                    lambda: sb.table("installments").insert(old_installments).execute(),
                )

            created = self._insert_installments(contract_id, installments)
            created_ids = [i["id"] for i in created]
            log.record(
                "remover parcelas novas",
                lambda: sb.table("installments").delete().in_("id", created_ids).execute(),
            )

            comm_rows = build_commission_rows(contract_id, beneficiaries, created)
            if comm_rows:
                inserted = sb.table("commissions").insert(comm_rows).execute().data or []
                inserted_ids = [c["id"] for c in inserted]
                log.record(
                    "remover comissões novas",
                    lambda: sb.table("commissions").delete().in_("id", inserted_ids).execute(),
                )
        except Exception as e:
            logger.error("CONTRATOS: erro ao regerar contrato %s, revertendo: %s", contract_id, e)
            self._safe_compensate(log)
            raise

        logger.info("CONTRATOS: contrato %s regerado (%d parcelas, %d comissões)",
                    contract_id, len(created), len(comm_rows))
        return {"id": contract_id, "installments": created, "commissions_count": len(comm_rows),
                "total_value": round2(gross)}

    def delete_contract(self, contract_id: str):
        self._delete_contract_rows(contract_id)
        logger.info("CONTRATOS: contrato %s excluído", contract_id)

    # ------------------------------------------------------------------
    # Parcelas
    # ------------------------------------------------------------------
    def add_installment(self, contract_id: str, due_date, value=0, transaction_fee=0) -> Dict:
        """
        Adiciona uma parcela pendente ao contrato e replica nela os
        beneficiários já existentes (um por nome, primeiro percentual visto).
        """
        sb = self.supabase
        state = self.engine.load_state(contract_id)

        log = CompensationLog(name=f"nova parcela do contrato {contract_id}")
        try:
            created = self._insert_installments(contract_id, [{
                "value": round2(value),
                "due_date": parse_date(due_date).isoformat(),
                "transaction_fee": round2(transaction_fee),
                "status": "pending",
            }])[0]
            log.record(
                "remover parcela nova",
                lambda: sb.table("installments").delete().eq("id", created["id"]).execute(),
            )

            beneficiaries = distinct_beneficiaries(state["commissions"])
            comm_rows = build_commission_rows(contract_id, beneficiaries, [created])
            if comm_rows:
                inserted = sb.table("commissions").insert(comm_rows).execute().data or []
                inserted_ids = [c["id"] for c in inserted]
                log.record(
                    "remover comissões da parcela nova",
                    lambda: sb.table("commissions").delete().in_("id", inserted_ids).execute(),
                )

            total = self._refresh_total(contract_id)
            log.record(
                "restaurar total do contrato",
                lambda: sb.table("contracts").update(
                    {"total_value": state["contract"].get("total_value")}
                ).eq("id", contract_id).execute(),
            )
            completed = check_and_complete(sb, contract_id)
        except Exception as e:
            logger.error("CONTRATOS: erro ao adicionar parcela no contrato %s: %s", contract_id, e)
            self._safe_compensate(log)
            raise

        return {"installment": created, "commissions_created": len(comm_rows),
                "total_value": total, "completed": completed}

    def edit_installment(self, contract_id: str, installment_id: str, changes: Dict) -> Dict:
        """Edição com cascata completa (ver ReconciliationEngine)."""
        return self.engine.edit_installment(contract_id, installment_id, changes)

    def quick_pay_installment(self, contract_id: str, installment_id: str) -> bool:
        """Baixa rápida: marca paga com data de hoje e verifica conclusão."""
        self._get_installment(contract_id, installment_id)
        self.supabase.table("installments").update({
            "status": "paid",
            "payment_date": date.today().isoformat(),
        }).eq("id", installment_id).execute()
        return check_and_complete(self.supabase, contract_id)

    def confirm_payment(self, contract_id: str, installment_id: str, paid_value, transaction_fee) -> Dict:
        """
        Confirmação de recebimento: o valor recebido e a taxa passam a ser os
        da parcela (cascata completa) e ela fica paga.
        """
        paid_value = round2(paid_value)
        if paid_value <= 0:
            raise ContractError("Valor recebido deve ser maior que zero")
        return self.engine.edit_installment(contract_id, installment_id, {
            "value": paid_value,
            "transaction_fee": round2(transaction_fee),
            "status": "paid",
            "payment_date": date.today().isoformat(),
        })

    # ------------------------------------------------------------------
    # Comissões
    # ------------------------------------------------------------------
    def quick_pay_commission(self, contract_id: str, commission_id: str) -> bool:
        self._get_commission(contract_id, commission_id)
        self.supabase.table("commissions").update({"status": "paid"}).eq("id", commission_id).execute()
        return check_and_complete(self.supabase, contract_id)

    def update_commission(self, contract_id: str, commission_id: str, changes: Dict) -> Dict:
        """
        Ajuste manual da comissão. O valor informado vale até a próxima
        edição da parcela ligada, que recalcula pela fórmula.
        Sem valor explícito, o valor é recalculado com o novo percentual.
        """
        current = self._get_commission(contract_id, commission_id)
        update = {}
        if "employee_name" in changes:
            name = (changes.get("employee_name") or "").strip()
            if not name:
                raise ContractError("Informe o beneficiário")
            update["employee_name"] = name
        if "percentage" in changes:
            update["percentage"] = float(changes["percentage"] or 0)
        if "status" in changes:
            if changes["status"] not in TRANSACTION_STATUSES:
                raise ContractError(f"Status inválido: {changes['status']}")
            update["status"] = changes["status"]

        if changes.get("value") is not None:
            update["value"] = round2(changes["value"])
        elif "percentage" in update and current.get("installment_id"):
            inst = self._get_installment(contract_id, current["installment_id"])
            update["value"] = compute_commission(inst.get("value"), inst.get("transaction_fee"), update["percentage"])

        if update:
            self.supabase.table("commissions").update(update).eq("id", commission_id).execute()
        check_and_complete(self.supabase, contract_id)
        return {**current, **update}

    # ------------------------------------------------------------------
    # Consultas
    # ------------------------------------------------------------------
    def get_contract_details(self, contract_id: str) -> Dict:
        sb = self.supabase
        contract = (
            sb.table("contracts")
            .select("*, clients (id, name, school, email, phone, avatar_url)")
            .eq("id", contract_id)
            .maybe_single()
            .execute()
        )
        if not contract or not contract.data:
            raise ContractNotFound("Contrato não encontrado")

        installments = (
            sb.table("installments").select("*").eq("contract_id", contract_id).order("due_date").execute()
        ).data or []
        installments.sort(key=installment_sort_key)

        commissions = (
            sb.table("commissions")
            .select("*, installments (due_date)")
            .eq("contract_id", contract_id)
            .order("created_at")
            .execute()
        ).data or []
        commissions.sort(key=_commission_date)

        return {
            "contract": contract.data,
            "installments": installments,
            "commissions": commissions,
            "commission_groups": group_commissions_by_month(commissions),
        }

    def contract_progress(self, contract_id: str) -> Dict:
        rows = (
            self.supabase.table("installments").select("value, status").eq("contract_id", contract_id).execute()
        ).data or []
        total = round2(sum(float(r.get("value") or 0) for r in rows))
        paid = round2(sum(float(r.get("value") or 0) for r in rows if r.get("status") == "paid"))
        return {"total": total, "paid": paid, "percentage": round2(paid / total * 100) if total > 0 else 0.0}

    def list_contracts(self, status: Optional[str] = None) -> List[Dict]:
        query = self.supabase.table("contracts").select("*, clients (name, school, avatar_url)")
        if status:
            if status not in CONTRACT_STATUSES:
                raise ContractError(f"Status inválido: {status}")
            query = query.eq("status", status)
        order_field = "updated_at" if status == "completed" else "created_at"
        return query.order(order_field, desc=True).execute().data or []

    def client_contracts_summary(self) -> List[Dict]:
        """Contratos ativos/concluídos agrupados por cliente, com totais pagos e pendentes."""
        sb = self.supabase
        contracts = (
            sb.table("contracts")
            .select("*, clients (id, name, school, avatar_url)")
            .in_("status", ["active", "completed"])
            .order("created_at", desc=True)
            .execute()
        ).data or []
        if not contracts:
            return []

        ids = [c["id"] for c in contracts]
        installments = sb.table("installments").select("*").in_("contract_id", ids).execute().data or []
        commissions = sb.table("commissions").select("*").in_("contract_id", ids).execute().data or []

        clients = {}
        for contract in contracts:
            client = contract.get("clients")
            if not client:
                continue
            entry = clients.setdefault(client["id"], {
                "client_id": client["id"],
                "client_name": client.get("name"),
                "school": client.get("school"),
                "avatar_url": client.get("avatar_url"),
                "contracts": [],
                "total_value": 0.0,
                "total_paid": 0.0,
                "total_pending": 0.0,
                "has_active": False,
                "has_completed": False,
            })

            c_inst = sorted([i for i in installments if i.get("contract_id") == contract["id"]], key=installment_sort_key)
            c_comm = [c for c in commissions if c.get("contract_id") == contract["id"]]
            total = sum(float(i.get("value") or 0) for i in c_inst)
            paid = sum(float(i.get("value") or 0) for i in c_inst if i.get("status") == "paid")

            entry["contracts"].append({
                "id": contract["id"],
                "status": contract.get("status"),
                "total_value": float(contract.get("total_value") or 0),
                "notes": contract.get("notes"),
                "created_at": contract.get("created_at"),
                "installments": c_inst,
                "commissions": c_comm,
            })
            entry["total_value"] = round2(entry["total_value"] + float(contract.get("total_value") or 0))
            entry["total_paid"] = round2(entry["total_paid"] + paid)
            entry["total_pending"] = round2(entry["total_pending"] + total - paid)
            entry["has_active"] = entry["has_active"] or contract.get("status") == "active"
            entry["has_completed"] = entry["has_completed"] or contract.get("status") == "completed"

        return list(clients.values())

    # ------------------------------------------------------------------
    # Internos
    # ------------------------------------------------------------------
    def _insert_installments(self, contract_id: str, installments: List[Dict]) -> List[Dict]:
        if not installments:
            return []
        rows = [{
            "contract_id": contract_id,
            "value": round2(inst.get("value")),
            "due_date": parse_date(inst["due_date"]).isoformat(),
            "status": inst.get("status") or "pending",
            "transaction_fee": round2(inst.get("transaction_fee")),
        } for inst in installments]
        created = self.supabase.table("installments").insert(rows).execute().data or []
        if len(created) != len(rows):
            raise ContractError("Erro ao gravar parcelas")
        return sorted(created, key=installment_sort_key)

    def _refresh_total(self, contract_id: str) -> float:
        rows = self.supabase.table("installments").select("value").eq("contract_id", contract_id).execute().data or []
        total = round2(sum(float(r.get("value") or 0) for r in rows))
        self.supabase.table("contracts").update({"total_value": total}).eq("id", contract_id).execute()
        return total

    def _delete_contract_rows(self, contract_id: str):
        sb = self.supabase
        sb.table("commissions").delete().eq("contract_id", contract_id).execute()
        sb.table("installments").delete().eq("contract_id", contract_id).execute()
        sb.table("contracts").delete().eq("id", contract_id).execute()

    def _get_installment(self, contract_id: str, installment_id: str) -> Dict:
        result = (
            self.supabase.table("installments").select("*")
            .eq("id", installment_id).eq("contract_id", contract_id)
            .maybe_single().execute()
        )
        if not result or not result.data:
            raise ContractNotFound("Parcela não encontrada")
        return result.data

    def _get_commission(self, contract_id: str, commission_id: str) -> Dict:
        result = (
            self.supabase.table("commissions").select("*")
            .eq("id", commission_id).eq("contract_id", contract_id)
            .maybe_single().execute()
        )
        if not result or not result.data:
            raise ContractNotFound("Comissão não encontrada")
        return result.data

    @staticmethod
    def _safe_compensate(log: CompensationLog):
        try:
            log.compensate()
        except CompensationError as ce:
            logger.error("CONTRATOS: compensação incompleta (%s): %s", log.name, ", ".join(ce.failures))


# ---- Agrupamento de comissões ---------------------------------------------------

MONTH_NAMES = (
    "Janeiro", "Fevereiro", "Março", "Abril", "Maio", "Junho",
    "Julho", "Agosto", "Setembro", "Outubro", "Novembro", "Dezembro",
)


def _commission_date(commission: Dict) -> str:
    inst = commission.get("installments") or {}
    return str(inst.get("due_date") or commission.get("created_at") or "")


def group_commissions_by_month(commissions: Iterable[Dict]) -> List[Dict]:
    """Agrupa comissões pelo mês de vencimento da parcela (ou criação), em ordem cronológica."""
    groups = {}
    for comm in commissions:
        raw = _commission_date(comm)
        if not raw:
            continue
        key = raw[:7]
        year, month = int(key[:4]), int(key[5:7])
        group = groups.setdefault(key, {
            "key": key,
            "label": f"{MONTH_NAMES[month - 1]} {year}",
            "items": [],
            "total": 0.0,
        })
        group["items"].append(comm)
        group["total"] = round2(group["total"] + float(comm.get("value") or 0))
    return [groups[k] for k in sorted(groups)]
