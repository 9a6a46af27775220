from flask import Blueprint, request, jsonify, current_app
from utils import login_required, to_float
from cache_manager import cached_query, invalidate_financial_cache
from security_middleware import require_role, log_data_access
from services.contract_service import ContractService
from services.reconciliation import ContractError, ContractNotFound, ReconciliationError
from services.schedule import generate_installments, schedule_total
from services.commissions import compute_commission, valid_beneficiaries

# Supabase opcional (não quebra se não estiver configurado)
try:
    from supabase_client import get_supabase_client
except Exception:
    get_supabase_client = None


def _get_supabase():
    if not get_supabase_client:
        return None
    client = get_supabase_client()
    if client is None:
        current_app.logger.debug("CONTRATOS: Cliente Supabase não disponível")
    return client


contratos_bp = Blueprint("contratos", __name__, url_prefix="/contratos")


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _service(supabase) -> ContractService:
    return ContractService(supabase, default_due_day=current_app.config.get("DEFAULT_DUE_DAY", 20))


def _sem_supabase():
    return jsonify({"success": False, "message": "Banco de dados indisponível"}), 503


def _erro(e: Exception, acao: str):
    """Traduz exceções de serviço para a resposta JSON."""
    if isinstance(e, ContractNotFound):
        return jsonify({"success": False, "message": str(e)}), 404
    if isinstance(e, ReconciliationError):
        current_app.logger.error("CONTRATOS: falha na cascata (%s), compensado=%s: %s", acao, e.compensated, e)
        return jsonify({"success": False, "message": str(e), "compensated": e.compensated}), 500
    if isinstance(e, ContractError):
        return jsonify({"success": False, "message": str(e)}), 400
    current_app.logger.exception("CONTRATOS: erro ao %s: %s", acao, e)
    return jsonify({"success": False, "message": f"Erro ao {acao}. Tente novamente."}), 500


def _plan_args(data: dict) -> dict:
    try:
        count = int(data.get("installments_count") or data.get("count") or 0)
    except (TypeError, ValueError):
        count = 0
    return {
        "gross": to_float(data.get("total_value") or data.get("gross")),
        "count": count,
        "start_date": data.get("start_date"),
        "flat_fee": to_float(data.get("transaction_fee") or data.get("flat_fee")),
    }


# ---------------- Consultas (com cache) ----------------
@cached_query("contracts_list")
def _listar_contratos(status):
    return _service(_get_supabase()).list_contracts(status)


@cached_query("client_contracts")
def _contratos_por_cliente():
    return _service(_get_supabase()).client_contracts_summary()


@contratos_bp.route("/", methods=["GET"])
@login_required
@require_role("admin")
def index():
    if not _get_supabase():
        return _sem_supabase()
    status = request.args.get("status") or None
    try:
        contratos = _listar_contratos(status)
    except Exception as e:
        return _erro(e, "listar contratos")
    return jsonify({"success": True, "contracts": contratos})


@contratos_bp.route("/ativos-por-cliente", methods=["GET"])
@login_required
@require_role("admin")
def ativos_por_cliente():
    if not _get_supabase():
        return _sem_supabase()
    try:
        clientes = _contratos_por_cliente()
    except Exception as e:
        return _erro(e, "carregar contratos por cliente")
    return jsonify({"success": True, "clients": clientes})


@contratos_bp.route("/simular", methods=["POST"])
@login_required
@require_role("admin")
def simular():
    """Pré-visualização do cronograma e das comissões, sem gravar nada."""
    data = _payload()
    plan = _plan_args(data)
    if not plan["start_date"]:
        return jsonify({"success": False, "message": "Informe a data da primeira parcela"}), 400
    try:
        parcelas = generate_installments(plan["gross"], plan["count"], plan["start_date"], plan["flat_fee"])
    except ValueError:
        return jsonify({"success": False, "message": "Data inválida"}), 400

    beneficiarios = valid_beneficiaries(data.get("beneficiaries") or [])
    for parcela in parcelas:
        parcela["commissions"] = [
            {
                "employee_name": b["employee_name"],
                "percentage": b["percentage"],
                "value": compute_commission(parcela["value"], parcela["transaction_fee"], b["percentage"]),
            }
            for b in beneficiarios
        ]
    return jsonify({"success": True, "installments": parcelas, "total": schedule_total(parcelas)})


@contratos_bp.route("/novo", methods=["POST"])
@login_required
@require_role("admin")
def novo():
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    data = _payload()
    client_id = data.get("client_id")
    if not client_id:
        return jsonify({"success": False, "message": "Selecione o cliente"}), 400

    plan = _plan_args(data)
    if not plan["start_date"]:
        return jsonify({"success": False, "message": "Informe a data da primeira parcela"}), 400

    try:
        contrato = _service(supabase).create_contract_from_plan(
            client_id,
            plan["gross"],
            plan["count"],
            plan["start_date"],
            plan["flat_fee"],
            beneficiaries=data.get("beneficiaries") or [],
            due_day=data.get("due_day"),
            notes=data.get("notes"),
        )
    except ValueError:
        return jsonify({"success": False, "message": "Data inválida"}), 400
    except Exception as e:
        return _erro(e, "criar contrato")

    log_data_access("contracts", "INSERT", 1 + len(contrato["installments"]) + contrato["commissions_count"])
    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Contrato criado com sucesso", "contract": contrato}), 201


@contratos_bp.route("/integridade", methods=["GET"])
@login_required
@require_role("admin")
def integridade():
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    from data_utils.data_integrity import ContractIntegrityValidator, summarize
    repair = request.args.get("repair") in ("1", "true", "sim")
    try:
        resultados = ContractIntegrityValidator(supabase).validate_all(repair=repair)
    except Exception as e:
        return _erro(e, "validar contratos")

    if repair:
        invalidate_financial_cache()
    return jsonify({"success": True, "summary": summarize(resultados), "results": resultados})


@contratos_bp.route("/saude", methods=["GET"])
@login_required
@require_role("admin")
def saude():
    """
    Relatório do monitor de contratos. Sem monitor em execução, faz uma
    verificação avulsa e reporta o resultado dela.
    """
    from data_utils.monitoring import ContractMonitor

    monitor = current_app.extensions.get("contract_monitor")
    if monitor is None:
        supabase = _get_supabase()
        if not supabase:
            return _sem_supabase()
        monitor = ContractMonitor(supabase)
        monitor.check_contracts()

    try:
        janela = int(request.args.get("horas") or 24)
    except ValueError:
        janela = 24
    return jsonify({"success": True, "report": monitor.generate_health_report(window_hours=janela)})


@contratos_bp.route("/<contract_id>", methods=["GET"])
@login_required
@require_role("admin")
def detalhe(contract_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        detalhes = _service(supabase).get_contract_details(contract_id)
    except Exception as e:
        return _erro(e, "carregar contrato")
    return jsonify({"success": True, **detalhes})


@contratos_bp.route("/<contract_id>/progresso", methods=["GET"])
@login_required
@require_role("admin")
def progresso(contract_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        return jsonify({"success": True, **_service(supabase).contract_progress(contract_id)})
    except Exception as e:
        return _erro(e, "calcular progresso")


@contratos_bp.route("/<contract_id>/regerar", methods=["POST"])
@login_required
@require_role("admin")
def regerar(contract_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    data = _payload()
    plan = _plan_args(data)
    if not plan["start_date"]:
        return jsonify({"success": False, "message": "Informe a data da primeira parcela"}), 400
    try:
        resultado = _service(supabase).regenerate_contract(
            contract_id,
            plan["gross"],
            plan["count"],
            plan["start_date"],
            plan["flat_fee"],
            beneficiaries=data.get("beneficiaries") or [],
            due_day=data.get("due_day"),
        )
    except ValueError:
        return jsonify({"success": False, "message": "Data inválida"}), 400
    except Exception as e:
        return _erro(e, "atualizar contrato")

    log_data_access("installments", "REPLACE", len(resultado["installments"]))
    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Contrato atualizado", **resultado})


@contratos_bp.route("/<contract_id>/excluir", methods=["POST"])
@login_required
@require_role("admin")
def excluir(contract_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        _service(supabase).delete_contract(contract_id)
    except Exception as e:
        return _erro(e, "excluir contrato")
    log_data_access("contracts", "DELETE", 1)
    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Contrato excluído"})


@contratos_bp.route("/<contract_id>/parcelas", methods=["POST"])
@login_required
@require_role("admin")
def nova_parcela(contract_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    data = _payload()
    if not data.get("due_date"):
        return jsonify({"success": False, "message": "Informe o vencimento"}), 400
    try:
        resultado = _service(supabase).add_installment(
            contract_id,
            data["due_date"],
            to_float(data.get("value")),
            to_float(data.get("transaction_fee")),
        )
    except ValueError:
        return jsonify({"success": False, "message": "Data inválida"}), 400
    except Exception as e:
        return _erro(e, "adicionar parcela")

    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Parcela adicionada", **resultado}), 201


@contratos_bp.route("/<contract_id>/parcelas/<installment_id>", methods=["POST"])
@login_required
@require_role("admin")
def editar_parcela(contract_id: str, installment_id: str):
    """Salva a parcela e propaga: vencimentos seguintes, comissões, total, conclusão."""
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    data = _payload()
    changes = {}
    if "value" in data:
        changes["value"] = to_float(data["value"])
    if "transaction_fee" in data:
        changes["transaction_fee"] = to_float(data["transaction_fee"])
    if data.get("due_date"):
        changes["due_date"] = data["due_date"]
    if data.get("status"):
        changes["status"] = data["status"]
    if not changes:
        return jsonify({"success": False, "message": "Nada para atualizar"}), 400

    try:
        resumo = _service(supabase).edit_installment(contract_id, installment_id, changes)
    except ValueError:
        return jsonify({"success": False, "message": "Data inválida"}), 400
    except Exception as e:
        return _erro(e, "salvar parcela")

    resumo.pop("state", None)
    invalidate_financial_cache()
    message = "Parcela atualizada"
    if resumo.get("completed"):
        message += " - contrato concluído!"
    return jsonify({"success": True, "message": message, **resumo})


@contratos_bp.route("/<contract_id>/parcelas/<installment_id>/baixar", methods=["POST"])
@login_required
@require_role("admin")
def baixar_parcela(contract_id: str, installment_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        concluido = _service(supabase).quick_pay_installment(contract_id, installment_id)
    except Exception as e:
        return _erro(e, "registrar pagamento")

    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Pagamento registrado", "completed": concluido})


@contratos_bp.route("/<contract_id>/parcelas/<installment_id>/confirmar", methods=["POST"])
@login_required
@require_role("admin")
def confirmar_pagamento(contract_id: str, installment_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    data = _payload()
    try:
        resumo = _service(supabase).confirm_payment(
            contract_id,
            installment_id,
            to_float(data.get("paid_value")),
            to_float(data.get("transaction_fee")),
        )
    except Exception as e:
        return _erro(e, "confirmar pagamento")

    resumo.pop("state", None)
    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Pagamento confirmado", **resumo})


@contratos_bp.route("/<contract_id>/comissoes/<commission_id>", methods=["POST"])
@login_required
@require_role("admin")
def editar_comissao(contract_id: str, commission_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    data = _payload()
    changes = {k: data[k] for k in ("employee_name", "status") if k in data}
    if data.get("percentage") not in (None, ""):
        changes["percentage"] = to_float(data["percentage"])
    if data.get("value") not in (None, ""):
        changes["value"] = to_float(data["value"])
    try:
        comissao = _service(supabase).update_commission(contract_id, commission_id, changes)
    except Exception as e:
        return _erro(e, "atualizar comissão")

    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Comissão atualizada", "commission": comissao})


@contratos_bp.route("/<contract_id>/comissoes/<commission_id>/pagar", methods=["POST"])
@login_required
@require_role("admin")
def pagar_comissao(contract_id: str, commission_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        concluido = _service(supabase).quick_pay_commission(contract_id, commission_id)
    except Exception as e:
        return _erro(e, "pagar comissão")

    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Comissão paga", "completed": concluido})
