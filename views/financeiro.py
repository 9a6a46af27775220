from flask import Blueprint, request, jsonify, current_app
from utils import login_required, to_float
from cache_manager import cached_query, invalidate_financial_cache
from security_middleware import require_role, log_data_access
from data_utils.safe_pagination import safe_paginated_query
from services.dre import build_dre, status_summary
from services.expenses import ExpenseService, ExpenseValidationError, ExpenseNotFound, expand_recurring

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
        current_app.logger.debug("FINANCEIRO: Cliente Supabase não disponível")
    return client


financeiro_bp = Blueprint("financeiro", __name__, url_prefix="/financeiro")

DRE_FIELDS = "id, title, type, direction, amount, date, status"


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _sem_supabase():
    return jsonify({"success": False, "message": "Banco de dados indisponível"}), 503


def _dados_despesa() -> dict:
    data = _payload()
    if data.get("amount") not in (None, ""):
        data["amount"] = to_float(data["amount"])
    return data


@cached_query("dre_records")
def _registros_dre():
    return safe_paginated_query(_get_supabase(), "financial_overview", DRE_FIELDS)


@cached_query("expenses_list")
def _listar_despesas(year):
    return ExpenseService(_get_supabase()).list_expenses(year)


# ---------------- DRE ----------------
@financeiro_bp.route("/dre", methods=["GET"])
@login_required
@require_role("admin")
def dre():
    if not _get_supabase():
        return _sem_supabase()

    year = request.args.get("ano") or request.args.get("year")
    try:
        registros = _registros_dre()
    except Exception as e:
        current_app.logger.exception("FINANCEIRO: erro ao carregar DRE: %s", e)
        return jsonify({"success": False, "message": "Erro ao carregar DRE"}), 500

    matriz = build_dre(registros, year)
    for categoria in matriz["categories"].values():
        for cells in categoria["items"].values():
            for cell in cells.values():
                cell["status"] = status_summary(cell["statuses"])

    current_app.logger.info("FINANCEIRO: DRE %s montado com %d registros", matriz["year"], len(registros))
    return jsonify({"success": True, **matriz})


# ---------------- Despesas ----------------
@financeiro_bp.route("/despesas", methods=["GET"])
@login_required
@require_role("admin")
def despesas():
    if not _get_supabase():
        return _sem_supabase()

    year = request.args.get("ano") or None
    try:
        meses = int(request.args.get("projetar") or 0)
    except ValueError:
        meses = 0

    try:
        lista = _listar_despesas(year)
    except Exception as e:
        current_app.logger.exception("FINANCEIRO: erro ao listar despesas: %s", e)
        return jsonify({"success": False, "message": "Erro ao carregar despesas"}), 500

    if meses > 1:
        projetadas = []
        for despesa in lista:
            projetadas.extend(expand_recurring(despesa, meses))
        lista = projetadas

    total = round(sum(float(d.get("amount") or 0) for d in lista), 2)
    return jsonify({"success": True, "expenses": lista, "total": total})


@financeiro_bp.route("/despesas", methods=["POST"])
@login_required
@require_role("admin")
def nova_despesa():
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        despesa = ExpenseService(supabase).create_expense(_dados_despesa())
    except ExpenseValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("FINANCEIRO: erro ao criar despesa: %s", e)
        return jsonify({"success": False, "message": "Erro ao salvar despesa"}), 500

    log_data_access("expenses", "INSERT", 1)
    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Despesa registrada", "expense": despesa}), 201


@financeiro_bp.route("/despesas/<expense_id>", methods=["POST"])
@login_required
@require_role("admin")
def editar_despesa(expense_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        despesa = ExpenseService(supabase).update_expense(expense_id, _dados_despesa())
    except ExpenseNotFound as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except ExpenseValidationError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("FINANCEIRO: erro ao atualizar despesa %s: %s", expense_id, e)
        return jsonify({"success": False, "message": "Erro ao salvar despesa"}), 500

    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Despesa atualizada", "expense": despesa})


@financeiro_bp.route("/despesas/<expense_id>/pagar", methods=["POST"])
@login_required
@require_role("admin")
def pagar_despesa(expense_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        despesa = ExpenseService(supabase).mark_paid(expense_id)
    except ExpenseNotFound as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except Exception as e:
        current_app.logger.exception("FINANCEIRO: erro ao pagar despesa %s: %s", expense_id, e)
        return jsonify({"success": False, "message": "Erro ao registrar pagamento"}), 500

    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Despesa paga", "expense": despesa})


@financeiro_bp.route("/despesas/<expense_id>/excluir", methods=["POST"])
@login_required
@require_role("admin")
def excluir_despesa(expense_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        ExpenseService(supabase).delete_expense(expense_id)
    except Exception as e:
        current_app.logger.exception("FINANCEIRO: erro ao excluir despesa %s: %s", expense_id, e)
        return jsonify({"success": False, "message": "Erro ao excluir despesa"}), 500

    log_data_access("expenses", "DELETE", 1)
    invalidate_financial_cache()
    return jsonify({"success": True, "message": "Despesa excluída"})
