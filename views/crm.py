from flask import Blueprint, request, jsonify, current_app
from utils import login_required
from services.pipeline import PipelineService, PipelineError, ClientNotFound, STAGE_TITLES

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
        current_app.logger.debug("CRM: Cliente Supabase não disponível")
    return client


crm_bp = Blueprint("crm", __name__, url_prefix="/crm")


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _sem_supabase():
    return jsonify({"success": False, "message": "Banco de dados indisponível"}), 503


def _resposta(acao: str, fn, *args, status: int = 200, message: str = "OK"):
    """Executa a operação do pipeline e monta a resposta JSON padrão."""
    try:
        client = fn(*args)
    except ClientNotFound as e:
        return jsonify({"success": False, "message": str(e)}), 404
    except PipelineError as e:
        return jsonify({"success": False, "message": str(e)}), 400
    except Exception as e:
        current_app.logger.exception("CRM: erro ao %s: %s", acao, e)
        return jsonify({"success": False, "message": f"Erro ao {acao}. Tente novamente."}), 500
    return jsonify({"success": True, "message": message, "client": client}), status


@crm_bp.route("/pipeline", methods=["GET"])
@login_required
def pipeline():
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()

    refresh = request.args.get("refresh") in ("1", "true")
    try:
        colunas = PipelineService(supabase).board(refresh=refresh)
    except Exception as e:
        current_app.logger.exception("CRM: erro ao carregar pipeline: %s", e)
        return jsonify({"success": False, "message": "Erro ao carregar pipeline"}), 500

    return jsonify({"success": True, "stages": STAGE_TITLES, "columns": colunas})


@crm_bp.route("/clientes", methods=["POST"])
@login_required
def novo_cliente():
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    return _resposta("criar cliente", PipelineService(supabase).create_client, _payload(),
                     status=201, message="Cliente criado")


@crm_bp.route("/clientes/<client_id>", methods=["POST"])
@login_required
def editar_cliente(client_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    return _resposta("atualizar cliente", PipelineService(supabase).update_client, client_id, _payload(),
                     message="Cliente atualizado")


@crm_bp.route("/clientes/<client_id>/etapa", methods=["POST"])
@login_required
def mover_etapa(client_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    data = _payload()
    return _resposta("mover cliente", PipelineService(supabase).move_stage,
                     client_id, data.get("stage"), data.get("lost_reason"),
                     message="Etapa atualizada")


@crm_bp.route("/clientes/<client_id>/reuniao", methods=["POST"])
@login_required
def agendar_reuniao(client_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    data = _payload()
    return _resposta("agendar reunião", PipelineService(supabase).schedule_meeting,
                     client_id, data.get("meeting_date"), data.get("responsible"),
                     message="Reunião agendada")


@crm_bp.route("/clientes/<client_id>/pagador", methods=["POST"])
@login_required
def atualizar_pagador(client_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    return _resposta("salvar pagador", PipelineService(supabase).update_payer, client_id, _payload(),
                     message="Dados do pagador salvos")


@crm_bp.route("/clientes/<client_id>/excluir", methods=["POST"])
@login_required
def excluir_cliente(client_id: str):
    supabase = _get_supabase()
    if not supabase:
        return _sem_supabase()
    try:
        PipelineService(supabase).delete_client(client_id)
    except Exception as e:
        current_app.logger.exception("CRM: erro ao excluir cliente %s: %s", client_id, e)
        return jsonify({"success": False, "message": "Erro ao excluir cliente"}), 500
    current_app.logger.info("CRM: cliente %s excluído", client_id)
    return jsonify({"success": True, "message": "Cliente excluído"})
