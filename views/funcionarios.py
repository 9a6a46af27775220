from datetime import datetime

from flask import Blueprint, request, jsonify, current_app
from utils import login_required
from models import db, Employee  # banco local quando não há Supabase
from cache_manager import cached_query, invalidate_prefix
from security_middleware import require_role, log_data_access

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
        current_app.logger.debug("FUNCIONARIOS: Cliente Supabase não disponível, usando banco local")
    return client


funcionarios_bp = Blueprint("funcionarios", __name__, url_prefix="/funcionarios")

EMPLOYEE_FIELDS = ("name", "email", "phone", "role")


def _payload() -> dict:
    return request.get_json(silent=True) or request.form.to_dict()


def _dados_funcionario(data: dict):
    """Normaliza o formulário; retorna (linha, erro)."""
    name = (data.get("name") or "").strip()
    if not name:
        return None, "Nome obrigatório"
    row = {k: (data.get(k) or "").strip() or None for k in EMPLOYEE_FIELDS}
    row["name"] = name
    return row, None


def _erro_ao_salvar():
    return jsonify({"success": False, "message": "Erro ao salvar funcionário"}), 500


def _nao_encontrado():
    return jsonify({"success": False, "message": "Funcionário não encontrado"}), 404


@cached_query("employees_list")
def _listar_funcionarios():
    supabase = _get_supabase()
    if supabase:
        return (supabase.table("employees").select("*").order("name").execute()).data or []
    return [e.to_dict() for e in db.session.query(Employee).order_by(Employee.name).all()]


@funcionarios_bp.route("/", methods=["GET"])
@login_required
def index():
    """Lista de funcionários (beneficiários de comissão)."""
    try:
        funcionarios = _listar_funcionarios()
    except Exception as e:
        current_app.logger.exception("FUNCIONARIOS: erro ao listar: %s", e)
        return jsonify({"success": False, "message": "Erro ao carregar funcionários"}), 500
    return jsonify({"success": True, "employees": funcionarios})


@funcionarios_bp.route("/", methods=["POST"])
@login_required
@require_role("admin")
def novo():
    row, erro = _dados_funcionario(_payload())
    if erro:
        return jsonify({"success": False, "message": erro}), 400

    supabase = _get_supabase()
    if supabase:
        try:
            created = supabase.table("employees").insert(row).execute().data or []
        except Exception as e:
            current_app.logger.exception("FUNCIONARIOS: erro ao criar: %s", e)
            return _erro_ao_salvar()
        employee = created[0] if created else row
    else:
        try:
            funcionario = Employee(**row)
            db.session.add(funcionario)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            current_app.logger.exception("FUNCIONARIOS: erro ao criar no banco local: %s", e)
            return _erro_ao_salvar()
        employee = funcionario.to_dict()

    log_data_access("employees", "INSERT", 1)
    invalidate_prefix("employees_list")
    return jsonify({"success": True, "message": "Funcionário cadastrado", "employee": employee}), 201


@funcionarios_bp.route("/<employee_id>", methods=["POST"])
@login_required
@require_role("admin")
def editar(employee_id: str):
    row, erro = _dados_funcionario(_payload())
    if erro:
        return jsonify({"success": False, "message": erro}), 400

    supabase = _get_supabase()
    if supabase:
        row["updated_at"] = datetime.now().isoformat()
        try:
            updated = supabase.table("employees").update(row).eq("id", employee_id).execute().data or []
        except Exception as e:
            current_app.logger.exception("FUNCIONARIOS: erro ao atualizar %s: %s", employee_id, e)
            return _erro_ao_salvar()
        if not updated:
            return _nao_encontrado()
        employee = updated[0]
    else:
        funcionario = db.session.get(Employee, employee_id)
        if funcionario is None:
            return _nao_encontrado()
        try:
            for campo, valor in row.items():
                setattr(funcionario, campo, valor)
            db.session.commit()
        except Exception as e:
            db.session.rollback()
            current_app.logger.exception("FUNCIONARIOS: erro ao atualizar %s no banco local: %s", employee_id, e)
            return _erro_ao_salvar()
        employee = funcionario.to_dict()

    invalidate_prefix("employees_list")
    return jsonify({"success": True, "message": "Funcionário atualizado", "employee": employee})


@funcionarios_bp.route("/<employee_id>/excluir", methods=["POST"])
@login_required
@require_role("admin")
def excluir(employee_id: str):
    supabase = _get_supabase()
    try:
        if supabase:
            supabase.table("employees").delete().eq("id", employee_id).execute()
        else:
            db.session.query(Employee).filter_by(id=employee_id).delete()
            db.session.commit()
    except Exception as e:
        if not supabase:
            db.session.rollback()
        current_app.logger.exception("FUNCIONARIOS: erro ao excluir %s: %s", employee_id, e)
        return jsonify({"success": False, "message": "Erro ao excluir funcionário"}), 500

    log_data_access("employees", "DELETE", 1)
    invalidate_prefix("employees_list")
    return jsonify({"success": True, "message": "Funcionário excluído"})
