# security_middleware.py
"""
MIDDLEWARE DE SEGURANÇA
Identifica o usuário da sessão, consulta o papel (admin/member) e audita requisições.
"""

from flask import g, session, current_app, request, jsonify
from functools import wraps
import time

ROLES = ("admin", "member")


def get_current_user_id():
    """Retorna user_id da sessão (Supabase Auth)."""
    from utils import is_logged
    if not is_logged():
        return None

    user = session.get("user", {})
    return user.get("id") or user.get("supabase_user_id")


def _local_role(user_id):
    """Papel gravado no banco local (sem Supabase configurado)."""
    from models import db, UserRole
    row = db.session.query(UserRole).filter_by(user_id=user_id).first()
    return row.role if row else None


def get_current_role(supabase_client=None):
    """
    Papel do usuário atual, lido da tabela user_roles (Supabase ou, sem ele,
    o banco local). Em caso de erro ou ausência de registro, assume 'member'.
    """
    if "current_role" in g:
        return g.current_role

    user_id = get_current_user_id()
    if not user_id:
        return None

    role = "member"
    if supabase_client is None:
        from supabase_client import get_supabase_client
        supabase_client = get_supabase_client()

    try:
        if supabase_client is None:
            stored = _local_role(user_id)
        else:
            result = (
                supabase_client.table("user_roles")
                .select("role")
                .eq("user_id", user_id)
                .maybe_single()
                .execute()
            )
            data = result.data if result else None
            stored = data.get("role") if data else None
        if stored in ROLES:
            role = stored
    except Exception as e:
        current_app.logger.error("SECURITY: Erro ao buscar papel do usuário %s: %s", user_id, e)

    g.current_role = role
    return role


def require_role(role: str):
    """
    DECORATOR: Bloqueia a rota para usuários sem o papel exigido.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            user_id = get_current_user_id()
            if not user_id:
                current_app.logger.error("SECURITY: Bloqueando acesso a %s - sem user_id válido", request.endpoint)
                return jsonify({"success": False, "message": "Sessão inválida"}), 401

            current = get_current_role()
            if current != role:
                current_app.logger.warning("SECURITY: user_id %s (%s) sem permissão para %s",
                                           user_id, current, request.endpoint)
                return jsonify({"success": False, "message": "Acesso restrito a administradores"}), 403

            return f(*args, **kwargs)
        return decorated_function
    return decorator


def log_data_access(table_name, action, record_count=None):
    """
    AUDITORIA: Log de operações de escrita em dados financeiros.
    """
    current_app.logger.info("AUDIT: %s em %s - user_id: %s - registros: %s - endpoint: %s",
                            action, table_name, get_current_user_id(), record_count, request.endpoint)


def init_security_middleware(app):
    """
    INICIALIZAÇÃO: Registra middleware de auditoria global.
    """
    @app.before_request
    def security_before_request():
        if request.endpoint and not request.endpoint.startswith("static"):
            user_id = get_current_user_id()
            if user_id:
                g.current_user_id = user_id
                g.security_check_time = time.time()

    @app.after_request
    def security_after_request(response):
        if hasattr(g, "current_user_id"):
            duration = time.time() - g.security_check_time
            app.logger.info("AUDIT: Requisição concluída - user_id: %s - %s %s - duração: %.3fs - status: %s",
                            g.current_user_id, request.method, request.path, duration, response.status_code)
        return response

    app.logger.info("SECURITY: Middleware de segurança inicializado")
