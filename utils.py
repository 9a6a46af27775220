import re
from functools import wraps
from flask import session, current_app, request, jsonify


def is_logged():
    user = session.get("user")
    if not user:
        current_app.logger.debug("IS_LOGGED: Sem user na sessão")
        return False

    # Sessão é preenchida pelo Supabase Auth (fora deste app)
    return bool(user.get("id") or user.get("supabase_user_id"))


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        if not is_logged():
            current_app.logger.info("IS_LOGGED: Acesso negado a %s", request.path)
            return jsonify({"success": False, "message": "Sessão expirada. Faça login novamente."}), 401
        return view(*args, **kwargs)
    return wrapped


def to_float(x) -> float:
    """Converte qualquer coisa para float de forma segura (aceita '1.234,56')."""
    if isinstance(x, (int, float)):
        return float(x)
    if x is None:
        return 0.0
    s = str(x).strip().replace("R$", "").strip()
    if s == "" or s.upper() == "NULL":
        return 0.0
    if "," in s and "." in s:
        s = s.replace(".", "").replace(",", ".")
    else:
        s = s.replace(",", ".")
    m = re.search(r"-?\d+(\.\d+)?", s)
    if not m:
        return 0.0
    return float(m.group(0))


def brl(value):
    try:
        v = float(value or 0)
    except (TypeError, ValueError):
        return "R$ 0,00"
    s = f"{v:,.2f}"                 # 12,345,678.90
    s = s.replace(",", "§").replace(".", ",").replace("§", ".")
    return f"R$ {s}"


def to_bool(x) -> bool:
    """Flag de formulário/JSON: True, 1, '1', 'true', 'on', 'sim'. Strings como 'false' dão False."""
    if isinstance(x, bool):
        return x
    if x is None:
        return False
    if isinstance(x, (int, float)):
        return x != 0
    return str(x).strip().lower() in ("1", "true", "yes", "on", "sim")
