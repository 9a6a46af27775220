import os
import logging
from flask import session, current_app, has_request_context

# IMPORTANTE: Carregar variáveis de ambiente primeiro
from dotenv import load_dotenv, find_dotenv
load_dotenv(find_dotenv(".env.local", usecwd=True))
load_dotenv()

_url = os.getenv("SUPABASE_URL")
_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")
_anon_key = os.getenv("SUPABASE_ANON_KEY")

SUPABASE_CONFIGURED = bool(_url and _key)
# LOCAL_DB=1: sem Supabase, só funcionários e papéis (banco local do models.py)
USE_LOCAL_DB = not SUPABASE_CONFIGURED and os.getenv("LOCAL_DB", "").lower() in ("1", "true", "yes", "on")

if USE_LOCAL_DB:
    logging.warning("SUPABASE não configurado - usando banco local (SQLAlchemy) para funcionários e papéis")
    supabase_admin = None
elif not SUPABASE_CONFIGURED:
    # Sem Supabase: banco em memória para desenvolvimento local
    logging.warning("SUPABASE não configurado - usando sistema fallback local")
    from fallback_data import create_fallback_client
    supabase_admin = create_fallback_client()
else:
    from supabase import create_client, Client

    # Log das configurações para debug (sem expor as chaves completas)
    logging.info("SUPABASE_CONFIG: URL presente: %s", bool(_url))
    logging.info("SUPABASE_CONFIG: SERVICE_ROLE_KEY presente: %s", bool(_key))
    logging.info("SUPABASE_CONFIG: ANON_KEY presente: %s", bool(_anon_key))

    if _key and not _key.startswith("eyJ"):
        logging.error("SUPABASE_CONFIG: SERVICE_KEY não parece ser um JWT válido")

    # Cliente administrativo (para operações que não precisam de auth)
    supabase_admin: Client = create_client(_url, _key)


def get_supabase_client():
    """
    Retorna cliente Supabase configurado com token do usuário atual (se disponível).
    Fallback para cliente administrativo.
    """
    if not SUPABASE_CONFIGURED or not has_request_context():
        return supabase_admin

    user = session.get("user", {})
    access_token = user.get("access_token")

    if not access_token or not _anon_key:
        return supabase_admin

    try:
        # Cliente autenticado com token do usuário (RLS do Supabase se aplica)
        client = create_client(_url, _anon_key)
        client.postgrest.auth(access_token)
        return client
    except Exception as e:
        current_app.logger.error("SUPABASE_CLIENT: Falha ao criar cliente autenticado: %s", e)

    current_app.logger.info("SUPABASE_CLIENT: Usando cliente administrativo (fallback)")
    return supabase_admin


async def create_async_supabase_client():
    """Cliente assíncrono usado pelo listener de realtime."""
    if not SUPABASE_CONFIGURED:
        raise RuntimeError("SUPABASE_URL ou SUPABASE_SERVICE_ROLE_KEY não configurados.")

    from supabase import acreate_client
    return await acreate_client(_url, _key)

