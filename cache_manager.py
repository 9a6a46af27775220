"""
Sistema de cache centralizado para as consultas financeiras.
Usa Flask-Caching com TTL por prefixo.

Os dados da agência são compartilhados entre usuários, então as chaves não
são por usuário: cada prefixo tem uma "geração" que é incrementada para
invalidar tudo daquele prefixo de uma vez (mutações e eventos realtime).
"""
import hashlib
import os
from functools import wraps
from flask import current_app
from flask_caching import Cache

cache = Cache()

# TTL em segundos
CACHE_TIMEOUTS = {
    'contracts_list': 5 * 60,
    'client_contracts': 5 * 60,
    'dre_records': 10 * 60,
    'expenses_list': 10 * 60,
    'employees_list': 30 * 60,
}
DEFAULT_TIMEOUT = 300

FINANCIAL_PREFIXES = ('contracts_list', 'client_contracts', 'dre_records', 'expenses_list')


def _generation_key(prefix: str) -> str:
    return f"agencia:gen:{prefix}"


def _generation(prefix: str) -> int:
    return cache.get(_generation_key(prefix)) or 0


def make_cache_key(prefix: str, *args, **kwargs) -> str:
    """Chave = prefixo + geração atual + argumentos da chamada."""
    raw = repr((prefix, _generation(prefix), args, sorted(kwargs.items())))
    return f"agencia:{prefix}:{hashlib.sha1(raw.encode()).hexdigest()}"


def cached_query(cache_key_prefix: str, timeout: int = None):
    """
    Decorator de cache para leituras do Supabase.

    Falhas do backend de cache nunca derrubam a consulta: a função é
    executada direto e o erro vai para o log.

        @cached_query('contracts_list')
        def _listar_contratos(status):
            ...
    """
    ttl = timeout or CACHE_TIMEOUTS.get(cache_key_prefix, DEFAULT_TIMEOUT)

    def decorator(func):
        @wraps(func)
        def wrapper(*args, **kwargs):
            try:
                key = make_cache_key(cache_key_prefix, *args, **kwargs)
                hit = cache.get(key)
            except Exception as e:
                current_app.logger.warning("CACHE: leitura falhou em %s: %s", cache_key_prefix, e)
                return func(*args, **kwargs)

            if hit is not None:
                return hit

            result = func(*args, **kwargs)
            try:
                cache.set(key, result, timeout=ttl)
            except Exception as e:
                current_app.logger.warning("CACHE: escrita falhou em %s: %s", cache_key_prefix, e)
            return result
        return wrapper
    return decorator


def invalidate_prefix(cache_key_prefix: str) -> bool:
    """Invalida todas as entradas de um prefixo incrementando a geração."""
    try:
        cache.set(_generation_key(cache_key_prefix), _generation(cache_key_prefix) + 1, timeout=0)
    except Exception as e:
        current_app.logger.warning("CACHE: invalidação falhou em %s: %s", cache_key_prefix, e)
        return False
    return True


def invalidate_financial_cache() -> bool:
    """Contratos, DRE e despesas. Chamado após mutações e a cada evento realtime."""
    results = [invalidate_prefix(prefix) for prefix in FINANCIAL_PREFIXES]
    current_app.logger.debug("CACHE: prefixos financeiros invalidados")
    return all(results)


def init_cache(app):
    cache_type = app.config.get('CACHE_TYPE', 'SimpleCache')
    cache_config = {'CACHE_TYPE': cache_type, 'CACHE_DEFAULT_TIMEOUT': DEFAULT_TIMEOUT}

    if cache_type in ('redis', 'RedisCache'):
        cache_config['CACHE_REDIS_URL'] = os.getenv('REDIS_URL', 'redis://localhost:6379/0')
        cache_config['CACHE_KEY_PREFIX'] = 'agencia_cache:'

    cache.init_app(app, config=cache_config)
    app.logger.info("CACHE: inicializado (%s)", cache_type)
    return cache
