# data_utils/safe_pagination.py
"""
UTILITÁRIO DE PAGINAÇÃO SEGURA
O PostgREST devolve no máximo N linhas por resposta. Leituras completas
(DRE, validação de contratos) percorrem todas as páginas com ordenação
estável por id para não perder nem repetir linhas.
"""

from typing import Any, Dict, Iterator, List, Optional
import logging

logger = logging.getLogger(__name__)

# operador do filtro -> método do query builder
OPERATORS = {
    "eq": "eq",
    "neq": "neq",
    "gte": "gte",
    "lte": "lte",
    "lt": "lt",
    "in": "in_",
}


class SafePaginationError(Exception):
    """Erro específico de paginação segura"""
    pass


def _apply_filters(query, filters: Optional[Dict[str, Any]]):
    """
    Filtros simples {campo: valor} viram eq; filtros compostos usam
    {campo: {"operator": "gte", "value": "2024-01-01"}}.
    """
    for column, spec in (filters or {}).items():
        if not (isinstance(spec, dict) and "operator" in spec):
            query = query.eq(column, spec)
            continue
        method = OPERATORS.get(spec["operator"])
        if method is None:
            raise SafePaginationError(f"Operador não suportado: {spec['operator']}")
        query = getattr(query, method)(column, spec["value"])
    return query


def _pages(supabase, table_name, select_fields, filters, order_by, desc, page_size, max_pages) -> Iterator[list]:
    for page in range(max_pages):
        start = page * page_size
        try:
            query = _apply_filters(supabase.table(table_name).select(select_fields), filters)
            rows = query.order(order_by, desc=desc).range(start, start + page_size - 1).execute().data or []
        except SafePaginationError:
            raise
        except Exception as e:
            msg = f"Erro na paginação de {table_name} (página {page + 1}): {e}"
            logger.error(msg)
            raise SafePaginationError(msg) from e

        if rows:
            yield rows
        if len(rows) < page_size:
            return

    logger.warning("PAGINAÇÃO: limite de %d páginas atingido em %s, resultado truncado", max_pages, table_name)


def safe_paginated_query(
    supabase,
    table_name: str,
    select_fields: str = "*",
    filters: Dict[str, Any] = None,
    order_by: str = "id",
    desc: bool = False,
    page_size: int = 1000,
    max_pages: int = 100,
) -> List[Dict[str, Any]]:
    """
    Lê todas as linhas de uma tabela (ou view) página a página.

    Args:
        filters: {campo: valor} ou {campo: {"operator": ..., "value": ...}}
        order_by: coluna única para ordenação estável
        max_pages: teto de páginas; acima dele o resultado é truncado com aviso

    Raises:
        SafePaginationError: operador inválido ou falha do Supabase
    """
    records: List[Dict[str, Any]] = []
    for rows in _pages(supabase, table_name, select_fields, filters, order_by, desc, page_size, max_pages):
        records.extend(rows)

    logger.debug("PAGINAÇÃO: %s -> %d registros", table_name, len(records))
    return records
