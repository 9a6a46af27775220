# data_utils/__init__.py
"""
UTILITÁRIOS DE CONSISTÊNCIA
Paginação segura, validação dos campos derivados de contratos, monitoramento,
atualização otimista e log de compensação.
"""

__version__ = "1.0.0"

from .safe_pagination import safe_paginated_query, SafePaginationError
from .optimistic import OptimisticCommand, run_optimistic
from .compensation import CompensationLog, CompensationError
from .monitoring import ContractMonitor, init_monitor

__all__ = [
    'safe_paginated_query',
    'SafePaginationError',
    'OptimisticCommand',
    'run_optimistic',
    'CompensationLog',
    'CompensationError',
    'ContractMonitor',
    'init_monitor',
]
