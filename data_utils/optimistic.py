# data_utils/optimistic.py
"""
ATUALIZAÇÃO OTIMISTA
Aplica a mudança no estado local, confirma no banco e, se falhar,
restaura o snapshot anterior. Um único lugar para o padrão
"snapshot, aplica, grava, restaura".
"""

import copy
import logging
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class OptimisticCommand:
    """
    Comando otimista sobre um estado mutável (dict/list).

    Args:
        apply: muta o estado local com a mudança pretendida
        commit: grava no banco; pode retornar um resultado
        rollback: opcional, chamado após a restauração do snapshot
        name: nome para os logs
    """

    def __init__(
        self,
        apply: Callable[[Any], None],
        commit: Callable[[Any], Any],
        rollback: Optional[Callable[[Any, Exception], None]] = None,
        name: str = "comando",
    ):
        self.apply = apply
        self.commit = commit
        self.rollback = rollback
        self.name = name

    def run(self, state):
        snapshot = copy.deepcopy(state)
        self.apply(state)

        try:
            return self.commit(state)
        except Exception as e:
            logger.warning("OPTIMISTIC: %s falhou, restaurando estado anterior: %s", self.name, e)
            _restore(state, snapshot)
            if self.rollback:
                self.rollback(state, e)
            raise


def _restore(state, snapshot):
    """Restaura o snapshot no mesmo objeto (quem tem a referência vê o estado antigo)."""
    if isinstance(state, dict):
        state.clear()
        state.update(snapshot)
    elif isinstance(state, list):
        state[:] = snapshot
    else:
        state.__dict__.clear()
        state.__dict__.update(snapshot.__dict__)


def run_optimistic(state, apply, commit, rollback=None, name: str = "comando"):
    """Atalho para OptimisticCommand(...).run(state)."""
    return OptimisticCommand(apply, commit, rollback, name).run(state)
