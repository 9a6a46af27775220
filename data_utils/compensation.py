# data_utils/compensation.py
"""
LOG DE COMPENSAÇÃO
O PostgREST não oferece transação entre várias chamadas. Cada escrita
remota registra aqui como desfazê-la; se um passo seguinte falhar,
compensate() desfaz os anteriores em ordem reversa.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, List

logger = logging.getLogger(__name__)


class CompensationError(Exception):
    """Falha ao desfazer uma ou mais escritas"""

    def __init__(self, message: str, failures: List[str]):
        super().__init__(message)
        self.failures = failures


@dataclass
class CompensationStep:
    description: str
    undo: Callable[[], None]


@dataclass
class CompensationLog:
    name: str = "cascata"
    steps: List[CompensationStep] = field(default_factory=list)

    def record(self, description: str, undo: Callable[[], None]):
        self.steps.append(CompensationStep(description, undo))

    def compensate(self):
        """
        Desfaz os passos registrados, do último para o primeiro.
        Continua mesmo se algum desfazer falhar e, no fim, levanta
        CompensationError listando os que falharam.
        """
        failures = []
        while self.steps:
            step = self.steps.pop()
            try:
                step.undo()
                logger.info("COMPENSATION[%s]: desfeito '%s'", self.name, step.description)
            except Exception as e:
                logger.error("COMPENSATION[%s]: falha ao desfazer '%s': %s", self.name, step.description, e)
                failures.append(step.description)

        if failures:
            raise CompensationError(
                f"Não foi possível desfazer {len(failures)} passo(s) de {self.name}", failures
            )

    def clear(self):
        self.steps.clear()

    def __len__(self):
        return len(self.steps)
