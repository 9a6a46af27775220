"""
Sistema de dados fallback para quando o Supabase não está disponível.
Mantém as tabelas da agência em memória e imita o query builder do PostgREST
(select/insert/update/delete + filtros), o suficiente para o app rodar local.
"""

import copy
import logging
import re
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

TABLES = (
    "clients",
    "contracts",
    "installments",
    "commissions",
    "expenses",
    "employees",
    "user_roles",
    "financial_overview",
)

_EMBED_RE = re.compile(r"(\w+)\s*\(([^)]*)\)")


class FallbackError(Exception):
    """Erro simulado do banco fallback"""
    pass


class FallbackResult:
    def __init__(self, data, count=None):
        self.data = data
        self.count = count


class FallbackSupabaseClient:
    """Cliente Supabase fallback que usa dados locais."""

    def __init__(self, data: Optional[Dict[str, List[Dict]]] = None):
        self.tables = {name: [] for name in TABLES}
        for name, rows in (data or {}).items():
            self.tables[name] = [dict(r) for r in rows]
        self._failures = []
        self.calls = []

    def table(self, table_name: str):
        """Simula a interface table() do Supabase."""
        self.tables.setdefault(table_name, [])
        return FallbackTable(self, table_name)

    # alias usado pelo supabase-py
    from_ = table

    def fail_when(self, table_name: str, operation: str, match: Optional[Dict[str, Any]] = None, times: int = 1):
        """Agenda uma falha para a próxima operação que casar com tabela/operação/filtros."""
        self._failures.append({"table": table_name, "op": operation, "match": match or {}, "times": times})

    def _check_failure(self, table_name: str, operation: str, filters: List, payload):
        for failure in self._failures:
            if failure["table"] != table_name or failure["op"] != operation or failure["times"] <= 0:
                continue
            eq_filters = {col: val for kind, col, val in filters if kind == "eq"}
            if isinstance(payload, dict):
                eq_filters = {**payload, **eq_filters}
            if all(eq_filters.get(k) == v for k, v in failure["match"].items()):
                failure["times"] -= 1
                raise FallbackError(f"Falha simulada em {operation} na tabela {table_name}")


class FallbackTable:
    """Simula uma tabela Supabase com dados em memória."""

    def __init__(self, client: FallbackSupabaseClient, table_name: str):
        self.client = client
        self.table_name = table_name
        self.operation = "select"
        self.payload = None
        self.filters = []
        self.selected_columns = "*"
        self.order_by_fields = []
        self.limit_count = None
        self.range_bounds = None
        self.single_mode = None

    @property
    def rows(self) -> List[Dict]:
        return self.client.tables[self.table_name]

    # ---- operações ----
    def select(self, columns: str = "*", count: Optional[str] = None):
        self.selected_columns = columns
        return self

    def insert(self, payload):
        self.operation = "insert"
        self.payload = payload
        return self

    def update(self, payload: Dict):
        self.operation = "update"
        self.payload = payload
        return self

    def delete(self):
        self.operation = "delete"
        return self

    # ---- filtros ----
    def eq(self, column: str, value: Any):
        self.filters.append(("eq", column, value))
        return self

    def neq(self, column: str, value: Any):
        self.filters.append(("neq", column, value))
        return self

    def in_(self, column: str, values):
        self.filters.append(("in", column, list(values)))
        return self

    def gte(self, column: str, value: Any):
        self.filters.append(("gte", column, value))
        return self

    def gt(self, column: str, value: Any):
        self.filters.append(("gt", column, value))
        return self

    def lte(self, column: str, value: Any):
        self.filters.append(("lte", column, value))
        return self

    def lt(self, column: str, value: Any):
        self.filters.append(("lt", column, value))
        return self

    def order(self, column: str, desc: bool = False):
        self.order_by_fields.append((column, desc))
        return self

    def limit(self, count: int):
        self.limit_count = count
        return self

    def range(self, start: int, end: int):
        self.range_bounds = (start, end)
        return self

    def single(self):
        self.single_mode = "single"
        return self

    def maybe_single(self):
        self.single_mode = "maybe"
        return self

    # ---- execução ----
    def _matches(self, row: Dict) -> bool:
        for kind, column, value in self.filters:
            current = row.get(column)
            if kind == "eq" and current != value:
                return False
            if kind == "neq" and current == value:
                return False
            if kind == "in" and current not in value:
                return False
            if kind in ("gte", "gt", "lte", "lt"):
                if current is None:
                    return False
                if kind == "gte" and not current >= value:
                    return False
                if kind == "gt" and not current > value:
                    return False
                if kind == "lte" and not current <= value:
                    return False
                if kind == "lt" and not current < value:
                    return False
        return True

    def _project(self, row: Dict) -> Dict:
        columns = self.selected_columns or "*"
        embeds = _EMBED_RE.findall(columns)
        plain = [c.strip() for c in _EMBED_RE.sub("", columns).split(",") if c.strip()]

        if "*" in plain or not plain:
            result = copy.deepcopy(row)
        else:
            result = {c: copy.deepcopy(row.get(c)) for c in plain}

        for relation, rel_columns in embeds:
            fk = relation[:-1] + "_id" if relation.endswith("s") else relation + "_id"
            target_id = row.get(fk)
            related = next((r for r in self.client.tables.get(relation, []) if r.get("id") == target_id), None)
            if related is None:
                result[relation] = None
                continue
            wanted = [c.strip() for c in rel_columns.split(",") if c.strip()]
            if not wanted or "*" in wanted:
                result[relation] = copy.deepcopy(related)
            else:
                result[relation] = {c: copy.deepcopy(related.get(c)) for c in wanted}
        return result

    def _sorted(self, rows: List[Dict]) -> List[Dict]:
        for column, desc in reversed(self.order_by_fields):
            present = [r for r in rows if r.get(column) is not None]
            missing = [r for r in rows if r.get(column) is None]
            present.sort(key=lambda r: r.get(column), reverse=desc)
            rows = present + missing
        return rows

    def execute(self):
        self.client.calls.append((self.table_name, self.operation, list(self.filters)))
        self.client._check_failure(self.table_name, self.operation, self.filters, self.payload)

        if self.operation == "insert":
            data = self._execute_insert()
        elif self.operation == "update":
            data = self._execute_update()
        elif self.operation == "delete":
            data = self._execute_delete()
        else:
            data = self._execute_select()

        logger.debug("FALLBACK: %s em %s retornou %d registros", self.operation, self.table_name,
                     len(data) if isinstance(data, list) else int(data is not None))
        return FallbackResult(data, count=len(data) if isinstance(data, list) else None)

    def _execute_select(self):
        rows = self._sorted([r for r in self.rows if self._matches(r)])
        if self.range_bounds:
            start, end = self.range_bounds
            rows = rows[start:end + 1]
        if self.limit_count:
            rows = rows[:self.limit_count]
        data = [self._project(r) for r in rows]

        if self.single_mode == "single":
            if len(data) != 1:
                raise FallbackError(f"Esperado 1 registro em {self.table_name}, encontrados {len(data)}")
            return data[0]
        if self.single_mode == "maybe":
            return data[0] if data else None
        return data

    def _execute_insert(self):
        payload = self.payload if isinstance(self.payload, list) else [self.payload]
        inserted = []
        now = datetime.now().isoformat()
        for item in payload:
            row = dict(item)
            row.setdefault("id", str(uuid.uuid4()))
            row.setdefault("created_at", now)
            self.rows.append(row)
            inserted.append(copy.deepcopy(row))
        return inserted

    def _execute_update(self):
        updated = []
        for row in self.rows:
            if self._matches(row):
                row.update(copy.deepcopy(self.payload))
                updated.append(copy.deepcopy(row))
        return updated

    def _execute_delete(self):
        kept, deleted = [], []
        for row in self.rows:
            (deleted if self._matches(row) else kept).append(row)
        self.client.tables[self.table_name] = kept
        return [copy.deepcopy(r) for r in deleted]


def create_fallback_client(data: Optional[Dict[str, List[Dict]]] = None):
    """Cria um cliente Supabase fallback em memória."""
    logger.warning("FALLBACK: Criando cliente Supabase em memória (dados não persistem)")
    return FallbackSupabaseClient(data)
