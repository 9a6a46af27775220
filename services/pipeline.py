# services/pipeline.py
"""
Pipeline do CRM.

O quadro é um modelo de leitura mantido por eventos de mudança (realtime):
um mapa id -> cliente onde cada evento é aplicado de forma idempotente, e as
colunas são derivadas do campo stage. Eventos podem chegar repetidos ou fora
de ordem: ids excluídos ficam marcados e registros com updated_at mais
antigo que o guardado são descartados. Refetch: PipelineState.reset.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import AbstractSet, Dict, List, Optional, Union

logger = logging.getLogger(__name__)

STAGES = ("radar", "contato", "negociacao", "fechado", "perdido")
STAGE_TITLES = {
    "radar": "Radar",
    "contato": "Contato",
    "negociacao": "Negociação",
    "fechado": "Fechado",
    "perdido": "Perdido",
}
PAYER_RELATIONSHIPS = ("self", "parent", "guardian", "other")
PAYMENT_METHODS = ("pix", "transfer", "credit_card", "boleto")

CLIENT_FIELDS = (
    "name", "email", "phone", "school", "nationality", "sport", "value", "deal_value",
    "avatar_url", "notes", "next_step_notes",
)


class PipelineError(Exception):
    """Erro de validação do pipeline"""
    pass


class ClientNotFound(PipelineError):
    """Cliente inexistente"""
    pass


# ---- Eventos ----------------------------------------------------------------------

@dataclass(frozen=True)
class ClientInserted:
    record: Dict


@dataclass(frozen=True)
class ClientUpdated:
    record: Dict
    old: Dict = field(default_factory=dict)


@dataclass(frozen=True)
class ClientDeleted:
    client_id: str


ChangeEvent = Union[ClientInserted, ClientUpdated, ClientDeleted]


def event_from_payload(payload: Dict) -> Optional[ChangeEvent]:
    """
    Converte o payload do Supabase Realtime em evento.
    Aceita o formato eventType/new/old e o formato data.type/record/old_record.
    """
    if not payload:
        return None

    data = payload.get("data") if isinstance(payload.get("data"), dict) else payload
    kind = (data.get("eventType") or data.get("type") or "").upper()
    new = data.get("new") or data.get("record") or {}
    old = data.get("old") or data.get("old_record") or {}

    if kind == "INSERT" and new.get("id"):
        return ClientInserted(dict(new))
    if kind == "UPDATE" and new.get("id"):
        return ClientUpdated(dict(new), dict(old))
    if kind == "DELETE" and old.get("id"):
        return ClientDeleted(old["id"])

    logger.warning("PIPELINE: payload realtime ignorado: %s", kind or payload)
    return None


# ---- Modelo de leitura ------------------------------------------------------------

def _stamp(record: Dict) -> Optional[datetime]:
    """updated_at como datetime UTC sem tz; None se ausente ou ilegível."""
    raw = record.get("updated_at")
    if not raw:
        return None
    if isinstance(raw, datetime):
        parsed = raw
    else:
        try:
            parsed = datetime.fromisoformat(str(raw).replace("Z", "+00:00"))
        except ValueError:
            return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def apply_event(clients: Dict[str, Dict], event: ChangeEvent, deleted: AbstractSet[str] = frozenset()) -> Dict[str, Dict]:
    """
    Aplica um evento ao mapa id -> cliente e devolve um novo mapa.

    Aplicar o mesmo evento duas vezes tem o mesmo efeito que uma. Como a
    ordem de chegada não é garantida, insert/update de um id em `deleted`
    é descartado, assim como um registro com updated_at anterior ao já
    guardado.
    """
    result = dict(clients)
    if isinstance(event, (ClientInserted, ClientUpdated)):
        record = event.record
        if record["id"] in deleted:
            return result
        current = result.get(record["id"], {})
        incoming, stored = _stamp(record), _stamp(current)
        if incoming and stored and incoming < stored:
            return result
        result[record["id"]] = {**current, **record}
    elif isinstance(event, ClientDeleted):
        result.pop(event.client_id, None)
    return result


def build_columns(clients: Dict[str, Dict]) -> List[Dict]:
    """Colunas do quadro derivadas do stage, mais recentes primeiro."""
    columns = []
    for stage in STAGES:
        members = [c for c in clients.values() if c.get("stage") == stage]
        members.sort(key=lambda c: str(c.get("updated_at") or c.get("created_at") or ""), reverse=True)
        columns.append({"id": stage, "title": STAGE_TITLES[stage], "clients": members})
    return columns


class PipelineState:
    """Modelo de leitura compartilhado entre o thread realtime e as requisições."""

    def __init__(self, clients: Optional[List[Dict]] = None):
        self._lock = threading.Lock()
        self._clients = {c["id"]: dict(c) for c in clients or []}
        # ids excluídos; eventos atrasados desses ids são descartados
        self._deleted = frozenset()
        self.loaded = clients is not None

    def reset(self, clients: List[Dict]):
        with self._lock:
            self._clients = {c["id"]: dict(c) for c in clients}
            self._deleted = frozenset(i for i in self._deleted if i not in self._clients)
            self.loaded = True

    def apply(self, event: Optional[ChangeEvent]):
        if event is None:
            return
        with self._lock:
            self._clients = apply_event(self._clients, event, self._deleted)
            if isinstance(event, ClientDeleted):
                self._deleted = self._deleted | {event.client_id}

    def handle_payload(self, payload: Dict):
        self.apply(event_from_payload(payload))

    def get(self, client_id: str) -> Optional[Dict]:
        with self._lock:
            client = self._clients.get(client_id)
            return dict(client) if client else None

    def columns(self) -> List[Dict]:
        with self._lock:
            snapshot = dict(self._clients)
        return build_columns(snapshot)

    def __len__(self):
        return len(self._clients)


# estado do processo, alimentado pelo listener realtime
pipeline_state = PipelineState()


# ---- Serviço ----------------------------------------------------------------------

class PipelineService:
    """CRUD de clientes/prospects e movimentação no pipeline."""

    def __init__(self, supabase, state: Optional[PipelineState] = None):
        self.supabase = supabase
        self.state = state if state is not None else pipeline_state

    def list_clients(self) -> List[Dict]:
        return (
            self.supabase.table("clients").select("*").order("updated_at", desc=True).execute()
        ).data or []

    def board(self, refresh: bool = False) -> List[Dict]:
        """Colunas do quadro; carrega do banco na primeira vez ou quando pedido."""
        if refresh or not self.state.loaded:
            self.state.reset(self.list_clients())
        return self.state.columns()

    def create_client(self, data: Dict) -> Dict:
        name = (data.get("name") or "").strip()
        if len(name) < 2:
            raise PipelineError("Nome obrigatório")
        stage = data.get("stage") or "radar"
        if stage not in STAGES:
            raise PipelineError(f"Etapa inválida: {stage}")

        row = {k: data.get(k) for k in CLIENT_FIELDS if data.get(k) not in (None, "")}
        row.update({"name": name, "stage": stage})
        if stage == "fechado":
            row["closed_at"] = datetime.now().isoformat()

        created = self.supabase.table("clients").insert(row).execute().data or []
        if not created:
            raise PipelineError("Erro ao criar cliente")
        self.state.apply(ClientInserted(created[0]))
        logger.info("PIPELINE: cliente %s criado em %s", created[0].get("id"), stage)
        return created[0]

    def update_client(self, client_id: str, data: Dict) -> Dict:
        update = {k: data[k] for k in CLIENT_FIELDS if k in data}
        if "name" in update and len((update["name"] or "").strip()) < 2:
            raise PipelineError("Nome obrigatório")
        return self._update(client_id, update)

    def move_stage(self, client_id: str, stage: str, lost_reason: Optional[str] = None) -> Dict:
        if stage not in STAGES:
            raise PipelineError(f"Etapa inválida: {stage}")

        update = {"stage": stage}
        if stage == "fechado":
            update["closed_at"] = datetime.now().isoformat()
        if stage == "perdido":
            reason = (lost_reason or "").strip()
            if not reason:
                raise PipelineError("Informe o motivo da perda")
            update["lost_reason"] = reason
        return self._update(client_id, update)

    def schedule_meeting(self, client_id: str, meeting_date, responsible: str) -> Dict:
        responsible = (responsible or "").strip()
        if not meeting_date or not responsible:
            raise PipelineError("Informe data e responsável pela reunião")
        if isinstance(meeting_date, datetime):
            meeting_date = meeting_date.isoformat()
        return self._update(client_id, {"meeting_date": meeting_date, "meeting_responsible": responsible})

    def update_payer(self, client_id: str, data: Dict) -> Dict:
        relationship = data.get("payer_relationship") or "self"
        if relationship not in PAYER_RELATIONSHIPS:
            raise PipelineError("Relação do pagador inválida")
        method = data.get("payment_method") or None
        if method and method not in PAYMENT_METHODS:
            raise PipelineError("Forma de pagamento inválida")
        return self._update(client_id, {
            "payer_name": data.get("payer_name") or None,
            "payer_email": data.get("payer_email") or None,
            "payer_phone": data.get("payer_phone") or None,
            "payer_relationship": relationship,
            "payment_method": method,
        })

    def delete_client(self, client_id: str):
        self.supabase.table("clients").delete().eq("id", client_id).execute()
        self.state.apply(ClientDeleted(client_id))

    def _update(self, client_id: str, update: Dict) -> Dict:
        update = {**update, "updated_at": datetime.now().isoformat()}
        updated = self.supabase.table("clients").update(update).eq("id", client_id).execute().data or []
        if not updated:
            raise ClientNotFound("Cliente não encontrado")
        self.state.apply(ClientUpdated(updated[0]))
        return updated[0]
