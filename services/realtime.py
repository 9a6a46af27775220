# services/realtime.py
"""
Listener do Supabase Realtime.

Roda um cliente assíncrono num thread daemon com seu próprio event loop:
  - canal 'clients-realtime' (public.clients) alimenta o quadro do pipeline;
  - canal 'db-changes' (qualquer tabela do schema public) só avisa que algo
    mudou e invalida o cache financeiro.
Notificações são at-least-once e sem ordem: servem de gatilho de refetch.
"""
import asyncio
import logging
import threading
from typing import Callable, Optional

from services.pipeline import PipelineState, pipeline_state

logger = logging.getLogger(__name__)


class RealtimeListener:
    def __init__(
        self,
        client_factory: Callable,
        state: Optional[PipelineState] = None,
        on_any_change: Optional[Callable[[dict], None]] = None,
    ):
        self.client_factory = client_factory
        self.state = state if state is not None else pipeline_state
        self.on_any_change = on_any_change
        self.thread = None
        self.loop = None
        self._stop = None
        self.running = False

    # ---- callbacks (chamados pelo realtime) ----
    def handle_clients_change(self, payload):
        try:
            self.state.handle_payload(payload)
        except Exception as e:
            logger.error("REALTIME: erro aplicando evento de clients: %s", e)

    def handle_any_change(self, payload):
        if not self.on_any_change:
            return
        try:
            self.on_any_change(payload)
        except Exception as e:
            logger.error("REALTIME: erro no gatilho de refetch: %s", e)

    # ---- ciclo de vida ----
    async def _run(self):
        self._stop = asyncio.Event()
        client = await self.client_factory()

        clients_channel = client.channel("clients-realtime")
        await clients_channel.on_postgres_changes(
            "*", schema="public", table="clients", callback=self.handle_clients_change
        ).subscribe()

        db_channel = client.channel("db-changes")
        await db_channel.on_postgres_changes(
            "*", schema="public", callback=self.handle_any_change
        ).subscribe()

        logger.info("REALTIME: inscrito em clients-realtime e db-changes")
        self.running = True
        try:
            await self._stop.wait()
        finally:
            self.running = False
            await client.remove_channel(clients_channel)
            await client.remove_channel(db_channel)
            logger.info("REALTIME: canais removidos")

    def _thread_main(self):
        self.loop = asyncio.new_event_loop()
        asyncio.set_event_loop(self.loop)
        try:
            self.loop.run_until_complete(self._run())
        except Exception as e:
            logger.error("REALTIME: listener encerrado com erro: %s", e)
        finally:
            self.loop.close()

    def start(self):
        if self.thread and self.thread.is_alive():
            return
        self.thread = threading.Thread(target=self._thread_main, name="realtime-listener", daemon=True)
        self.thread.start()

    def stop(self, timeout: float = 10):
        if self.loop and self._stop and not self.loop.is_closed():
            self.loop.call_soon_threadsafe(self._stop.set)
        if self.thread:
            self.thread.join(timeout=timeout)


def init_realtime(app) -> Optional[RealtimeListener]:
    """Inicia o listener se REALTIME_ENABLED estiver ligado e o Supabase configurado."""
    if not app.config.get("REALTIME_ENABLED"):
        app.logger.info("REALTIME: desabilitado")
        return None

    from supabase_client import SUPABASE_CONFIGURED, create_async_supabase_client
    if not SUPABASE_CONFIGURED:
        app.logger.warning("REALTIME: Supabase não configurado, listener não iniciado")
        return None

    def refetch_trigger(payload):
        from cache_manager import invalidate_financial_cache
        with app.app_context():
            invalidate_financial_cache()

    listener = RealtimeListener(create_async_supabase_client, pipeline_state, refetch_trigger)
    listener.start()
    app.extensions["realtime_listener"] = listener
    return listener
