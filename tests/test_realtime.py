# tests/test_realtime.py
import asyncio
import unittest
from unittest.mock import AsyncMock, Mock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from flask import Flask
from services.pipeline import PipelineState
from services.realtime import RealtimeListener, init_realtime


def _fake_client():
    channel = Mock()
    channel.on_postgres_changes.return_value = channel
    channel.subscribe = AsyncMock()
    client = Mock()
    client.channel.return_value = channel
    client.remove_channel = AsyncMock()
    return client, channel


class TestRealtimeListener(unittest.TestCase):

    def test_clients_payload_updates_pipeline(self):
        state = PipelineState([])
        listener = RealtimeListener(AsyncMock(), state)

        listener.handle_clients_change({"eventType": "INSERT", "new": {"id": "a", "stage": "radar"}})
        listener.handle_clients_change({"eventType": "DELETE", "old": {"id": "zzz"}})

        self.assertEqual(state.get("a")["stage"], "radar")

    def test_any_change_triggers_refetch(self):
        trigger = Mock()
        listener = RealtimeListener(AsyncMock(), PipelineState([]), trigger)

        listener.handle_any_change({"table": "installments"})

        trigger.assert_called_once_with({"table": "installments"})

    def test_trigger_errors_are_contained(self):
        listener = RealtimeListener(AsyncMock(), PipelineState([]), Mock(side_effect=RuntimeError("x")))
        listener.handle_any_change({})

    def test_subscribes_both_channels_and_cleans_up(self):
        client, channel = _fake_client()
        listener = RealtimeListener(AsyncMock(return_value=client), PipelineState([]))

        async def scenario():
            task = asyncio.ensure_future(listener._run())
            for _ in range(100):
                if listener.running:
                    break
                await asyncio.sleep(0)
            self.assertTrue(listener.running)
            listener._stop.set()
            await task

        asyncio.run(scenario())

        names = [call.args[0] for call in client.channel.call_args_list]
        self.assertEqual(names, ["clients-realtime", "db-changes"])
        first = channel.on_postgres_changes.call_args_list[0]
        self.assertEqual(first.kwargs["table"], "clients")
        self.assertEqual(client.remove_channel.await_count, 2)
        self.assertFalse(listener.running)


class TestInitRealtime(unittest.TestCase):

    def test_disabled_by_config(self):
        app = Flask(__name__)
        app.config["REALTIME_ENABLED"] = False

        self.assertIsNone(init_realtime(app))
        self.assertNotIn("realtime_listener", app.extensions)


if __name__ == "__main__":
    unittest.main()
