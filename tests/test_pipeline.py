# tests/test_pipeline.py
import unittest
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from fallback_data import FallbackSupabaseClient
from services.pipeline import (
    ClientDeleted,
    ClientInserted,
    ClientNotFound,
    ClientUpdated,
    PipelineError,
    PipelineService,
    PipelineState,
    apply_event,
    build_columns,
    event_from_payload,
)


def _column(columns, stage):
    return next(c for c in columns if c["id"] == stage)


class TestPipelineReducer(unittest.TestCase):

    def setUp(self):
        self.clients = {
            "a": {"id": "a", "name": "Ana", "stage": "radar", "updated_at": "2024-01-01"},
            "b": {"id": "b", "name": "Bia", "stage": "contato", "updated_at": "2024-01-02"},
        }

    def test_same_event_twice_equals_once(self):
        event = ClientUpdated({"id": "a", "stage": "negociacao"})

        once = apply_event(self.clients, event)
        twice = apply_event(once, event)

        self.assertEqual(once, twice)
        self.assertEqual(once["a"]["name"], "Ana")

    def test_reducer_does_not_mutate_input(self):
        apply_event(self.clients, ClientDeleted("a"))
        self.assertIn("a", self.clients)

    def test_delete_unknown_is_noop(self):
        self.assertEqual(apply_event(self.clients, ClientDeleted("zzz")), self.clients)

    def test_stage_change_moves_column(self):
        clients = apply_event(self.clients, ClientUpdated({"id": "a", "stage": "fechado"}))
        columns = build_columns(clients)

        self.assertEqual(_column(columns, "radar")["clients"], [])
        self.assertEqual([c["id"] for c in _column(columns, "fechado")["clients"]], ["a"])
        self.assertEqual([c["title"] for c in columns], ["Radar", "Contato", "Negociação", "Fechado", "Perdido"])

    def test_insert_for_existing_id_merges(self):
        clients = apply_event(self.clients, ClientInserted({"id": "b", "name": "Bianca", "stage": "contato"}))
        self.assertEqual(len(clients), 2)
        self.assertEqual(clients["b"]["name"], "Bianca")

    def test_older_update_does_not_overwrite_newer(self):
        newer = ClientUpdated({"id": "a", "stage": "fechado", "updated_at": "2024-01-03T10:00:00+00:00"})
        older = ClientUpdated({"id": "a", "stage": "contato", "updated_at": "2024-01-02T10:00:00Z"})

        clients = apply_event(apply_event(self.clients, newer), older)

        self.assertEqual(clients["a"]["stage"], "fechado")

    def test_update_for_deleted_client_is_dropped(self):
        late = ClientUpdated({"id": "a", "stage": "contato", "updated_at": "2024-01-05"})

        clients = apply_event(self.clients, late, deleted={"a"})

        self.assertEqual(clients, self.clients)

    def test_columns_ordered_by_recent_update(self):
        clients = {
            "x": {"id": "x", "stage": "radar", "updated_at": "2024-01-01T10:00:00"},
            "y": {"id": "y", "stage": "radar", "updated_at": "2024-03-01T10:00:00"},
        }
        self.assertEqual([c["id"] for c in _column(build_columns(clients), "radar")["clients"]], ["y", "x"])


class TestRealtimePayloads(unittest.TestCase):

    def test_event_type_shape(self):
        event = event_from_payload({"eventType": "UPDATE", "new": {"id": "a", "stage": "contato"}, "old": {"id": "a"}})
        self.assertEqual(event, ClientUpdated({"id": "a", "stage": "contato"}, {"id": "a"}))

    def test_data_record_shape(self):
        insert = event_from_payload({"data": {"type": "INSERT", "record": {"id": "n1", "name": "Novo"}}})
        delete = event_from_payload({"data": {"type": "DELETE", "old_record": {"id": "n1"}}})

        self.assertEqual(insert, ClientInserted({"id": "n1", "name": "Novo"}))
        self.assertEqual(delete, ClientDeleted("n1"))

    def test_unknown_payload_is_ignored(self):
        self.assertIsNone(event_from_payload({}))
        self.assertIsNone(event_from_payload({"eventType": "TRUNCATE"}))

    def test_state_drops_late_update_after_delete(self):
        state = PipelineState([{"id": "a", "stage": "radar", "updated_at": "2024-01-01"}])

        state.handle_payload({"eventType": "DELETE", "old": {"id": "a"}})
        state.handle_payload({"eventType": "UPDATE", "new": {"id": "a", "stage": "contato", "updated_at": "2024-01-02"}})

        self.assertIsNone(state.get("a"))
        self.assertTrue(all(c["clients"] == [] for c in state.columns()))

    def test_state_keeps_newest_update_regardless_of_arrival(self):
        state = PipelineState([{"id": "a", "stage": "radar", "updated_at": "2024-01-01"}])

        state.handle_payload({"eventType": "UPDATE", "new": {"id": "a", "stage": "fechado", "updated_at": "2024-01-03"}})
        state.handle_payload({"eventType": "UPDATE", "new": {"id": "a", "stage": "contato", "updated_at": "2024-01-02"}})

        self.assertEqual(state.get("a")["stage"], "fechado")

    def test_refetch_clears_tombstone_of_returned_rows(self):
        state = PipelineState([])
        state.handle_payload({"eventType": "DELETE", "old": {"id": "a"}})
        state.reset([{"id": "a", "stage": "radar"}])

        state.handle_payload({"eventType": "UPDATE", "new": {"id": "a", "stage": "contato"}})

        self.assertEqual(state.get("a")["stage"], "contato")

    def test_state_handles_duplicated_payloads(self):
        state = PipelineState([])
        payload = {"eventType": "INSERT", "new": {"id": "n1", "name": "Novo", "stage": "radar"}}

        state.handle_payload(payload)
        state.handle_payload(payload)

        self.assertEqual(len(state), 1)
        self.assertEqual(state.get("n1")["name"], "Novo")


class TestPipelineService(unittest.TestCase):

    def setUp(self):
        self.supabase = FallbackSupabaseClient()
        self.state = PipelineState()
        self.service = PipelineService(self.supabase, self.state)

    def test_create_client_defaults_to_radar(self):
        client = self.service.create_client({"name": "João", "school": "UCLA", "email": ""})

        self.assertEqual(client["stage"], "radar")
        self.assertNotIn("email", client)
        self.assertEqual(self.state.get(client["id"])["name"], "João")

    def test_create_client_validation(self):
        with self.assertRaises(PipelineError):
            self.service.create_client({"name": "J"})
        with self.assertRaises(PipelineError):
            self.service.create_client({"name": "João", "stage": "arquivado"})

    def test_move_stage(self):
        client = self.service.create_client({"name": "João"})

        fechado = self.service.move_stage(client["id"], "fechado")
        self.assertIsNotNone(fechado["closed_at"])

        with self.assertRaises(PipelineError):
            self.service.move_stage(client["id"], "perdido")
        perdido = self.service.move_stage(client["id"], "perdido", "Assinou com outra agência")
        self.assertEqual(perdido["lost_reason"], "Assinou com outra agência")
        self.assertEqual(self.state.get(client["id"])["stage"], "perdido")

    def test_move_unknown_client(self):
        with self.assertRaises(ClientNotFound):
            self.service.move_stage("nao-existe", "contato")

    def test_schedule_meeting(self):
        client = self.service.create_client({"name": "João"})

        atualizado = self.service.schedule_meeting(client["id"], "2024-05-10T14:00:00", "Carlos")
        self.assertEqual(atualizado["meeting_responsible"], "Carlos")

        with self.assertRaises(PipelineError):
            self.service.schedule_meeting(client["id"], None, "Carlos")

    def test_update_payer(self):
        client = self.service.create_client({"name": "João"})

        atualizado = self.service.update_payer(client["id"], {
            "payer_name": "Maria", "payer_relationship": "parent", "payment_method": "pix",
        })
        self.assertEqual(atualizado["payer_relationship"], "parent")

        with self.assertRaises(PipelineError):
            self.service.update_payer(client["id"], {"payment_method": "cheque"})

    def test_board_and_delete(self):
        self.supabase.tables["clients"].append({"id": "old", "name": "Antigo", "stage": "contato"})

        columns = self.service.board()
        self.assertEqual([c["id"] for c in _column(columns, "contato")["clients"]], ["old"])

        self.service.delete_client("old")
        self.assertEqual(_column(self.service.board(), "contato")["clients"], [])
        self.assertEqual(self.supabase.tables["clients"], [])


if __name__ == "__main__":
    unittest.main()
