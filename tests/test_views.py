# tests/test_views.py
"""
Testes dos endpoints JSON com o test client do Flask e o banco fallback.
"""

import unittest
from unittest.mock import patch
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app import create_app
from config import TestingConfig
from fallback_data import FallbackSupabaseClient
from services.pipeline import PipelineState
from models import db, Employee, UserRole

VIEW_MODULES = ("views.crm", "views.contratos", "views.financeiro", "views.funcionarios", "supabase_client")


class ViewTestCase(unittest.TestCase):

    def setUp(self):
        self.app = create_app(TestingConfig)
        self.client = self.app.test_client()
        self.supabase = FallbackSupabaseClient({
            "clients": [{"id": "cl1", "name": "João Silva", "stage": "negociacao"}],
            "user_roles": [{"user_id": "u1", "role": "admin"}, {"user_id": "m1", "role": "member"}],
        })

        self.patchers = [patch(f"{m}.get_supabase_client", return_value=self.supabase) for m in VIEW_MODULES]
        self.patchers.append(patch("services.pipeline.pipeline_state", PipelineState()))
        for p in self.patchers:
            p.start()

        self.login()

    def tearDown(self):
        for p in reversed(self.patchers):
            p.stop()

    def login(self, user_id="u1"):
        with self.client.session_transaction() as sess:
            sess["user"] = {"id": user_id, "email": "equipe@agencia.com"}

    def create_contract(self):
        response = self.client.post("/contratos/novo", json={
            "client_id": "cl1",
            "total_value": "3000",
            "installments_count": 3,
            "start_date": "2024-01-01",
            "transaction_fee": "10",
            "beneficiaries": [{"employee_name": "Ana", "percentage": 20}],
        })
        self.assertEqual(response.status_code, 201)
        return response.get_json()["contract"]


class TestAuth(ViewTestCase):

    def test_requires_session(self):
        with self.client.session_transaction() as sess:
            sess.clear()

        response = self.client.get("/contratos/")

        self.assertEqual(response.status_code, 401)
        self.assertFalse(response.get_json()["success"])

    def test_without_database(self):
        with patch("views.contratos.get_supabase_client", return_value=None):
            response = self.client.get("/contratos/")
        self.assertEqual(response.status_code, 503)

    def test_member_is_blocked_from_finance(self):
        contrato = self.create_contract()
        self.login("m1")

        for path in ("/contratos/", f"/contratos/{contrato['id']}", "/contratos/ativos-por-cliente",
                     "/financeiro/dre", "/financeiro/despesas"):
            self.assertEqual(self.client.get(path).status_code, 403, path)

        parcela = self.supabase.tables["installments"][0]
        for path in (f"/contratos/{contrato['id']}/parcelas/{parcela['id']}/baixar",
                     f"/contratos/{contrato['id']}/excluir", "/contratos/novo", "/financeiro/despesas"):
            self.assertEqual(self.client.post(path, json={}).status_code, 403, path)

        self.assertEqual(parcela["status"], "pending")
        self.assertEqual(len(self.supabase.tables["contracts"]), 1)

    def test_member_uses_crm(self):
        self.login("m1")

        self.assertEqual(self.client.get("/crm/pipeline").status_code, 200)
        self.assertEqual(self.client.post("/crm/clientes", json={"name": "Maria Souza"}).status_code, 201)

    def test_user_without_role_is_member(self):
        self.login("sem-papel")
        self.assertEqual(self.client.get("/financeiro/dre").status_code, 403)

    def test_devtools_endpoint(self):
        self.assertEqual(self.client.get("/.well-known/appspecific/com.chrome.devtools.json").status_code, 204)


class TestContratosViews(ViewTestCase):

    def test_create_contract(self):
        contrato = self.create_contract()

        self.assertEqual(contrato["total_value"], 3000.0)
        self.assertEqual(len(self.supabase.tables["installments"]), 3)
        self.assertTrue(all(c["value"] == 198.0 for c in self.supabase.tables["commissions"]))

        listagem = self.client.get("/contratos/?status=active").get_json()
        self.assertEqual(len(listagem["contracts"]), 1)

    def test_create_contract_validation(self):
        response = self.client.post("/contratos/novo", json={"total_value": 100, "installments_count": 1})
        self.assertEqual(response.status_code, 400)

        response = self.client.post("/contratos/novo", json={
            "client_id": "cl1", "total_value": 0, "installments_count": 1, "start_date": "2024-01-01",
        })
        self.assertEqual(response.status_code, 400)
        self.assertEqual(self.supabase.tables["contracts"], [])

    def test_simulate(self):
        response = self.client.post("/contratos/simular", json={
            "total_value": "1.000,00", "installments_count": 3, "start_date": "2024-01-31",
            "beneficiaries": [{"employee_name": "Ana", "percentage": 10}],
        })

        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["total"], 1000.0)
        self.assertEqual(data["installments"][1]["due_date"], "2024-02-29")
        self.assertEqual(data["installments"][2]["commissions"][0]["value"], 33.33)
        self.assertEqual(self.supabase.tables["installments"], [])

    def test_edit_installment_cascade(self):
        contrato = self.create_contract()
        parcelas = sorted(self.supabase.tables["installments"], key=lambda i: i["due_date"])

        response = self.client.post(
            f"/contratos/{contrato['id']}/parcelas/{parcelas[0]['id']}",
            json={"due_date": "2024-02-01", "value": "1200"},
        )

        data = response.get_json()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(data["total_value"], 3200.0)
        self.assertNotIn("state", data)
        datas = sorted(i["due_date"] for i in self.supabase.tables["installments"])
        self.assertEqual(datas, ["2024-02-01", "2024-03-01", "2024-04-01"])

    def test_edit_installment_failure_is_compensated(self):
        contrato = self.create_contract()
        parcela = self.supabase.tables["installments"][0]
        self.supabase.fail_when("commissions", "update")

        response = self.client.post(f"/contratos/{contrato['id']}/parcelas/{parcela['id']}", json={"value": 50})

        data = response.get_json()
        self.assertEqual(response.status_code, 500)
        self.assertTrue(data["compensated"])
        self.assertEqual(self.supabase.tables["installments"][0]["value"], 1000.0)

    def test_pay_all_installments_completes(self):
        contrato = self.create_contract()
        ids = [i["id"] for i in sorted(self.supabase.tables["installments"], key=lambda i: i["due_date"])]

        first = self.client.post(f"/contratos/{contrato['id']}/parcelas/{ids[0]}/baixar").get_json()
        self.assertFalse(first["completed"])
        self.client.post(f"/contratos/{contrato['id']}/parcelas/{ids[1]}/baixar")
        last = self.client.post(f"/contratos/{contrato['id']}/parcelas/{ids[2]}/confirmar",
                                json={"paid_value": "1000", "transaction_fee": "10"}).get_json()

        self.assertTrue(last["completed"])
        self.assertEqual(self.supabase.tables["contracts"][0]["status"], "completed")

        progresso = self.client.get(f"/contratos/{contrato['id']}/progresso").get_json()
        self.assertEqual(progresso["percentage"], 100.0)

    def test_add_installment_and_details(self):
        contrato = self.create_contract()

        response = self.client.post(f"/contratos/{contrato['id']}/parcelas",
                                    json={"due_date": "2024-04-01", "value": 500, "transaction_fee": 10})
        self.assertEqual(response.status_code, 201)

        detalhes = self.client.get(f"/contratos/{contrato['id']}").get_json()
        self.assertEqual(len(detalhes["installments"]), 4)
        self.assertEqual(len(detalhes["commissions"]), 4)
        self.assertEqual(detalhes["contract"]["total_value"], 3500.0)

    def test_unknown_contract(self):
        self.assertEqual(self.client.get("/contratos/nao-existe").status_code, 404)
        response = self.client.post("/contratos/nao-existe/parcelas/x/baixar")
        self.assertEqual(response.status_code, 404)

    def test_commission_endpoints(self):
        contrato = self.create_contract()
        comissao = self.supabase.tables["commissions"][0]

        response = self.client.post(f"/contratos/{contrato['id']}/comissoes/{comissao['id']}",
                                    json={"percentage": "10"})
        self.assertEqual(response.get_json()["commission"]["value"], 99.0)

        response = self.client.post(f"/contratos/{contrato['id']}/comissoes/{comissao['id']}/pagar")
        self.assertTrue(response.get_json()["success"])
        self.assertEqual(self.supabase.tables["commissions"][0]["status"], "paid")

    def test_regenerate_and_delete(self):
        contrato = self.create_contract()

        response = self.client.post(f"/contratos/{contrato['id']}/regerar", json={
            "total_value": 1000, "installments_count": 2, "start_date": "2024-05-01",
        })
        self.assertEqual(response.status_code, 200)
        self.assertEqual(len(self.supabase.tables["installments"]), 2)
        self.assertEqual(self.supabase.tables["commissions"], [])

        response = self.client.post(f"/contratos/{contrato['id']}/excluir")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.supabase.tables["contracts"], [])

    def test_clients_summary(self):
        self.create_contract()

        data = self.client.get("/contratos/ativos-por-cliente").get_json()

        self.assertEqual(data["clients"][0]["client_name"], "João Silva")
        self.assertEqual(data["clients"][0]["total_pending"], 3000.0)

    def test_integrity_is_admin_only(self):
        self.create_contract()

        with patch("security_middleware.get_current_role", return_value="member"):
            self.assertEqual(self.client.get("/contratos/integridade").status_code, 403)

        self.supabase.tables["contracts"][0]["total_value"] = 1.0
        with patch("security_middleware.get_current_role", return_value="admin"):
            data = self.client.get("/contratos/integridade?repair=1").get_json()

        self.assertEqual(data["summary"]["fail"], 1)
        self.assertEqual(self.supabase.tables["contracts"][0]["total_value"], 3000.0)

    def test_health_report_runs_single_check(self):
        self.create_contract()
        self.supabase.tables["contracts"][0]["total_value"] = 1.0

        response = self.client.get("/contratos/saude")

        self.assertEqual(response.status_code, 200)
        report = response.get_json()["report"]
        self.assertEqual(report["overall_status"], "WARNING")
        self.assertEqual(report["last_summary"]["fail"], 1)
        self.assertFalse(report["monitoring_active"])

    def test_health_report_uses_running_monitor(self):
        from data_utils.monitoring import ContractMonitor

        monitor = ContractMonitor(self.supabase)
        monitor.add_alert("CRITICAL", "CONTRACT_CHECK", "Erro ao validar contratos")
        self.app.extensions["contract_monitor"] = monitor

        report = self.client.get("/contratos/saude").get_json()["report"]

        self.assertEqual(report["overall_status"], "CRITICAL")
        self.assertEqual(report["total_alerts"], 1)

    def test_health_report_is_admin_only(self):
        self.login("m1")
        self.assertEqual(self.client.get("/contratos/saude").status_code, 403)


class TestCrmViews(ViewTestCase):

    def test_pipeline_flow(self):
        response = self.client.post("/crm/clientes", json={"name": "Maria Souza", "sport": "Tênis"})
        self.assertEqual(response.status_code, 201)
        client_id = response.get_json()["client"]["id"]

        response = self.client.post(f"/crm/clientes/{client_id}/etapa", json={"stage": "perdido"})
        self.assertEqual(response.status_code, 400)

        response = self.client.post(f"/crm/clientes/{client_id}/etapa", json={"stage": "contato"})
        self.assertEqual(response.status_code, 200)

        columns = self.client.get("/crm/pipeline?refresh=1").get_json()["columns"]
        contato = next(c for c in columns if c["id"] == "contato")
        self.assertEqual([c["id"] for c in contato["clients"]], [client_id])

    def test_meeting_payer_and_delete(self):
        response = self.client.post("/crm/clientes/cl1/reuniao",
                                    json={"meeting_date": "2024-06-01T10:00:00", "responsible": "Carlos"})
        self.assertEqual(response.get_json()["client"]["meeting_responsible"], "Carlos")

        response = self.client.post("/crm/clientes/cl1/pagador",
                                    json={"payer_name": "Pai", "payer_relationship": "parent"})
        self.assertEqual(response.status_code, 200)

        self.assertEqual(self.client.post("/crm/clientes/cl1/excluir").status_code, 200)
        self.assertEqual(self.supabase.tables["clients"], [])

    def test_unknown_client(self):
        response = self.client.post("/crm/clientes/nao-existe", json={"notes": "x"})
        self.assertEqual(response.status_code, 404)


class TestFinanceiroViews(ViewTestCase):

    def test_dre(self):
        self.supabase.tables["financial_overview"] = [
            {"id": "r1", "title": "Contrato João", "type": "parcela", "direction": "entrada",
             "amount": 1000, "date": "2024-01-10", "status": "paid"},
            {"id": "r2", "title": "Comissão Ana", "type": "comissao", "direction": "saida",
             "amount": 198, "date": "2024-01-10", "status": "pending"},
        ]

        data = self.client.get("/financeiro/dre?ano=2024").get_json()

        self.assertEqual(data["year_totals"], {"receitas": 1000.0, "saidas": 198.0, "lucro": 802.0})
        cell = data["categories"]["comissoes"]["items"]["Comissão Ana"]["2024-01"]
        self.assertEqual(cell["status"], "pending")

    def test_expense_crud(self):
        response = self.client.post("/financeiro/despesas", json={"description": "X", "amount": 10})
        self.assertEqual(response.status_code, 400)

        response = self.client.post("/financeiro/despesas", json={
            "description": "Aluguel", "amount": "1.500,00", "category": "fixo",
            "due_date": "2024-03-05", "is_recurring": True,
        })
        self.assertEqual(response.status_code, 201)
        expense_id = response.get_json()["expense"]["id"]
        self.assertEqual(self.supabase.tables["expenses"][0]["amount"], 1500.0)

        data = self.client.get("/financeiro/despesas?ano=2024&projetar=3").get_json()
        self.assertEqual(len(data["expenses"]), 3)
        self.assertEqual(data["total"], 4500.0)

        self.assertEqual(self.client.post(f"/financeiro/despesas/{expense_id}/pagar").status_code, 200)
        self.assertEqual(self.client.post("/financeiro/despesas/nao-existe/pagar").status_code, 404)
        self.assertEqual(self.client.post(f"/financeiro/despesas/{expense_id}/excluir").status_code, 200)
        self.assertEqual(self.supabase.tables["expenses"], [])


class TestFuncionariosViews(ViewTestCase):

    def test_member_cannot_change_employees(self):
        with patch("security_middleware.get_current_role", return_value="member"):
            response = self.client.post("/funcionarios/", json={"name": "Ana"})
        self.assertEqual(response.status_code, 403)
        self.assertEqual(self.supabase.tables["employees"], [])

    def test_admin_crud(self):
        with patch("security_middleware.get_current_role", return_value="admin"):
            self.assertEqual(self.client.post("/funcionarios/", json={"name": ""}).status_code, 400)

            response = self.client.post("/funcionarios/", json={"name": "Ana", "role": "Agente"})
            self.assertEqual(response.status_code, 201)
            employee_id = response.get_json()["employee"]["id"]

            response = self.client.post(f"/funcionarios/{employee_id}", json={"name": "Ana Paula"})
            self.assertEqual(response.get_json()["employee"]["name"], "Ana Paula")
            self.assertEqual(self.client.post("/funcionarios/nao-existe", json={"name": "X"}).status_code, 404)

            listagem = self.client.get("/funcionarios/").get_json()
            self.assertEqual([e["name"] for e in listagem["employees"]], ["Ana Paula"])

            self.assertEqual(self.client.post(f"/funcionarios/{employee_id}/excluir").status_code, 200)
        self.assertEqual(self.supabase.tables["employees"], [])


class TestFuncionariosLocalDb(ViewTestCase):
    """Sem Supabase, funcionários e papéis ficam no banco local (Flask-SQLAlchemy)."""

    def setUp(self):
        super().setUp()
        self.sem_supabase = [patch(f"{m}.get_supabase_client", return_value=None)
                             for m in ("views.funcionarios", "supabase_client")]
        for p in self.sem_supabase:
            p.start()
        with self.app.app_context():
            db.session.add(UserRole(user_id="u1", role="admin"))
            db.session.commit()

    def tearDown(self):
        for p in reversed(self.sem_supabase):
            p.stop()
        super().tearDown()

    def test_crud_without_supabase(self):
        response = self.client.post("/funcionarios/", json={"name": "Ana", "role": "Agente"})
        self.assertEqual(response.status_code, 201)
        employee_id = response.get_json()["employee"]["id"]

        response = self.client.post(f"/funcionarios/{employee_id}", json={"name": "Ana Paula"})
        self.assertEqual(response.get_json()["employee"]["name"], "Ana Paula")
        self.assertEqual(self.client.post("/funcionarios/nao-existe", json={"name": "X"}).status_code, 404)

        self.client.post("/funcionarios/", json={"name": "Bruno"})
        listagem = self.client.get("/funcionarios/").get_json()
        self.assertEqual([e["name"] for e in listagem["employees"]], ["Ana Paula", "Bruno"])

        self.assertEqual(self.client.post(f"/funcionarios/{employee_id}/excluir").status_code, 200)
        with self.app.app_context():
            self.assertEqual([e.name for e in db.session.query(Employee).all()], ["Bruno"])
        self.assertEqual(self.supabase.tables.get("employees", []), [])

    def test_local_member_cannot_change_employees(self):
        self.login("m1")

        self.assertEqual(self.client.post("/funcionarios/", json={"name": "Ana"}).status_code, 403)
        with self.app.app_context():
            self.assertEqual(db.session.query(Employee).count(), 0)


if __name__ == "__main__":
    unittest.main()
