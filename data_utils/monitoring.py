# data_utils/monitoring.py
"""
MONITORAMENTO DE CONTRATOS
Roda a validação de integridade periodicamente (thread daemon) e guarda os
alertas gerados: total do contrato fora da soma das parcelas, comissão fora
da fórmula, contrato quitado ainda ativo.
"""

from collections import Counter, deque
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable, Dict, List, Optional
import logging
import threading

logger = logging.getLogger(__name__)

SEVERITIES = ("INFO", "WARNING", "ERROR", "CRITICAL")
MAX_ALERTS = 500


@dataclass
class MonitoringAlert:
    """Alerta de monitoramento"""
    timestamp: datetime
    severity: str
    component: str
    message: str
    details: Dict = field(default_factory=dict)
    contract_id: Optional[str] = None


class ContractMonitor:
    """Executa ContractIntegrityValidator em intervalos e acumula alertas."""

    def __init__(self, supabase, alert_callback: Optional[Callable[[MonitoringAlert], None]] = None,
                 max_alerts: int = MAX_ALERTS):
        self.supabase = supabase
        self.alert_callback = alert_callback or self._log_alert
        # só os mais recentes; os antigos saem da fila
        self.alerts = deque(maxlen=max_alerts)
        self.last_summary: Optional[Dict[str, int]] = None
        self.last_check_at: Optional[datetime] = None
        self.monitoring_active = False
        self._thread = None
        self._wakeup = threading.Event()

    @staticmethod
    def _log_alert(alert: MonitoringAlert):
        level = getattr(logging, alert.severity, logging.INFO)
        logger.log(level, "MONITOR[%s]: %s %s", alert.component, alert.message, alert.details or "")

    def add_alert(self, severity: str, component: str, message: str, details: Dict = None,
                  contract_id: Optional[str] = None) -> MonitoringAlert:
        if severity not in SEVERITIES:
            raise ValueError(f"Severidade inválida: {severity}")
        alert = MonitoringAlert(datetime.now(), severity, component, message, details or {}, contract_id)
        self.alerts.append(alert)
        self.alert_callback(alert)
        return alert

    def check_contracts(self, repair: bool = False) -> bool:
        """
        Valida os contratos ativos/concluídos e registra um alerta por
        contrato divergente.

        Returns:
            True se nenhum contrato divergente foi encontrado
        """
        from data_utils.data_integrity import ContractIntegrityValidator, summarize

        self.last_check_at = datetime.now()
        try:
            results = ContractIntegrityValidator(self.supabase).validate_all(repair=repair)
        except Exception as e:
            self.add_alert("CRITICAL", "CONTRACT_CHECK", f"Erro ao validar contratos: {e}", {"error": str(e)})
            return False

        self.last_summary = summarize(results)
        divergentes = [r for r in results if r.get("overall_status") != "PASS"]

        for r in divergentes:
            if r.get("overall_status") == "ERROR":
                self.add_alert("ERROR", "CONTRACT_CHECK", "Erro ao validar contrato",
                               {"error": r.get("error")}, contract_id=r["contract_id"])
                continue
            self.add_alert(
                "WARNING" if r.get("repaired") else "ERROR",
                "CONTRACT_CHECK",
                "Contrato corrigido" if r.get("repaired") else "Contrato divergente",
                {
                    "stored_total": r["stored_total"],
                    "computed_total": r["computed_total"],
                    "drifted_commissions": len(r["drifted_commissions"]),
                    "pending_completion": r["pending_completion"],
                },
                contract_id=r["contract_id"],
            )

        if not divergentes:
            self.add_alert("INFO", "CONTRACT_CHECK", f"{self.last_summary['total']} contratos consistentes",
                           self.last_summary)
        return not divergentes

    def start(self, interval_minutes: int = 60, repair: bool = False):
        """Inicia a verificação periódica num thread daemon."""
        if self._thread and self._thread.is_alive():
            return

        def loop():
            while self.monitoring_active:
                try:
                    self.check_contracts(repair=repair)
                except Exception as e:
                    self.add_alert("ERROR", "MONITOR", f"Erro no loop de monitoramento: {e}")
                self._wakeup.wait(interval_minutes * 60)

        self.monitoring_active = True
        self._wakeup.clear()
        self._thread = threading.Thread(target=loop, name="contract-monitor", daemon=True)
        self._thread.start()
        self.add_alert("INFO", "MONITOR", "Monitoramento de contratos iniciado", {"interval_minutes": interval_minutes})

    def stop(self):
        self.monitoring_active = False
        self._wakeup.set()
        if self._thread:
            self._thread.join(timeout=10)
        self.add_alert("INFO", "MONITOR", "Monitoramento de contratos parado")

    def get_alerts(self, severity: Optional[str] = None, component: Optional[str] = None,
                   contract_id: Optional[str] = None, limit: int = 100) -> List[MonitoringAlert]:
        selected = [
            a for a in self.alerts
            if (not severity or a.severity == severity)
            and (not component or a.component == component)
            and (not contract_id or a.contract_id == contract_id)
        ]
        selected.sort(key=lambda a: a.timestamp, reverse=True)
        return selected[:limit]

    def generate_health_report(self, window_hours: int = 24) -> Dict:
        """
        Resumo dos alertas da janela e da última verificação.

        Status: CRITICAL se houve falha da própria verificação, DEGRADED com
        mais de 5 contratos em erro, WARNING com algum, HEALTHY sem erros.
        """
        now = datetime.now()
        recent = [a for a in self.alerts if a.timestamp >= now - timedelta(hours=window_hours)]
        by_severity = Counter(a.severity for a in recent)
        contracts_in_error = {a.contract_id for a in recent if a.severity == "ERROR" and a.contract_id}

        if by_severity["CRITICAL"]:
            status = "CRITICAL"
        elif by_severity["ERROR"] > 5:
            status = "DEGRADED"
        elif by_severity["ERROR"]:
            status = "WARNING"
        else:
            status = "HEALTHY"

        return {
            "timestamp": now.isoformat(),
            "overall_status": status,
            "monitoring_active": self.monitoring_active,
            "last_check_at": self.last_check_at.isoformat() if self.last_check_at else None,
            "last_summary": self.last_summary,
            "total_alerts": len(self.alerts),
            "alerts_in_window": len(recent),
            "severity_breakdown": dict(by_severity),
            "contracts_in_error": sorted(contracts_in_error),
            "recommendations": self._recommendations(recent, contracts_in_error),
        }

    @staticmethod
    def _recommendations(recent: List[MonitoringAlert], contracts_in_error) -> List[str]:
        tips = []
        if contracts_in_error:
            tips.append(f"{len(contracts_in_error)} contrato(s) divergentes - rodar validação com repair")
        if any(a.severity == "CRITICAL" for a in recent):
            tips.append("Validação de contratos falhou - verificar conexão com o Supabase")
        if len(recent) > 20:
            tips.append("Alto volume de alertas - investigar causa raiz")
        return tips or ["Sistema funcionando normalmente"]


def init_monitor(app) -> Optional[ContractMonitor]:
    """Inicia a verificação periódica se MONITOR_ENABLED estiver ligado."""
    if not app.config.get("MONITOR_ENABLED"):
        app.logger.info("MONITOR: desabilitado")
        return None

    from supabase_client import get_supabase_client

    supabase = get_supabase_client()
    if supabase is None:
        app.logger.warning("MONITOR: sem Supabase, monitoramento não iniciado")
        return None

    monitor = ContractMonitor(supabase)
    monitor.start(
        interval_minutes=app.config.get("MONITOR_INTERVAL_MINUTES", 60),
        repair=app.config.get("MONITOR_REPAIR", False),
    )
    app.extensions["contract_monitor"] = monitor
    return monitor
