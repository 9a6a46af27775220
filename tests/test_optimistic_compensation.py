# tests/test_optimistic_compensation.py
import unittest
from unittest.mock import Mock
import sys
import os

sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from data_utils import CompensationError, CompensationLog, OptimisticCommand, run_optimistic


class TestOptimisticCommand(unittest.TestCase):

    def test_success_keeps_applied_state(self):
        state = {"status": "pending"}

        result = run_optimistic(state, lambda s: s.update(status="paid"), lambda s: "ok")

        self.assertEqual(result, "ok")
        self.assertEqual(state, {"status": "paid"})

    def test_failure_restores_snapshot_in_place(self):
        state = {"items": [1, 2], "total": 3}
        alias = state
        rollback = Mock()

        def apply(s):
            s["items"].append(3)
            s["total"] = 6

        def commit(s):
            raise RuntimeError("rede")

        with self.assertRaises(RuntimeError):
            OptimisticCommand(apply, commit, rollback, name="teste").run(state)

        self.assertIs(alias, state)
        self.assertEqual(state, {"items": [1, 2], "total": 3})
        rollback.assert_called_once()
        self.assertIsInstance(rollback.call_args[0][1], RuntimeError)

    def test_list_state(self):
        state = [1, 2]

        with self.assertRaises(ValueError):
            run_optimistic(state, lambda s: s.clear(), Mock(side_effect=ValueError("x")))

        self.assertEqual(state, [1, 2])


class TestCompensationLog(unittest.TestCase):

    def test_compensates_in_reverse_order(self):
        order = []
        log = CompensationLog(name="teste")
        log.record("primeiro", lambda: order.append(1))
        log.record("segundo", lambda: order.append(2))

        self.assertEqual(len(log), 2)
        log.compensate()

        self.assertEqual(order, [2, 1])
        self.assertEqual(len(log), 0)

    def test_continues_after_failed_undo(self):
        order = []
        log = CompensationLog(name="teste")
        log.record("primeiro", lambda: order.append(1))
        log.record("quebra", Mock(side_effect=RuntimeError("falhou")))
        log.record("terceiro", lambda: order.append(3))

        with self.assertRaises(CompensationError) as ctx:
            log.compensate()

        self.assertEqual(order, [3, 1])
        self.assertEqual(ctx.exception.failures, ["quebra"])

    def test_clear(self):
        log = CompensationLog()
        log.record("x", Mock())
        log.clear()
        log.compensate()
        self.assertEqual(len(log), 0)


if __name__ == "__main__":
    unittest.main()
