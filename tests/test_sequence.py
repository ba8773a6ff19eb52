import unittest
from unittest.mock import MagicMock, patch
import csv
import os
import tempfile
from agilis.sequence import MoveSequence
from agilis import config, io


class TestMoveSequence(unittest.TestCase):

    def setUp(self):
        self.ctrl = MagicMock()
        self.ctrl.set_to_remote_mode.return_value = True
        self.ctrl.relative_move.return_value = True
        self.ctrl.get_axis_status.return_value = config.AXISSTATUS_READY
        self.ctrl.get_error_of_previous_command.return_value = 0
        self.ctrl.get_port_name.return_value = "COM3"
        self.messages = []
        self.seq = MoveSequence(self.ctrl, log_callback=self.messages.append)

    def test_round_trip(self):
        # start, before fwd, after fwd, before back, after back
        self.ctrl.tell_number_of_steps.side_effect = [0, 0, 100, 100, 0]

        result = self.seq.run_round_trip(1, 100)

        self.assertEqual(result, {"start": 0, "moved": 100, "final": 0})
        self.ctrl.set_to_remote_mode.assert_called_once()
        self.assertEqual(self.ctrl.relative_move.call_args_list[0].args, (1, True, 100))
        self.assertEqual(self.ctrl.relative_move.call_args_list[1].args, (1, False, 100))
        self.ctrl.stop_motion.assert_not_called()
        self.assertEqual(sum("position:" in m for m in self.messages), 3)

    @patch('time.sleep', return_value=None)
    def test_waits_until_ready(self, mock_sleep):
        self.ctrl.tell_number_of_steps.side_effect = [0, 0, 10, 10, 0]
        self.ctrl.get_axis_status.side_effect = [
            config.AXISSTATUS_READY,
            config.AXISSTATUS_STEPPING, config.AXISSTATUS_STEPPING, config.AXISSTATUS_READY,
            config.AXISSTATUS_READY,
        ]

        self.seq.run_round_trip(2, 10)
        self.assertEqual(mock_sleep.call_count, 2)

    def test_invalid_axis(self):
        with self.assertRaises(ValueError):
            self.seq.run_round_trip(3, 10)
        self.ctrl.relative_move.assert_not_called()

    def test_send_failure_stops_axis(self):
        self.ctrl.tell_number_of_steps.return_value = 0
        self.ctrl.relative_move.return_value = False

        with self.assertRaises(RuntimeError):
            self.seq.run_round_trip(1, 50)
        self.ctrl.stop_motion.assert_called_once_with(1)

    def test_status_read_failure(self):
        self.ctrl.get_axis_status.return_value = None

        with self.assertRaises(RuntimeError):
            self.seq.run_round_trip(1, 50)
        self.ctrl.stop_motion.assert_called_once_with(1)

    @patch('time.monotonic')
    @patch('time.sleep', return_value=None)
    def test_ready_timeout(self, mock_sleep, mock_monotonic):
        self.ctrl.get_axis_status.return_value = config.AXISSTATUS_JOGGING
        mock_monotonic.side_effect = [0.0, 1.0, config.MOVE_TIMEOUT_S + 1.0]

        with self.assertRaises(RuntimeError):
            self.seq.wait_until_ready(1)

    def test_abort_stops_axis(self):
        def abort_after_start(axis):
            self.seq.abort()
            return 0
        self.ctrl.tell_number_of_steps.side_effect = abort_after_start

        with self.assertRaises(InterruptedError):
            self.seq.run_round_trip(1, 100)
        self.ctrl.relative_move.assert_not_called()
        self.ctrl.stop_motion.assert_called_once_with(1)

    def test_move_log(self):
        self.ctrl.tell_number_of_steps.side_effect = [0, 0, 20, 20, 0]

        with tempfile.TemporaryDirectory() as tmp:
            log_path = os.path.join(tmp, "logs", "moves.csv")
            self.seq.run_round_trip(1, 20, log_path)

            with open(log_path, newline='') as f:
                rows = list(csv.DictReader(f))

        self.assertEqual(len(rows), 2)
        self.assertEqual(list(rows[0].keys()), io.FIELDNAMES)
        self.assertEqual(rows[0]["command"], "1PR20")
        self.assertEqual(rows[0]["steps_after"], "20")
        self.assertEqual(rows[1]["command"], "1PR-20")
        self.assertEqual(rows[1]["port"], "COM3")
        self.assertEqual(rows[1]["error_code"], "0")


class TestMoveLog(unittest.TestCase):

    def test_append_writes_header_once(self):
        with tempfile.TemporaryDirectory() as tmp:
            log_path = os.path.join(tmp, "moves.csv")
            self.assertTrue(io.append_to_log(log_path, {"axis": 1, "command": "1PR5"}))
            self.assertTrue(io.append_to_log(log_path, {"axis": 2, "command": "2PR5", "extra": "x"}))

            with open(log_path, newline='') as f:
                lines = f.read().splitlines()

        self.assertEqual(lines[0], ",".join(io.FIELDNAMES))
        self.assertEqual(len(lines), 3)

if __name__ == '__main__':
    unittest.main()
