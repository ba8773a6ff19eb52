import logging
from concurrent.futures import TimeoutError as FutureTimeoutError
from PyQt6.QtCore import QObject, QThread, pyqtSignal
from agilis import config


class LogBridge(QObject):
    """
    Log sink for the controller. Called on whatever thread logs;
    the signal is delivered to the GUI thread.
    """
    message = pyqtSignal(int, str)

    def __call__(self, level, msg):
        self.message.emit(level, msg)


class MeasureThread(QThread):
    """Runs MA on one axis and waits for the deferred result off the GUI thread."""
    send_failed = pyqtSignal()
    result_ready = pyqtSignal(int, int)   # axis, position (1/1000 of travel)
    error_occurred = pyqtSignal(str)

    def __init__(self, controller, axis):
        super().__init__()
        self.ctrl = controller
        self.axis = axis

    def run(self):
        sent, future = self.ctrl.measure_current_position(self.axis)
        if not sent:
            self.send_failed.emit()
            return

        # The engine's own read timeout resolves the future; this is a backstop
        try:
            value = future.result(timeout=config.MEASURE_TIMEOUT_MS / 1000.0 + 5.0)
        except FutureTimeoutError:
            self.error_occurred.emit(f"Position measurement on axis {self.axis} did not finish.")
            return

        if value is None:
            self.error_occurred.emit(f"Position measurement on axis {self.axis} failed.")
        else:
            self.result_ready.emit(self.axis, value)


class SequenceThread(QThread):
    progress_update = pyqtSignal(str)  # Status message
    progress_val = pyqtSignal(int)     # 0-100
    finished_ok = pyqtSignal(dict)
    error_occurred = pyqtSignal(str)

    def __init__(self, sequence_logic, axis, steps, log_path=None):
        super().__init__()
        self.seq = sequence_logic
        self.axis = axis
        self.steps = steps
        self.log_path = log_path

        # Override log callback to emit signal
        self.seq.log_cb = self._on_log
        self.current_step = 0

    def _on_log(self, msg):
        self.progress_update.emit(msg)
        # Crude progress estimation: two moves, each logged once when done
        if "position:" in msg:
            self.current_step += 1
            self.progress_val.emit(min(100, int(self.current_step / 3 * 100)))

    def run(self):
        try:
            self.current_step = 0
            self.progress_val.emit(0)
            result = self.seq.run_round_trip(self.axis, self.steps, self.log_path)
            self.progress_val.emit(100)
            self.finished_ok.emit(result)

        except InterruptedError:
            self.error_occurred.emit("Sequence Aborted by User")

        except Exception as e:
            logging.exception("Sequence failed")
            self.error_occurred.emit(f"Sequence Error: {str(e)}")

    def abort(self):
        self.seq.abort()
