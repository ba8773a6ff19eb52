import time
import logging
from . import config, utils, io

class MoveSequence:
    def __init__(self, controller, log_callback=None):
        """
        controller: AgilisController instance (connected)
        log_callback: function(msg) for GUI updates
        """
        self.ctrl = controller
        self.log_cb = log_callback
        self._abort_flag = False

    def log(self, msg):
        logging.info(msg)
        if self.log_cb:
            self.log_cb(msg)

    def abort(self):
        self._abort_flag = True
        self.log("Abort requested!")

    def _check_abort(self):
        if self._abort_flag:
            raise InterruptedError("Sequence aborted by user.")

    def _read_steps(self, axis):
        steps = self.ctrl.tell_number_of_steps(axis)
        if steps is None:
            raise RuntimeError(f"Failed to read step counter of axis {axis}.")
        return steps

    def wait_until_ready(self, axis, timeout_s=config.MOVE_TIMEOUT_S):
        """Poll TS until the axis reports READY. Sliced wait with abort check."""
        start = time.monotonic()
        while True:
            self._check_abort()
            status = self.ctrl.get_axis_status(axis)
            if status is None:
                raise RuntimeError(f"Failed to read status of axis {axis}.")
            if status == config.AXISSTATUS_READY:
                return
            if (time.monotonic() - start) >= timeout_s:
                raise RuntimeError(f"Axis {axis} not ready after {timeout_s:.1f}s (status {status}).")
            time.sleep(config.STATUS_POLL_S)

    def _move(self, axis, sign, steps, log_path):
        before = self._read_steps(axis)
        command = utils.format_command(utils.axis_mnemonic(axis, "PR"), utils.signed(steps, sign))
        if not self.ctrl.relative_move(axis, sign, steps):
            raise RuntimeError(f"Failed to send {command}.")
        self.wait_until_ready(axis)
        after = self._read_steps(axis)
        error_code = self.ctrl.get_error_of_previous_command()

        if log_path:
            io.append_to_log(log_path, {
                "timestamp": utils.get_timestamp_iso(),
                "port": self.ctrl.get_port_name(),
                "axis": axis,
                "command": command,
                "steps_before": before,
                "steps_after": after,
                "status": config.AXIS_STATUS_TEXT[config.AXISSTATUS_READY],
                "error_code": error_code,
            })
        return after

    def run_round_trip(self, axis, steps, log_path=None):
        """
        Move axis forward by steps and back again, waiting for READY after each move.
        Returns {"start": n, "moved": n, "final": n} step counter readings.
        """
        self._abort_flag = False
        if not utils.is_valid_axis(axis):
            raise ValueError(f"Invalid axis {axis} (must be 1 or 2).")

        try:
            self.log(f"Starting round trip on axis {axis} ({steps} steps)...")

            # 1. Remote mode, required for any motion command
            if not self.ctrl.set_to_remote_mode():
                raise RuntimeError("Failed to set remote mode.")

            # 2. Axis must be idle
            self.wait_until_ready(axis)
            start = self._read_steps(axis)
            self.log(f"Axis {axis} position: {start} steps")

            # 3. Forward
            self._check_abort()
            self.log(f"Moving axis {axis} by {steps} steps...")
            moved = self._move(axis, True, steps, log_path)
            self.log(f"Axis {axis} new position: {moved} steps")

            # 4. Back
            self._check_abort()
            self.log("Moving back to original position...")
            final = self._move(axis, False, steps, log_path)
            self.log(f"Axis {axis} final position: {final} steps")

            self.log("Round trip complete.")
            return {"start": start, "moved": moved, "final": final}

        except InterruptedError:
            self.log("Sequence Aborted! Stopping axis.")
            self.ctrl.stop_motion(axis)
            raise

        except Exception as e:
            self.log(f"Sequence Error: {e}")
            self.ctrl.stop_motion(axis)
            raise
