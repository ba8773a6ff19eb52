import sys
import os
import time
import logging
import re
from PyQt6.QtWidgets import (
    QApplication, QMainWindow, QWidget, QVBoxLayout, QHBoxLayout,
    QLabel, QPushButton, QComboBox, QGroupBox, QSpinBox,
    QLineEdit, QProgressBar, QTextEdit, QFileDialog, QMessageBox,
    QFrame, QGridLayout
)

# Add project root to path
sys.path.append(".")

from agilis.controller import AgilisController
from agilis.sequence import MoveSequence
from agilis import config, utils
from app.workers import LogBridge, MeasureThread, SequenceThread

# --- UI STATES ---
STATE_DISCONNECTED = "DISCONNECTED"
STATE_CONNECTED = "CONNECTED"
STATE_MEASURING = "MEASURING"
STATE_RUNNING = "RUNNING"
STATE_ERROR = "ERROR"

PROFILE_USB = "USB (921600)"
PROFILE_RS232 = "RS-232 (115200)"

LOG_LEVELS = [config.LOG_DEBUG, config.LOG_INFO, config.LOG_WARNING, config.LOG_ERROR, config.LOG_NONE]

JOG_SPEEDS = [
    ("5 steps/s", config.JOGSPEED_5),
    ("100 steps/s", config.JOGSPEED_100),
    ("666 steps/s", config.JOGSPEED_666),
    ("1700 steps/s", config.JOGSPEED_1700),
]


class MainWindow(QMainWindow):
    def __init__(self):
        super().__init__()
        self.setWindowTitle("Agilis Piezo Controller")
        self.resize(1000, 750)

        # 1. Init Base State & UI (Required for Logging)
        self.current_state = STATE_DISCONNECTED
        self.init_ui()

        # --- Logic Objects ---
        self.log_bridge = LogBridge()
        self.log_bridge.message.connect(self.on_driver_log)
        self.ctrl = AgilisController(log_sink=self.log_bridge, log_level=config.LOG_INFO)
        self.sequence_logic = MoveSequence(self.ctrl)

        self.measure_thread = None
        self.seq_thread = None

        # Initial UI Update
        self.update_state_ui(STATE_DISCONNECTED)

    def init_ui(self):
        central_widget = QWidget()
        self.setCentralWidget(central_widget)
        main_layout = QVBoxLayout(central_widget)
        main_layout.setContentsMargins(5, 5, 5, 5)
        main_layout.setSpacing(5)

        # 0. LOGGING (Must be first)
        self.log_text = QTextEdit()
        self.log_text.setReadOnly(True)
        self.log_text.setMaximumHeight(180)

        # 1. TOP: STATUS BAR
        main_layout.addWidget(self.create_status_bar())

        # 2. MIDDLE: Left (Connection & Settings), Right (Axis & Sequence)
        content_layout = QHBoxLayout()

        left_panel = QVBoxLayout()
        left_panel.addWidget(self.create_connection_group())
        left_panel.addWidget(self.create_settings_group())
        left_panel.addStretch()
        content_layout.addLayout(left_panel, 1)

        right_panel = QVBoxLayout()
        right_panel.addWidget(self.create_axis_group())
        right_panel.addWidget(self.create_measure_group())
        right_panel.addWidget(self.create_sequence_group())
        right_panel.addStretch()
        content_layout.addLayout(right_panel, 2)

        main_layout.addLayout(content_layout)

        # 3. BOTTOM: LOG
        log_layout = QHBoxLayout()
        self.btn_log_copy = QPushButton("Copy Log")
        self.btn_log_copy.clicked.connect(self.on_log_copy)
        self.btn_log_save = QPushButton("Save Log")
        self.btn_log_save.clicked.connect(self.on_log_save)
        log_layout.addStretch()
        log_layout.addWidget(self.btn_log_copy)
        log_layout.addWidget(self.btn_log_save)

        main_layout.addWidget(self.log_text)
        main_layout.addLayout(log_layout)

    def log(self, msg, level="INFO"):
        """Append log message to text area"""
        ts = time.strftime("%H:%M:%S")
        formatted = f"[{ts}][{self.current_state}][{level}] {msg}"
        self.log_text.append(formatted)
        sb = self.log_text.verticalScrollBar()
        sb.setValue(sb.maximum())

    def on_driver_log(self, level, msg):
        self.log(msg, utils.level_name(level))

    # --- UI CREATION HELPERS ---

    def create_status_bar(self):
        frame = QFrame()
        frame.setFrameShape(QFrame.Shape.StyledPanel)
        frame.setStyleSheet("background-color: #eee; border: 1px solid #ccc;")
        layout = QHBoxLayout(frame)

        self.lbl_status = QLabel("Controller: DISCONNECTED")
        self.lbl_status.setStyleSheet("font-size: 16px; font-weight: bold; color: gray;")

        self.lbl_info = QLabel(" | Firmware: -- | Port: --")
        self.lbl_info.setStyleSheet("font-size: 14px; color: #333;")

        self.btn_stop_all = QPushButton("STOP ALL")
        self.btn_stop_all.setStyleSheet("background-color: red; color: white; font-weight: bold; font-size: 16px; padding: 10px;")
        self.btn_stop_all.clicked.connect(self.on_stop_all)

        self.btn_remote = QPushButton("REMOTE MODE")
        self.btn_remote.setStyleSheet("background-color: #4CAF50; color: white; font-weight: bold; font-size: 16px; padding: 10px;")
        self.btn_remote.clicked.connect(self.on_remote)

        self.btn_local = QPushButton("LOCAL MODE")
        self.btn_local.setStyleSheet("background-color: #e0e0e0; color: black; font-weight: bold; font-size: 16px; padding: 10px;")
        self.btn_local.clicked.connect(self.on_local)

        layout.addWidget(self.lbl_status)
        layout.addWidget(self.lbl_info)
        layout.addStretch()
        layout.addWidget(self.btn_local)
        layout.addWidget(self.btn_remote)
        layout.addWidget(self.btn_stop_all)
        return frame

    def create_connection_group(self):
        grp = QGroupBox("Connection")
        layout = QGridLayout()

        layout.addWidget(QLabel("Port:"), 0, 0)
        self.cmb_port = QComboBox()
        self.on_refresh_ports()
        layout.addWidget(self.cmb_port, 0, 1)

        self.btn_refresh = QPushButton("↻")
        self.btn_refresh.setFixedWidth(30)
        self.btn_refresh.setToolTip("Refresh serial ports")
        self.btn_refresh.clicked.connect(self.on_refresh_ports)
        layout.addWidget(self.btn_refresh, 0, 2)

        layout.addWidget(QLabel("Link:"), 1, 0)
        self.cmb_profile = QComboBox()
        self.cmb_profile.addItems([PROFILE_USB, PROFILE_RS232])
        layout.addWidget(self.cmb_profile, 1, 1, 1, 2)

        self.btn_connect = QPushButton("Connect Controller")
        self.btn_connect.clicked.connect(self.on_toggle_connect)
        layout.addWidget(self.btn_connect, 2, 0, 1, 3)

        layout.addWidget(QLabel("Channel (AG-UC8):"), 3, 0)
        self.spin_channel = QSpinBox()
        self.spin_channel.setRange(config.MIN_CHANNEL, config.MAX_CHANNEL)
        layout.addWidget(self.spin_channel, 3, 1)
        self.btn_channel = QPushButton("Set")
        self.btn_channel.clicked.connect(self.on_change_channel)
        layout.addWidget(self.btn_channel, 3, 2)

        grp.setLayout(layout)
        return grp

    def create_settings_group(self):
        grp = QGroupBox("Driver Settings")
        layout = QGridLayout()

        layout.addWidget(QLabel("Command term (ms):"), 0, 0)
        self.spin_term = QSpinBox()
        self.spin_term.setRange(0, 1000)
        self.spin_term.setValue(config.COMMAND_TERM_MS)
        layout.addWidget(self.spin_term, 0, 1)

        layout.addWidget(QLabel("Log level:"), 1, 0)
        self.cmb_log_level = QComboBox()
        for level in LOG_LEVELS:
            self.cmb_log_level.addItem(utils.level_name(level), level)
        self.cmb_log_level.setCurrentIndex(LOG_LEVELS.index(config.LOG_INFO))
        layout.addWidget(self.cmb_log_level, 1, 1)

        self.btn_settings_apply = QPushButton("Apply Settings")
        self.btn_settings_apply.clicked.connect(self.on_settings_apply)
        layout.addWidget(self.btn_settings_apply, 2, 0, 1, 2)

        grp.setLayout(layout)
        return grp

    def create_axis_group(self):
        grp = QGroupBox("Axis Control")
        layout = QGridLayout()

        layout.addWidget(QLabel("Axis:"), 0, 0)
        self.cmb_axis = QComboBox()
        for axis in config.AXES:
            self.cmb_axis.addItem(str(axis), axis)
        layout.addWidget(self.cmb_axis, 0, 1)

        # Relative move
        layout.addWidget(QLabel("Steps:"), 1, 0)
        self.spin_steps = QSpinBox()
        self.spin_steps.setRange(1, 1000000)
        self.spin_steps.setValue(10)
        layout.addWidget(self.spin_steps, 1, 1)
        self.btn_move_neg = QPushButton("- Move")
        self.btn_move_neg.clicked.connect(lambda: self.on_relative_move(False))
        self.btn_move_pos = QPushButton("+ Move")
        self.btn_move_pos.clicked.connect(lambda: self.on_relative_move(True))
        layout.addWidget(self.btn_move_neg, 1, 2)
        layout.addWidget(self.btn_move_pos, 1, 3)

        # Jog
        layout.addWidget(QLabel("Jog speed:"), 2, 0)
        self.cmb_jog = QComboBox()
        for label, speed in JOG_SPEEDS:
            self.cmb_jog.addItem(label, speed)
        layout.addWidget(self.cmb_jog, 2, 1)
        self.btn_jog_neg = QPushButton("- Jog")
        self.btn_jog_neg.clicked.connect(lambda: self.on_jog(False))
        self.btn_jog_pos = QPushButton("+ Jog")
        self.btn_jog_pos.clicked.connect(lambda: self.on_jog(True))
        layout.addWidget(self.btn_jog_neg, 2, 2)
        layout.addWidget(self.btn_jog_pos, 2, 3)

        # Limits / stop / zero
        self.btn_limit_neg = QPushButton("To - Limit")
        self.btn_limit_neg.clicked.connect(lambda: self.on_move_to_limit(False))
        self.btn_limit_pos = QPushButton("To + Limit")
        self.btn_limit_pos.clicked.connect(lambda: self.on_move_to_limit(True))
        self.btn_stop = QPushButton("Stop")
        self.btn_stop.clicked.connect(self.on_stop_axis)
        self.btn_zero = QPushButton("Zero")
        self.btn_zero.clicked.connect(self.on_zero)
        layout.addWidget(self.btn_limit_neg, 3, 0)
        layout.addWidget(self.btn_limit_pos, 3, 1)
        layout.addWidget(self.btn_stop, 3, 2)
        layout.addWidget(self.btn_zero, 3, 3)

        # Read-outs
        self.btn_refresh_status = QPushButton("Refresh Status")
        self.btn_refresh_status.clicked.connect(self.on_refresh_status)
        layout.addWidget(self.btn_refresh_status, 4, 0)
        self.lbl_axis_info = QLabel("Status: -- | Steps: -- | Limits: -- | Last error: --")
        layout.addWidget(self.lbl_axis_info, 4, 1, 1, 3)

        grp.setLayout(layout)
        self.grp_axis = grp
        return grp

    def create_measure_group(self):
        grp = QGroupBox("Position Measurement (MA, up to 2 min)")
        layout = QHBoxLayout()

        self.btn_measure = QPushButton("Measure Position")
        self.btn_measure.clicked.connect(self.on_measure)
        layout.addWidget(self.btn_measure)

        self.lbl_measure = QLabel("Position: --")
        layout.addWidget(self.lbl_measure)
        layout.addStretch()

        grp.setLayout(layout)
        return grp

    def create_sequence_group(self):
        grp = QGroupBox("Round Trip Test")
        layout = QGridLayout()

        layout.addWidget(QLabel("Move Log:"), 0, 0)
        self.edt_log_path = QLineEdit(os.path.join(os.getcwd(), "data", "moves.csv"))
        layout.addWidget(self.edt_log_path, 0, 1)
        self.btn_browse = QPushButton("...")
        self.btn_browse.setFixedWidth(28)
        self.btn_browse.clicked.connect(self.on_browse)
        layout.addWidget(self.btn_browse, 0, 2)

        self.btn_start = QPushButton("START ROUND TRIP")
        self.btn_start.setStyleSheet("background-color: #4CAF50; color: white; font-weight: bold; padding: 10px;")
        self.btn_start.clicked.connect(self.on_start_sequence)
        layout.addWidget(self.btn_start, 1, 0, 1, 2)

        self.btn_abort = QPushButton("ABORT")
        self.btn_abort.clicked.connect(self.on_abort_sequence)
        layout.addWidget(self.btn_abort, 1, 2)

        self.progress = QProgressBar()
        layout.addWidget(self.progress, 2, 0, 1, 3)

        self.lbl_seq_status = QLabel("Idle")
        layout.addWidget(self.lbl_seq_status, 3, 0, 1, 3)

        grp.setLayout(layout)
        return grp

    # --- LOGIC SLOTS ---

    def current_axis(self):
        return self.cmb_axis.currentData()

    def on_refresh_ports(self):
        self.cmb_port.clear()
        import serial.tools.list_ports
        ports = [p.device for p in serial.tools.list_ports.comports()]
        def port_key(name):
            m = re.search(r"(\d+)$", name)
            return (name.rstrip("0123456789"), int(m.group(1)) if m else -1)
        for dev in sorted(ports, key=port_key):
            self.cmb_port.addItem(dev)
        self.log("Serial ports refreshed.")

    def on_toggle_connect(self):
        if self.current_state != STATE_DISCONNECTED:
            self.ctrl.disconnect()
            self.update_state_ui(STATE_DISCONNECTED)
            self.lbl_info.setText(" | Firmware: -- | Port: --")
            self.log("Disconnected from controller.")
            return

        port = self.cmb_port.currentText()
        if not port:
            QMessageBox.warning(self, "No Port", "Please select a serial port.")
            return

        if self.cmb_profile.currentText() == PROFILE_USB:
            ok = self.ctrl.connect_usb(port)
        else:
            ok = self.ctrl.connect_rs232(port)
        if not ok:
            QMessageBox.critical(self, "Connection Failed",
                                 f"No answer to the handshake on {port}. Check the link type and cable.")
            self.log(f"Connection to {port} failed.", "ERROR")
            return

        firmware = self.ctrl.get_firmware_version() or "--"
        self.lbl_info.setText(f" | Firmware: {firmware} | Port: {port}")
        self.update_state_ui(STATE_CONNECTED)
        self.log(f"Connected to {port}.")

    def on_remote(self):
        if self.ctrl.set_to_remote_mode():
            self.log("Remote mode.")
        else:
            self.log("Failed to set remote mode.", "ERROR")

    def on_local(self):
        if self.ctrl.set_to_local_mode():
            self.log("Local mode (front panel enabled).")
        else:
            self.log("Failed to set local mode.", "ERROR")

    def on_stop_all(self):
        self.log(">>> STOP ALL PRESSED <<<", "ERROR")
        if self.seq_thread and self.seq_thread.isRunning():
            self.seq_thread.abort()
        if self.current_state in (STATE_CONNECTED, STATE_RUNNING, STATE_ERROR):
            for axis in config.AXES:
                self.ctrl.stop_motion(axis)

    def on_change_channel(self):
        channel = self.spin_channel.value()
        if self.ctrl.change_channel(channel):
            self.log(f"Channel -> {channel}")
        else:
            self.log(f"Failed to change channel to {channel}.", "ERROR")

    def on_settings_apply(self):
        term = self.spin_term.value()
        level = self.cmb_log_level.currentData()
        self.ctrl.set_command_term(term)
        self.ctrl.set_log_level(level)
        self.log(f"Settings applied: command term {term} ms, log level {utils.level_name(level)}")

    def on_relative_move(self, sign):
        axis = self.current_axis()
        steps = self.spin_steps.value()
        if not self.ctrl.relative_move(axis, sign, steps):
            self.log(f"Relative move on axis {axis} failed.", "ERROR")

    def on_jog(self, sign):
        axis = self.current_axis()
        if not self.ctrl.start_jog_motion(axis, sign, self.cmb_jog.currentData()):
            self.log(f"Jog on axis {axis} failed.", "ERROR")

    def on_move_to_limit(self, sign):
        axis = self.current_axis()
        if not self.ctrl.move_to_limit(axis, sign, self.cmb_jog.currentData()):
            self.log(f"Move to limit on axis {axis} failed.", "ERROR")

    def on_stop_axis(self):
        self.ctrl.stop_motion(self.current_axis())

    def on_zero(self):
        axis = self.current_axis()
        if self.ctrl.zero_position(axis):
            self.log(f"Axis {axis} step counter zeroed.")

    def on_refresh_status(self):
        axis = self.current_axis()
        status = self.ctrl.get_axis_status(axis)
        steps = self.ctrl.tell_number_of_steps(axis)
        limits = self.ctrl.tell_limit_status()
        error_code = self.ctrl.get_error_of_previous_command()

        status_txt = config.AXIS_STATUS_TEXT.get(status, "--") if status is not None else "--"
        steps_txt = steps if steps is not None else "--"
        limits_txt = "--" if limits is None else f"1:{'ON' if limits[0] else 'off'} 2:{'ON' if limits[1] else 'off'}"
        error_txt = self.ctrl.get_error_text(error_code) if error_code is not None else "--"
        self.lbl_axis_info.setText(
            f"Status: {status_txt} | Steps: {steps_txt} | Limits: {limits_txt} | Last error: {error_txt}")

    def on_measure(self):
        axis = self.current_axis()
        self.update_state_ui(STATE_MEASURING)
        self.lbl_measure.setText("Position: measuring...")

        self.measure_thread = MeasureThread(self.ctrl, axis)
        self.measure_thread.send_failed.connect(self.on_measure_send_failed)
        self.measure_thread.result_ready.connect(self.on_measure_result)
        self.measure_thread.error_occurred.connect(self.on_measure_error)
        self.measure_thread.start()

    def on_measure_send_failed(self):
        self.log("MA command could not be sent.", "ERROR")
        self.lbl_measure.setText("Position: --")
        self.update_state_ui(STATE_CONNECTED)

    def on_measure_result(self, axis, value):
        self.lbl_measure.setText(f"Position: axis {axis} = {value / 10.0:.1f}% of travel")
        self.log(f"Axis {axis} measured position: {value}/1000")
        self.update_state_ui(STATE_CONNECTED)

    def on_measure_error(self, err_msg):
        self.log(err_msg, "ERROR")
        self.lbl_measure.setText("Position: --")
        self.update_state_ui(STATE_CONNECTED)

    def on_start_sequence(self):
        if self.current_state != STATE_CONNECTED:
            QMessageBox.warning(self, "Not Connected", "Connect the controller first.")
            return

        axis = self.current_axis()
        steps = self.spin_steps.value()
        log_path = self.edt_log_path.text().strip() or None

        self.update_state_ui(STATE_RUNNING)
        self.lbl_seq_status.setText("Running...")
        self.log(f"Starting round trip on axis {axis}...")

        self.seq_thread = SequenceThread(self.sequence_logic, axis, steps, log_path)
        self.seq_thread.progress_update.connect(self.on_seq_progress_msg)
        self.seq_thread.progress_val.connect(self.progress.setValue)
        self.seq_thread.finished_ok.connect(self.on_seq_finished)
        self.seq_thread.error_occurred.connect(self.on_seq_error)
        self.seq_thread.start()

    def on_abort_sequence(self):
        if self.seq_thread and self.seq_thread.isRunning():
            self.seq_thread.abort()

    def on_seq_progress_msg(self, msg):
        self.lbl_seq_status.setText(msg)

    def on_seq_finished(self, result):
        self.log(f"Round trip finished: {result}")
        self.lbl_seq_status.setText(
            f"Start {result['start']} -> {result['moved']} -> {result['final']} steps")
        self.update_state_ui(STATE_CONNECTED)

    def on_seq_error(self, err_msg):
        self.log(err_msg, "ERROR")
        QMessageBox.critical(self, "Sequence Error", err_msg)
        self.update_state_ui(STATE_ERROR)

    def on_browse(self):
        path, _ = QFileDialog.getSaveFileName(self, "Select Move Log", self.edt_log_path.text(),
                                              "CSV Files (*.csv);;All Files (*)")
        if path:
            self.edt_log_path.setText(path)

    # --- STATE MACHINE UI UPDATE ---
    def update_state_ui(self, state):
        self.current_state = state
        self.lbl_status.setText(f"Controller: {state}")

        colors = {
            STATE_DISCONNECTED: "gray",
            STATE_CONNECTED: "green",
            STATE_MEASURING: "orange",
            STATE_RUNNING: "blue",
            STATE_ERROR: "darkred",
        }
        self.lbl_status.setStyleSheet(f"font-size: 16px; font-weight: bold; color: {colors.get(state, 'gray')};")

        # ERROR keeps manual control so the user can recover
        enable_manual = state in (STATE_CONNECTED, STATE_ERROR)
        connected = state != STATE_DISCONNECTED

        self.btn_connect.setText("Disconnect Controller" if connected else "Connect Controller")
        self.btn_connect.setEnabled(state not in (STATE_MEASURING, STATE_RUNNING))
        self.cmb_port.setEnabled(not connected)
        self.cmb_profile.setEnabled(not connected)

        # No traffic allowed while MA is outstanding
        self.btn_stop_all.setEnabled(connected and state != STATE_MEASURING)
        self.btn_remote.setEnabled(enable_manual)
        self.btn_local.setEnabled(enable_manual)
        self.btn_channel.setEnabled(enable_manual)
        self.grp_axis.setEnabled(enable_manual)
        self.btn_measure.setEnabled(enable_manual)
        self.btn_start.setEnabled(state == STATE_CONNECTED)
        self.btn_abort.setEnabled(state == STATE_RUNNING)

    def on_log_copy(self):
        QApplication.clipboard().setText(self.log_text.toPlainText())
        self.log("Log copied to clipboard.")

    def on_log_save(self):
        default_name = f"agilis_log_{utils.get_timestamp_file()}.txt"
        path, _ = QFileDialog.getSaveFileName(self, "Save Log", default_name, "Text Files (*.txt);;All Files (*)")
        if path:
            with open(path, "w", encoding="utf-8") as f:
                f.write(self.log_text.toPlainText())
            self.log(f"Log saved: {path}")

    def closeEvent(self, event):
        """Cleanup on Close"""
        self.log("Closing application...", "WARN")

        if self.seq_thread:
            self.seq_thread.abort()
            self.seq_thread.wait()

        # Disconnect cancels an outstanding MA read, so the worker finishes
        self.ctrl.close()
        if self.measure_thread:
            self.measure_thread.wait()

        event.accept()

if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')
    app = QApplication(sys.argv)
    window = MainWindow()
    window.show()
    sys.exit(app.exec())
