import re
import time
import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass
from . import config, utils
from .pacing import PacingTimer
from .serial_port import SerialTransport

logger = logging.getLogger(__name__)

_INTEGER_RE = re.compile(r"\s*([+-]?\d+)\s*")


@dataclass(frozen=True)
class ConnectionProfile:
    """Line settings and handshake for one connect attempt."""
    port: str
    baudrate: int
    bytesize: int = config.BYTE_SIZE
    stopbits: float = config.STOP_BITS
    parity: str = config.PARITY
    handshake_timeout_ms: int = config.HANDSHAKE_TIMEOUT_MS
    handshake_send: str = config.HANDSHAKE_SEND
    handshake_expect: str = config.HANDSHAKE_EXPECT

    @classmethod
    def usb(cls, port):
        return cls(port, config.USB_BAUDRATE)

    @classmethod
    def rs232(cls, port):
        return cls(port, config.RS232_BAUDRATE)


class ProtocolEngine:
    """
    Command/response cycle over a SerialTransport.

    Every operation touching the connection, the pacing clock or the settings
    runs under self.lock, so one command/response cycle runs at a time.
    The deferred receive of send_long_running() runs outside the lock: do not
    issue another command on the connection while a measurement is outstanding.

    log_sink(level, message) is called synchronously on the calling thread for
    every event at or above the log level, often with self.lock held, so the sink
    must not call back into the engine. All events also go to the module logger.
    """

    def __init__(self, transport=None, log_sink=None,
                 log_level=config.DEFAULT_LOG_LEVEL,
                 command_term_ms=config.COMMAND_TERM_MS):
        self.lock = threading.Lock()
        self.transport = transport if transport else SerialTransport()
        self.transport.log_cb = self._on_transport_log
        self.port_name = ""
        self._log_sink = log_sink
        self._log_level = log_level
        self._cmd_term_ms = command_term_ms
        self._timer = PacingTimer()
        self._executor = None  # created on first measurement, again after close()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    # --- Logging ---

    def log(self, level, msg):
        logger.log(level, msg)
        if self._log_sink and level >= self._log_level:
            self._log_sink(level, msg)

    def _on_transport_log(self, msg):
        self.log(config.LOG_DEBUG, f"Serial: {msg}")

    def set_log_level(self, level):
        with self.lock:
            self._log_level = level
        self.log(config.LOG_INFO, f"Log level set to {utils.level_name(level)}")

    def get_log_level(self):
        with self.lock:
            return self._log_level

    # --- Configuration ---

    def set_command_term(self, ms):
        with self.lock:
            self._cmd_term_ms = ms
        self.log(config.LOG_INFO, f"Command term set to {ms} ms")

    def get_command_term(self):
        with self.lock:
            return self._cmd_term_ms

    # --- Connection ---

    def connect(self, profile):
        with self.lock:
            self.log(config.LOG_INFO, f"Connecting to {profile.port} at {profile.baudrate}...")
            ok = self.transport.connect(
                profile.port,
                profile.baudrate,
                bytesize=profile.bytesize,
                stopbits=profile.stopbits,
                parity=profile.parity,
                handshake_timeout_ms=profile.handshake_timeout_ms,
                handshake_send=profile.handshake_send,
                handshake_expect=profile.handshake_expect,
            )
            if not ok:
                self.log(config.LOG_ERROR, f"Failed to connect to {profile.port}")
                return False
            self.port_name = profile.port
            self._timer.start()
            self.log(config.LOG_INFO, f"Connected to {profile.port}")
            return True

    def disconnect(self):
        """Safe to call repeatedly. A pending measurement read is cancelled."""
        with self.lock:
            self.log(config.LOG_INFO, "Disconnecting device")
            self.transport.disconnect()
            self.port_name = ""

    def close(self):
        self.disconnect()
        with self.lock:
            executor, self._executor = self._executor, None
        if executor:
            executor.shutdown(wait=True)

    def is_connected(self):
        """
        True only if the firmware version query completes a full round trip;
        an open handle alone may belong to an unresponsive device.
        """
        if not self.transport.is_connected():
            return False
        _, ok = self.query(config.VERSION_QUERY)
        self.log(config.LOG_DEBUG, f"Connection status: {'Connected' if ok else 'Disconnected'}")
        return ok

    # --- Command cycle ---

    def send_command(self, command):
        with self.lock:
            return self._send(command)

    def await_response(self, timeout_ms=config.RESPONSE_TIMEOUT_MS):
        with self.lock:
            return self._receive(timeout_ms)

    def query(self, command, timeout_ms=config.RESPONSE_TIMEOUT_MS):
        """Send and read the reply in one critical section. Returns (text, ok)."""
        with self.lock:
            if not self._send(command):
                return "", False
            return self._receive(timeout_ms)

    def query_integer(self, command, mnemonic, timeout_ms=config.RESPONSE_TIMEOUT_MS):
        """Returns (value, ok) for a reply of the form <mnemonic><integer>\\r\\n."""
        text, ok = self.query(command, timeout_ms)
        if not ok:
            return None, False
        return self.parse_integer_reply(text, mnemonic)

    def send_long_running(self, command, mnemonic, timeout_ms=config.MEASURE_TIMEOUT_MS):
        """
        Send now, resolve later.
        Returns (sent, future). The future resolves to the parsed integer,
        or None on timeout, parse failure or disconnect. sent=False gives no future.
        """
        with self.lock:
            if not self._send(command):
                return False, None
            if self._executor is None:
                self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="agilis-measure")
            executor = self._executor
        future = executor.submit(self._await_integer, mnemonic, timeout_ms)
        return True, future

    def _await_integer(self, mnemonic, timeout_ms):
        self.log(config.LOG_INFO, f"Waiting for '{mnemonic}' result (up to {timeout_ms // 1000} seconds)")
        text, ok = self._receive(timeout_ms)
        if not ok:
            return None
        value, ok = self.parse_integer_reply(text, mnemonic)
        if not ok:
            return None
        self.log(config.LOG_INFO, f"Result for '{mnemonic}': {value}")
        return value

    def _send(self, command):
        """Pace, flush, write command + CRLF, restart the pacing clock."""
        remaining = self._timer.remaining_ms(self._cmd_term_ms)
        if remaining > 0:
            self.log(config.LOG_DEBUG, f"Waiting {remaining} ms before sending command")
            time.sleep(remaining / 1000.0)

        self.transport.flush_send()
        self.transport.flush_listen()

        try:
            payload = (command + config.DELIMITER).encode("ascii")
        except UnicodeEncodeError:
            self.log(config.LOG_ERROR, f"Failed to send command: non-ASCII text {command!r}")
            return False

        self.log(config.LOG_DEBUG, f"Sending command: {command}")
        written = self.transport.send(payload)
        # Spacing is measured from the attempt, not from a confirmed write
        self._timer.start()

        if written != len(payload):
            self.log(config.LOG_ERROR,
                     f"Failed to send command: wrote {written} bytes, expected {len(payload)}")
            return False
        return True

    def _receive(self, timeout_ms):
        self.log(config.LOG_DEBUG, f"Waiting for response (timeout: {timeout_ms} ms)")
        data, ok = self.transport.listen_until(config.DELIMITER, timeout_ms)
        self.transport.flush_listen()

        if not ok:
            self.log(config.LOG_ERROR, "Failed to get response (timeout)")
            return "", False

        text = data.decode("ascii", errors="replace")
        self.log(config.LOG_DEBUG, f"Got response: {text!r}")
        return text, True

    # --- Parsing ---

    def parse_integer_reply(self, text, mnemonic):
        """
        Parse '<mnemonic><signed decimal>\\r\\n'.
        Returns (value, True) or (None, False).
        """
        begin = text.find(mnemonic)
        if begin == -1:
            self.log(config.LOG_ERROR, f"Failed to find command '{mnemonic}' in response")
            return None, False

        start = begin + len(mnemonic)
        end = text.find(config.DELIMITER, start)
        if end == -1:
            self.log(config.LOG_ERROR, "Failed to find end marker in response")
            return None, False

        payload = text[start:end]
        m = _INTEGER_RE.fullmatch(payload)
        if not m:
            self.log(config.LOG_ERROR, f"Failed to convert '{payload}' to integer")
            return None, False
        return int(m.group(1)), True

    def parse_text_reply(self, text):
        """Free-text reply (e.g. firmware version) without its delimiter."""
        return utils.strip_delimiter(text).strip()
