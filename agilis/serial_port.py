import serial
import time
import threading
import logging
from . import config

logger = logging.getLogger(__name__)


class CancellableReader:
    """
    Delimiter-bounded reader over an open pyserial port.

    Reads in short slices (the port timeout) so that a deadline or a cancel()
    from another thread stops the read. When read_until() returns, no read
    is left in flight on the port.
    """

    def __init__(self, port):
        self.port = port
        self._cancelled = threading.Event()

    def read_until(self, delimiter, timeout_s):
        """
        Returns (data, found). On success data ends with the delimiter and
        anything received after it is dropped. On timeout or cancel the
        partial data is returned with found=False.
        """
        self._cancelled.clear()
        buf = bytearray()
        deadline = time.monotonic() + timeout_s
        while not self._cancelled.is_set():
            if time.monotonic() >= deadline or not self.port.is_open:
                break
            try:
                chunk = self.port.read(max(1, self.port.in_waiting))
            except (TypeError, AttributeError):
                # pyserial hits a None file descriptor when closed mid-read
                break
            if not chunk:
                continue
            buf.extend(chunk)
            idx = buf.find(delimiter)
            if idx != -1:
                return bytes(buf[:idx + len(delimiter)]), True
        return bytes(buf), False

    def cancel(self):
        self._cancelled.set()
        try:
            self.port.cancel_read()
        except (AttributeError, NotImplementedError):
            # Port types without cancel_read still stop within READ_POLL_S
            pass


class SerialTransport:
    """
    Raw byte-level I/O over one serial device.
    No exception crosses this boundary: operations return bools or byte counts.
    """

    def __init__(self, log_callback=None):
        self.ser = None
        self.reader = None
        self.log_cb = log_callback

    def log(self, msg):
        if self.log_cb:
            self.log_cb(msg)
        else:
            logger.debug(msg)

    def connect(self, port, baudrate, bytesize=config.BYTE_SIZE,
                stopbits=config.STOP_BITS, parity=config.PARITY,
                handshake_timeout_ms=config.HANDSHAKE_TIMEOUT_MS,
                handshake_send="", handshake_expect=""):
        """
        Open and configure the port.
        Handshake policy (only when handshake_expect is non-empty):
        1. Wait HANDSHAKE_SETTLE_S.
        2. Send handshake_send.
        3. Listen for handshake_expect within handshake_timeout_ms.
        Any failure leaves the port closed.
        """
        if self.ser is not None:
            self.disconnect()

        try:
            self.ser = serial.Serial(
                port=port,
                baudrate=baudrate,
                bytesize=bytesize,
                stopbits=stopbits,
                parity=parity,
                timeout=config.READ_POLL_S,
                write_timeout=config.WRITE_TIMEOUT_S,
            )
            self.reader = CancellableReader(self.ser)
            self.log(f"Connected to serial port: {port}")
        except (serial.SerialException, ValueError, OSError) as e:
            self.log(f"Error connecting to serial port: {e}")
            self.ser = None
            self.reader = None
            return False

        if not handshake_expect:
            return True

        time.sleep(config.HANDSHAKE_SETTLE_S)
        self.send(handshake_send)

        _, ok = self.listen_until(handshake_expect, handshake_timeout_ms)
        if ok:
            self.log("Handshake successful")
            return True

        self.log("Handshake failed")
        self.disconnect()
        return False

    def disconnect(self):
        ser, reader = self.ser, self.reader
        if ser is None:
            return
        self.ser = None
        self.reader = None
        try:
            if reader:
                reader.cancel()
            ser.close()
            self.log("Disconnected from serial port")
        except (serial.SerialException, OSError) as e:
            self.log(f"Error during disconnect: {e}")

    def is_connected(self):
        """Best-effort liveness: zero-length write on an open port."""
        ser = self.ser
        if ser is None or not ser.is_open:
            return False
        try:
            ser.write(b"")
            return True
        except (serial.SerialException, OSError) as e:
            self.log(f"Connection check failed: {e}")
            return False

    def send(self, data):
        """Write bytes (str is ASCII-encoded). Returns bytes written, 0 on error."""
        ser = self.ser
        if ser is None:
            self.log("Send failed: Port not open")
            return 0

        if isinstance(data, str):
            data = data.encode("ascii")
        try:
            written = ser.write(data) or 0
        except (serial.SerialException, OSError) as e:
            self.log(f"Send error: {e}")
            return 0

        if written > 0:
            self.log(f"Sent {written} bytes: {data!r}")
        return written

    def listen_until(self, delimiter, timeout_ms):
        """
        Read until delimiter or timeout_ms.
        Returns (data, ok); data includes the delimiter on success.
        """
        reader = self.reader
        if reader is None:
            self.log("ListenUntil failed: Port not open")
            return b"", False

        if isinstance(delimiter, str):
            delimiter = delimiter.encode("ascii")
        try:
            data, ok = reader.read_until(delimiter, timeout_ms / 1000.0)
        except (serial.SerialException, OSError, TypeError, AttributeError) as e:
            # closed under us (disconnect) or device gone
            self.log(f"Read error: {e}")
            return b"", False

        if not ok:
            self.log(f"ListenUntil timeout after {timeout_ms}ms")
            return b"", False

        self.log(f"Received: {data!r}")
        return data, True

    def flush_listen(self):
        """Discard unread input."""
        ser = self.ser
        if ser is None:
            return
        try:
            ser.reset_input_buffer()
            self.log("Flushed receive buffer")
        except NotImplementedError:
            logger.warning("Flushing receive buffer not supported on this port")
        except (serial.SerialException, OSError) as e:
            self.log(f"FlushListen error: {e}")

    def flush_send(self):
        """Discard unsent output."""
        ser = self.ser
        if ser is None:
            return
        try:
            ser.reset_output_buffer()
            self.log("Flushed send buffer")
        except NotImplementedError:
            logger.warning("Flushing send buffer not supported on this port")
        except (serial.SerialException, OSError) as e:
            self.log(f"FlushSend error: {e}")
