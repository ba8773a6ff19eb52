import unittest
from unittest.mock import MagicMock, PropertyMock, patch
import threading
import time
import serial
from agilis.serial_port import SerialTransport, CancellableReader
from agilis import config
from fake_serial import FakeSerial


class TestSerialTransport(unittest.TestCase):

    def setUp(self):
        self.fake = FakeSerial(timeout=config.READ_POLL_S)
        self.transport = SerialTransport()

    def tearDown(self):
        self.transport.disconnect()

    @patch('serial.Serial')
    def test_connect_without_handshake(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake

        self.assertTrue(self.transport.connect("COM3", config.USB_BAUDRATE))
        self.assertTrue(self.transport.is_connected())
        self.assertEqual(self.fake.written, [])

        _, kwargs = mock_serial_cls.call_args
        self.assertEqual(kwargs["port"], "COM3")
        self.assertEqual(kwargs["baudrate"], 921600)
        self.assertEqual(kwargs["timeout"], config.READ_POLL_S)

    @patch('serial.Serial')
    def test_connect_handshake_success(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.fake.replies["VE"] = b"AG-UC2 v2.2.1\r\n"

        ok = self.transport.connect("COM3", config.USB_BAUDRATE,
                                    handshake_timeout_ms=500,
                                    handshake_send="VE\r\n",
                                    handshake_expect="\r\n")
        self.assertTrue(ok)
        self.assertTrue(self.transport.is_connected())
        self.assertEqual(self.fake.written, [b"VE\r\n"])

    @patch('serial.Serial')
    def test_handshake_mismatch_leaves_port_closed(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.fake.replies["VE"] = b"ERR\r\n"

        ok = self.transport.connect("COM3", config.USB_BAUDRATE,
                                    handshake_timeout_ms=200,
                                    handshake_send="VE\r\n",
                                    handshake_expect="OK\r\n")
        self.assertFalse(ok)
        self.assertFalse(self.transport.is_connected())
        self.assertIsNone(self.transport.ser)
        self.assertFalse(self.fake.is_open)

    @patch('serial.Serial', side_effect=serial.SerialException("could not open port 'COM99'"))
    def test_open_error_returns_false(self, mock_serial_cls):
        messages = []
        self.transport.log_cb = messages.append

        self.assertFalse(self.transport.connect("COM99", config.USB_BAUDRATE))
        self.assertFalse(self.transport.is_connected())
        self.assertTrue(any("Error connecting" in m for m in messages))

    def test_send_when_disconnected(self):
        self.assertEqual(self.transport.send(b"1PR10\r\n"), 0)
        self.assertEqual(self.transport.listen_until("\r\n", 100), (b"", False))

    @patch('serial.Serial')
    def test_send_write_error_returns_zero(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)
        self.fake.fail_write = True

        self.assertEqual(self.transport.send("1PR10\r\n"), 0)

    @patch('serial.Serial')
    def test_send_encodes_text(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)

        self.assertEqual(self.transport.send("1TP\r\n"), 5)
        self.assertEqual(self.fake.written, [b"1TP\r\n"])

    @patch('serial.Serial')
    def test_listen_until_success_drops_trailing_bytes(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)
        self.fake.feed(b"1TP5\r\nnoise")

        data, ok = self.transport.listen_until("\r\n", 500)
        self.assertTrue(ok)
        self.assertEqual(data, b"1TP5\r\n")

    @patch('serial.Serial')
    def test_listen_until_split_reply(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)
        self.fake.feed(b"1TP")
        threading.Timer(0.1, self.fake.feed, args=(b"12\r\n",)).start()

        data, ok = self.transport.listen_until("\r\n", 1000)
        self.assertTrue(ok)
        self.assertEqual(data, b"1TP12\r\n")

    @patch('serial.Serial')
    def test_listen_until_timeout(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)
        self.fake.feed(b"1TP")  # no delimiter

        t0 = time.monotonic()
        data, ok = self.transport.listen_until("\r\n", 200)
        elapsed = time.monotonic() - t0

        self.assertFalse(ok)
        self.assertEqual(data, b"")
        self.assertGreaterEqual(elapsed, 0.19)
        self.assertLess(elapsed, 1.0)

    @patch('serial.Serial')
    def test_disconnect_cancels_pending_read(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)
        result = {}

        def reader():
            t0 = time.monotonic()
            result["value"] = self.transport.listen_until("\r\n", 5000)
            result["elapsed"] = time.monotonic() - t0

        th = threading.Thread(target=reader)
        th.start()
        time.sleep(0.2)
        self.transport.disconnect()
        th.join(timeout=2.0)

        self.assertFalse(th.is_alive())
        self.assertEqual(result["value"], (b"", False))
        self.assertLess(result["elapsed"], 1.0)
        self.assertFalse(self.fake.is_open)

    @patch('serial.Serial')
    def test_listen_on_reader_whose_port_was_closed(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)

        # A measurement worker holding the reader when disconnect() lands
        reader = self.transport.reader
        self.transport.disconnect()
        self.transport.reader = reader

        t0 = time.monotonic()
        self.assertEqual(self.transport.listen_until("\r\n", 200), (b"", False))
        self.assertLess(time.monotonic() - t0, 0.5)
        self.transport.reader = None

    @patch('serial.Serial')
    def test_disconnect_is_idempotent(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)

        self.transport.disconnect()
        self.transport.disconnect()
        self.assertFalse(self.transport.is_connected())

    @patch('serial.Serial')
    def test_flush(self, mock_serial_cls):
        mock_serial_cls.return_value = self.fake
        self.transport.connect("COM3", config.USB_BAUDRATE)
        self.fake.feed(b"stale\r\n")

        self.transport.flush_listen()
        self.transport.flush_send()

        self.assertEqual(self.fake.in_waiting, 0)
        self.assertEqual(self.fake.input_resets, 1)
        self.assertEqual(self.fake.output_resets, 1)


class TestCancellableReader(unittest.TestCase):

    def test_cancel_from_other_thread(self):
        fake = FakeSerial(timeout=config.READ_POLL_S)
        reader = CancellableReader(fake)
        threading.Timer(0.1, reader.cancel).start()

        t0 = time.monotonic()
        data, found = reader.read_until(b"\r\n", 5.0)

        self.assertFalse(found)
        self.assertEqual(data, b"")
        self.assertLess(time.monotonic() - t0, 1.0)

    def test_port_closed_between_checks(self):
        port = MagicMock()
        port.is_open = True
        type(port).in_waiting = PropertyMock(
            side_effect=TypeError("argument must be an int, or have a fileno() method"))
        reader = CancellableReader(port)

        self.assertEqual(reader.read_until(b"\r\n", 1.0), (b"", False))
        port.read.assert_not_called()

if __name__ == '__main__':
    unittest.main()
