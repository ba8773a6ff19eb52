# Agilis Configuration Constants
import logging
import serial

# Serial Settings
USB_BAUDRATE = 921600
RS232_BAUDRATE = 115200
BYTE_SIZE = serial.EIGHTBITS
STOP_BITS = serial.STOPBITS_ONE
PARITY = serial.PARITY_NONE
READ_POLL_S = 0.05     # Slice for each blocking read, bounds cancel latency
WRITE_TIMEOUT_S = 1.0

# Handshake
HANDSHAKE_SEND = "VE\r\n"
HANDSHAKE_EXPECT = "\r\n"
HANDSHAKE_TIMEOUT_MS = 1000
HANDSHAKE_SETTLE_S = 0.1

# Protocol
DELIMITER = "\r\n"
COMMAND_TERM_MS = 50          # Min gap between command sends
RESPONSE_TIMEOUT_MS = 3000
MEASURE_TIMEOUT_MS = 130000   # MA can take up to ~2 minutes
VERSION_QUERY = "VE"

# Logging
LOG_DEBUG = logging.DEBUG
LOG_INFO = logging.INFO
LOG_WARNING = logging.WARNING
LOG_ERROR = logging.ERROR
LOG_NONE = logging.CRITICAL + 10
DEFAULT_LOG_LEVEL = LOG_WARNING

# Axes / Channels / Ranges
AXES = (1, 2)
MIN_CHANNEL = 0
MAX_CHANNEL = 4
MAX_STEP_AMPLITUDE = 50
MAX_STEP_DELAY = 200000       # x 10us = 2s
MAX_ABSOLUTE_POSITION = 1000  # 1/1000th of total travel

# Jog Speeds (JA / MV)
JOGSPEED_0 = 0      # Stop
JOGSPEED_5 = 1      # 5 steps/s at defined step amplitude
JOGSPEED_100 = 2    # 100 steps/s at maximum step amplitude
JOGSPEED_1700 = 3   # 1700 steps/s at maximum step amplitude
JOGSPEED_666 = 4    # 666 steps/s at defined step amplitude

# Axis Status (TS)
AXISSTATUS_READY = 0
AXISSTATUS_STEPPING = 1
AXISSTATUS_JOGGING = 2
AXISSTATUS_MOVINGTOLIMIT = 3

AXIS_STATUS_TEXT = {
    AXISSTATUS_READY: "Ready",
    AXISSTATUS_STEPPING: "Stepping",
    AXISSTATUS_JOGGING: "Jogging",
    AXISSTATUS_MOVINGTOLIMIT: "Moving to limit",
}

# Error Codes (TE), plus driver-side codes 1, 8, 9
ERROR_TEXT = {
    0: "No error.",
    -1: "Unknown command.",
    -2: "Axis out of range (must be 1 or 2, or must not be specified).",
    -3: "Wrong format for parameter nn (or must not be specified).",
    -4: "Parameter nn out of range.",
    -5: "Not allowed in local mode.",
    -6: "Not allowed in current state.",
    1: "Communication sync failed so reconfigure the port.",
    8: "TE command failed to sent.",
    9: "Write serial failed.",
}

# Sequence
STATUS_POLL_S = 0.1
MOVE_TIMEOUT_S = 60.0
