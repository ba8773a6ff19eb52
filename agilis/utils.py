import os
import logging
import datetime
from . import config

def get_timestamp_iso():
    """Return current timestamp in ISO 8601 format."""
    return datetime.datetime.now().isoformat()

def get_timestamp_file():
    """Return timestamp suitable for filenames (YYYYMMDD_HHMMSS)."""
    return datetime.datetime.now().strftime("%Y%m%d_%H%M%S")

def ensure_dir(directory):
    """Ensure a directory exists."""
    if directory and not os.path.exists(directory):
        os.makedirs(directory)

def is_valid_axis(axis):
    return axis in config.AXES

def is_valid_channel(channel):
    return config.MIN_CHANNEL <= channel <= config.MAX_CHANNEL

def axis_mnemonic(axis, mnemonic):
    """
    Prefix a two-letter mnemonic with its axis digit.
    axis_mnemonic(1, "PR") -> "1PR"
    """
    return f"{axis}{mnemonic}"

def format_command(mnemonic, param=""):
    """
    Format command string MNEMONIC[PARAM].
    format_command("1PR", 10) -> '1PR10'
    format_command("CC", "?") -> 'CC?'
    """
    return f"{mnemonic}{param}"

def signed(value, sign):
    """Apply a direction flag to a magnitude: sign=False negates."""
    return value if sign else -value

def strip_delimiter(text):
    """Cut a reply at the first line delimiter."""
    end = text.find(config.DELIMITER)
    return text[:end] if end != -1 else text

def level_name(level):
    if level >= config.LOG_NONE:
        return "NONE"
    return logging.getLevelName(level)
