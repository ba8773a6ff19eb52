import os
import csv
import logging
from . import utils

FIELDNAMES = [
    "timestamp", "port", "axis", "command",
    "steps_before", "steps_after", "status", "error_code",
]

def append_to_log(log_path, data_dict):
    """
    Append a dictionary row to a CSV move log.
    Automatically writes header if file doesn't exist.
    """
    file_exists = os.path.isfile(log_path)

    utils.ensure_dir(os.path.dirname(log_path))

    try:
        with open(log_path, mode='a', newline='') as f:
            writer = csv.DictWriter(f, fieldnames=FIELDNAMES)

            if not file_exists:
                writer.writeheader()

            # Filter data_dict to only known fields to avoid errors
            row = {k: data_dict.get(k, "") for k in FIELDNAMES}
            writer.writerow(row)
            return True

    except OSError as e:
        logging.error(f"Failed to write log {log_path}: {e}")
        return False
