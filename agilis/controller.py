from . import config, utils
from .protocol import ConnectionProfile, ProtocolEngine


class AgilisController:
    """
    Newport Agilis (AG-UC2 / AG-UC8) command set on top of ProtocolEngine.

    Setters return True/False. Getters return the parsed value, or None if
    the command could not be sent, answered or parsed. Arguments are checked
    before anything is written to the port.
    """

    def __init__(self, log_sink=None, log_level=config.DEFAULT_LOG_LEVEL, engine=None):
        self.engine = engine if engine else ProtocolEngine(log_sink=log_sink, log_level=log_level)

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def log(self, level, msg):
        self.engine.log(level, msg)

    def _check_axis(self, name, axis):
        if utils.is_valid_axis(axis):
            return True
        self.log(config.LOG_ERROR, f"{name}: Invalid axis (must be 1 or 2)")
        return False

    def _get_int(self, mnemonic, param=""):
        value, ok = self.engine.query_integer(utils.format_command(mnemonic, param), mnemonic)
        return value if ok else None

    # --- Connection ---

    def connect_usb(self, port):
        self.log(config.LOG_INFO, f"Connecting to USB device on port: {port}")
        if self.engine.connect(ConnectionProfile.usb(port)):
            self.log(config.LOG_INFO, "Successfully connected to USB device")
            return True
        self.log(config.LOG_ERROR, "Failed to connect to USB device")
        return False

    def connect_rs232(self, port):
        self.log(config.LOG_INFO, f"Connecting to RS232 device on port: {port}")
        if self.engine.connect(ConnectionProfile.rs232(port)):
            self.log(config.LOG_INFO, "Successfully connected to RS232 device")
            return True
        self.log(config.LOG_ERROR, "Failed to connect to RS232 device")
        return False

    def disconnect(self):
        self.engine.disconnect()

    def close(self):
        self.log(config.LOG_INFO, "Closing controller")
        self.engine.close()

    def is_connected(self):
        return self.engine.is_connected()

    def get_port_name(self):
        return self.engine.port_name

    @staticmethod
    def get_error_text(code):
        text = config.ERROR_TEXT.get(code, "Undefined error code.")
        return f"{code}: {text}"

    # --- Step delay (DL) ---

    def set_step_delay(self, axis, delay):
        """Delay between steps in multiples of 10us, 0 to 200000 (2 s)."""
        if not self._check_axis("SetStepDelay", axis):
            return False
        if not 0 <= delay <= config.MAX_STEP_DELAY:
            self.log(config.LOG_ERROR, f"SetStepDelay: Invalid delay (must be between 0 and {config.MAX_STEP_DELAY})")
            return False
        self.log(config.LOG_INFO, f"Setting step delay for axis {axis} to {delay}")
        return self.engine.send_command(utils.format_command(utils.axis_mnemonic(axis, "DL"), delay))

    def get_step_delay(self, axis):
        if not self._check_axis("GetStepDelay", axis):
            return None
        self.log(config.LOG_INFO, f"Getting step delay for axis {axis}")
        delay = self._get_int(utils.axis_mnemonic(axis, "DL"), "?")
        self.log(config.LOG_INFO, f"Step delay for axis {axis}: {delay}")
        return delay

    # --- Jog (JA) ---

    def start_jog_motion(self, axis, sign, jog_speed):
        """
        Jog at one of the JOGSPEED_* settings; sign=False jogs backwards.
        JOGSPEED_0 stops the jog.
        """
        if not self._check_axis("StartJogMotion", axis):
            return False
        if not config.JOGSPEED_0 <= jog_speed <= config.JOGSPEED_666:
            self.log(config.LOG_ERROR, "StartJogMotion: Invalid jog speed (must be between 0 and 4)")
            return False
        speed = utils.signed(jog_speed, sign)
        self.log(config.LOG_INFO, f"Starting jog motion for axis {axis} with speed {speed}")
        return self.engine.send_command(utils.format_command(utils.axis_mnemonic(axis, "JA"), speed))

    def get_jog_mode(self, axis):
        """Returns (sign, jog_speed) or None."""
        if not self._check_axis("GetJogMode", axis):
            return None
        self.log(config.LOG_INFO, f"Getting jog mode for axis {axis}")
        speed = self._get_int(utils.axis_mnemonic(axis, "JA"), "?")
        if speed is None:
            return None
        sign = speed >= 0
        self.log(config.LOG_INFO,
                 f"Jog mode for axis {axis}: sign={'positive' if sign else 'negative'}, speed={abs(speed)}")
        return sign, abs(speed)

    # --- Measure position (MA) ---

    def measure_current_position(self, axis):
        """
        Start the position measurement. USB communication with the controller
        is interrupted while it runs, which can take up to 2 minutes.

        Returns (sent, future). The future resolves to the distance of the
        current position to the limit in 1/1000th of the total travel, or None.
        Do not send other commands until the future is done.
        """
        if not self._check_axis("MeasureCurrentPosition", axis):
            return False, None
        self.log(config.LOG_INFO, f"Measuring current position for axis {axis}")
        mnemonic = utils.axis_mnemonic(axis, "MA")
        return self.engine.send_long_running(mnemonic, mnemonic)

    # --- Local / remote (ML / MR) ---

    def set_to_local_mode(self):
        self.log(config.LOG_INFO, "Setting to local mode")
        return self.engine.send_command("ML")

    def set_to_remote_mode(self):
        self.log(config.LOG_INFO, "Setting to remote mode")
        return self.engine.send_command("MR")

    # --- Moves (MV / PA / PR) ---

    def move_to_limit(self, axis, sign, jog_speed=config.JOGSPEED_1700):
        if not self._check_axis("MoveToLimit", axis):
            return False
        if not config.JOGSPEED_0 <= jog_speed <= config.JOGSPEED_666:
            self.log(config.LOG_ERROR, "MoveToLimit: Invalid jog speed (must be between 0 and 4)")
            return False
        direction = "positive" if sign else "negative"
        self.log(config.LOG_INFO, f"Moving axis {axis} to {direction} limit with speed {jog_speed}")
        return self.engine.send_command(
            utils.format_command(utils.axis_mnemonic(axis, "MV"), utils.signed(jog_speed, sign)))

    def absolute_move(self, axis, position):
        """Move to a position in 1/1000th of total travel. Can take up to 2 minutes."""
        if not self._check_axis("AbsoluteMove", axis):
            return False
        if not 0 <= position <= config.MAX_ABSOLUTE_POSITION:
            self.log(config.LOG_ERROR, f"AbsoluteMove: Invalid position (must be between 0 and {config.MAX_ABSOLUTE_POSITION})")
            return False
        self.log(config.LOG_INFO, f"Moving axis {axis} to absolute position {position}")
        return self.engine.send_command(utils.format_command(utils.axis_mnemonic(axis, "PA"), position))

    def relative_move(self, axis, sign, steps):
        if not self._check_axis("RelativeMove", axis):
            return False
        direction = "positive" if sign else "negative"
        self.log(config.LOG_INFO, f"Moving axis {axis} {steps} steps in {direction} direction")
        return self.engine.send_command(
            utils.format_command(utils.axis_mnemonic(axis, "PR"), utils.signed(steps, sign)))

    def tell_limit_status(self):
        """Returns (axis1_at_limit, axis2_at_limit) or None."""
        self.log(config.LOG_INFO, "Getting limit status")
        v = self._get_int("PH")
        if v is None:
            return None
        # bit 0: axis 1, bit 1: axis 2
        axis1, axis2 = bool(v & 1), bool(v & 2)
        self.log(config.LOG_INFO,
                 f"Limit status: axis1={'at limit' if axis1 else 'not at limit'}, "
                 f"axis2={'at limit' if axis2 else 'not at limit'}")
        return axis1, axis2

    # --- Reset / stop (RS / ST) ---

    def reset_controller(self):
        """All temporary settings are reset and the controller goes to local mode."""
        self.log(config.LOG_INFO, "Resetting controller")
        return self.engine.send_command("RS")

    def stop_motion(self, axis):
        if not self._check_axis("StopMotion", axis):
            return False
        self.log(config.LOG_INFO, f"Stopping motion for axis {axis}")
        return self.engine.send_command(utils.axis_mnemonic(axis, "ST"))

    # --- Step amplitude (SU) ---

    def set_step_amplitude(self, axis, sign, amplitude):
        """amplitude: 1 to 50; sign selects the forward or backward setting."""
        if not self._check_axis("SetStepAmplitude", axis):
            return False
        if not 1 <= amplitude <= config.MAX_STEP_AMPLITUDE:
            self.log(config.LOG_ERROR, "SetStepAmplitude: Invalid amplitude (must be between 1 and 50)")
            return False
        direction = "positive" if sign else "negative"
        self.log(config.LOG_INFO, f"Setting step amplitude for axis {axis} to {amplitude} in {direction} direction")
        return self.engine.send_command(
            utils.format_command(utils.axis_mnemonic(axis, "SU"), utils.signed(amplitude, sign)))

    def get_step_amplitude(self, axis, sign):
        if not self._check_axis("GetStepAmplitudeSetting", axis):
            return None
        direction = "positive" if sign else "negative"
        self.log(config.LOG_INFO, f"Getting step amplitude for axis {axis} in {direction} direction")
        amplitude = self._get_int(utils.axis_mnemonic(axis, "SU"), "?" if sign else "-?")
        if amplitude is None:
            return None
        amplitude = abs(amplitude)
        self.log(config.LOG_INFO, f"Step amplitude for axis {axis} in {direction} direction: {amplitude}")
        return amplitude

    # --- Queries (TE / TP / TS / VE) ---

    def get_error_of_previous_command(self):
        """
        Error code of the previous command (0 = no error).
        Query after each command for a safe program flow.
        """
        self.log(config.LOG_INFO, "Getting error of previous command")
        code = self._get_int("TE")
        if code is not None:
            self.log(config.LOG_INFO, f"Error of previous command: {code} ({self.get_error_text(code)})")
        return code

    def tell_number_of_steps(self, axis):
        """Forward minus backward steps since power-up or the last ZP."""
        if not self._check_axis("TellNumberOfSteps", axis):
            return None
        self.log(config.LOG_INFO, f"Getting number of steps for axis {axis}")
        steps = self._get_int(utils.axis_mnemonic(axis, "TP"))
        self.log(config.LOG_INFO, f"Number of steps for axis {axis}: {steps}")
        return steps

    def get_axis_status(self, axis):
        """One of AXISSTATUS_*, or None."""
        if not self._check_axis("GetAxisStatus", axis):
            return None
        self.log(config.LOG_INFO, f"Getting status for axis {axis}")
        status = self._get_int(utils.axis_mnemonic(axis, "TS"))
        if status is not None:
            text = config.AXIS_STATUS_TEXT.get(status, "Unknown")
            self.log(config.LOG_INFO, f"Status for axis {axis}: {status} ({text})")
        return status

    def get_firmware_version(self):
        self.log(config.LOG_INFO, "Getting controller firmware version")
        text, ok = self.engine.query(config.VERSION_QUERY)
        if not ok:
            return None
        version = self.engine.parse_text_reply(text)
        self.log(config.LOG_INFO, f"Controller firmware version: {version}")
        return version

    # --- Zero (ZP) ---

    def zero_position(self, axis):
        if not self._check_axis("ZeroPosition", axis):
            return False
        self.log(config.LOG_INFO, f"Zeroing position for axis {axis}")
        return self.engine.send_command(utils.axis_mnemonic(axis, "ZP"))

    # --- Channel (CC, AG-UC8 only) ---

    def change_channel(self, channel):
        if not utils.is_valid_channel(channel):
            self.log(config.LOG_ERROR, "ChangeChannel: Invalid channel (must be between 0 and 4)")
            return False
        self.log(config.LOG_INFO, f"Changing to channel {channel}")
        return self.engine.send_command(utils.format_command("CC", channel))

    def get_channel(self):
        self.log(config.LOG_INFO, "Getting current channel")
        channel = self._get_int("CC", "?")
        self.log(config.LOG_INFO, f"Current channel: {channel}")
        return channel

    # --- Settings ---

    def set_command_term(self, ms):
        self.engine.set_command_term(ms)

    def get_command_term(self):
        return self.engine.get_command_term()

    def set_log_level(self, level):
        self.engine.set_log_level(level)

    def get_log_level(self):
        return self.engine.get_log_level()
