import sys
import logging
from concurrent.futures import TimeoutError as FutureTimeoutError
# Add project root to path
sys.path.append(".")

from agilis.controller import AgilisController
from agilis import config


def print_sink(level, msg):
    print(f"  [{logging.getLevelName(level)}] {msg}")


def read_int(prompt):
    try:
        return int(input(prompt))
    except ValueError:
        print("Invalid integer")
        return None


def read_axis():
    axis = read_int("Axis (1/2): ")
    if axis is not None and axis not in config.AXES:
        print("Invalid axis")
        return None
    return axis


def main():
    logging.basicConfig(level=logging.WARNING, format='%(asctime)s - %(levelname)s - %(message)s')

    print("=== Agilis Hardware Check ===")
    port = input("Enter serial port (e.g. COM3 or /dev/ttyUSB0): ").strip()
    if not port:
        print("No port entered. Exiting.")
        return

    ctrl = AgilisController(log_sink=print_sink, log_level=config.LOG_WARNING)

    print(f"Connecting to {port} (USB)...")
    if not ctrl.connect_usb(port):
        print("USB handshake failed, trying RS-232...")
        if not ctrl.connect_rs232(port):
            print("Connection Failed. Check cable and port.")
            ctrl.close()
            return
    print(f"Connected! Firmware: {ctrl.get_firmware_version()}")

    while True:
        print("\n--- MENU ---")
        print("[1] Relative Move (PR)")
        print("[2] Axis Status (TS)")
        print("[3] Step Counter (TP)")
        print("[4] Measure Position (MA, up to 2 min)")
        print("[5] Zero Step Counter (ZP)")
        print("[6] Stop Axis (ST)")
        print("[7] Last Error (TE)")
        print("[8] Change Channel (CC, AG-UC8)")
        print(f"[9] Command Term (now {ctrl.get_command_term()} ms)")
        print("[r] Remote Mode (MR)")
        print("[q] Quit")

        choice = input("Select: ").strip().lower()

        if choice == 'q':
            ctrl.close()
            break

        elif choice == '1':
            axis = read_axis()
            steps = read_int("Steps (signed): ")
            if axis is None or steps is None:
                continue
            if ctrl.relative_move(axis, steps >= 0, abs(steps)):
                print(">> OK")
            else:
                print(">> FAILED (Check log/console)")

        elif choice == '2':
            axis = read_axis()
            if axis is None:
                continue
            status = ctrl.get_axis_status(axis)
            if status is None:
                print(">> FAILED")
            else:
                print(f">> {status}: {config.AXIS_STATUS_TEXT.get(status, 'Unknown')}")

        elif choice == '3':
            axis = read_axis()
            if axis is None:
                continue
            steps = ctrl.tell_number_of_steps(axis)
            print(">> FAILED" if steps is None else f">> {steps} steps")

        elif choice == '4':
            axis = read_axis()
            if axis is None:
                continue
            sent, future = ctrl.measure_current_position(axis)
            if not sent:
                print(">> FAILED to send MA")
                continue
            print("Measuring... (do not unplug)")
            try:
                value = future.result(timeout=config.MEASURE_TIMEOUT_MS / 1000.0 + 5.0)
            except FutureTimeoutError:
                value = None
            print(">> FAILED" if value is None else f">> Position: {value}/1000 of travel")

        elif choice == '5':
            axis = read_axis()
            if axis is not None:
                print(">> OK" if ctrl.zero_position(axis) else ">> FAILED")

        elif choice == '6':
            axis = read_axis()
            if axis is not None:
                print(">> OK" if ctrl.stop_motion(axis) else ">> FAILED")

        elif choice == '7':
            code = ctrl.get_error_of_previous_command()
            print(">> FAILED" if code is None else f">> {ctrl.get_error_text(code)}")

        elif choice == '8':
            channel = read_int("Channel (0-4): ")
            if channel is not None:
                print(">> OK" if ctrl.change_channel(channel) else ">> FAILED")

        elif choice == '9':
            ms = read_int("Command term (ms): ")
            if ms is not None and ms >= 0:
                ctrl.set_command_term(ms)
                print(">> OK")

        elif choice == 'r':
            print(">> OK" if ctrl.set_to_remote_mode() else ">> FAILED")

        else:
            print("Unknown command")

if __name__ == "__main__":
    main()
