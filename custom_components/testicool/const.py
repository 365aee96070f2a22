# custom_components/testicool/const.py
"""Constants shared by the Testicool pump control package."""

from __future__ import annotations

# ────────────────────────────────────────────────────────────────
# BLE: HM-10 style modules expose one characteristic for RX and TX.
# Nordic UART is accepted as an alternative (write to RX, notify on TX).
# ────────────────────────────────────────────────────────────────
HM10_SERVICE_UUID = "0000ffe0-0000-1000-8000-00805f9b34fb"
HM10_CHAR_UUID = "0000ffe1-0000-1000-8000-00805f9b34fb"

UART_SERVICE_UUID = "6E400001-B5A3-F393-E0A9-E50E24DCCA9E"
UART_RX_CHAR_UUID = "6E400002-B5A3-F393-E0A9-E50E24DCCA9E"  # write
UART_TX_CHAR_UUID = "6E400003-B5A3-F393-E0A9-E50E24DCCA9E"  # notify

BLE_WRITE_CHUNK = 20  # default ATT payload on HM-10 modules
CONNECT_ATTEMPTS = 3

# Name fragments of the SPP/BLE modules shipped in the pump lid
DEVICE_NAME_PATTERNS = ["Testicool", "KS03", "JDY", "DSD TECH", "HMSoft"]
SCAN_TIMEOUT = 10.0

# ────────────────────────────────────────────────────────────────
# SPP (serial port profile)
# ────────────────────────────────────────────────────────────────
SPP_BAUD_RATE = 9600
SPP_READ_SIZE = 1024

# ────────────────────────────────────────────────────────────────
# Protocol / framing
# ────────────────────────────────────────────────────────────────
LINE_DELIMITER = b"\n"
MAX_LINE_LENGTH = 512

SPEED_MIN = 0
SPEED_MAX = 255

# ────────────────────────────────────────────────────────────────
# Polling (seconds)
# ────────────────────────────────────────────────────────────────
STATUS_POLL_INTERVAL = 5.0
TEMPERATURE_POLL_INTERVAL = 1.0

# ────────────────────────────────────────────────────────────────
# Device defaults / safety (mirror firmware config.h)
# ────────────────────────────────────────────────────────────────
DEFAULT_SPEED = 180
MAX_RUNTIME_SECONDS = 1800
OVERHEAT_TEMP_C = 40.0

# ────────────────────────────────────────────────────────────────
# Sessions
# ────────────────────────────────────────────────────────────────
SESSION_DURATION = 1800
SESSION_TICK_INTERVAL = 1.0
SESSION_MAX_SAMPLES = 1000
EXPORT_MATCH_TOLERANCE = 1.0
EXPORT_TIMESTAMP_FORMAT = "%Y-%m-%d %H:%M:%S"
EXPORT_HEADER = ["Timestamp", "Elapsed (s)", "Temperature (°C)", "Pump Speed"]

# ────────────────────────────────────────────────────────────────
# Local storage
# ────────────────────────────────────────────────────────────────
STORE_DIR_ENV = "TESTICOOL_HOME"
STORE_DIR_NAME = ".testicool"
KNOWN_DEVICES_FILE = "known_devices.json"

SIM_SCHEME = "sim://"
