"""Constants used throughout the flipperfan project."""

# Serial link
DEFAULT_BAUDRATE = 230400
RECONNECT_INTERVAL = 5.0
READ_CHUNK_SIZE = 1024

# IR transmission
# The Flipper CLI accepts up to 512 raw samples per call, but larger commands
# get mangled on the serial line, so 64 is used.
IR_CHUNK_SIZE = 512 // 8
IR_CHUNK_DELAY = 0.1
IR_SIGNAL_SEND_TRIES = 3

# State reconciliation
DEBOUNCE_TIME = 0.3
MEDIUM_THRESHOLD = 33
HIGH_THRESHOLD = 66
MAX_SPEED = 100

# Signal names expected in the IR file
SIGNAL_POWER_OFF = "Fan_off"
SIGNAL_LOW = "Fan_low"
SIGNAL_MEDIUM = "Fan_med"
SIGNAL_HIGH = "Fan_high"

# MQTT
DEFAULT_MQTT_TOPIC = "flipperfan"
DEFAULT_MQTT_PORT = 1883
