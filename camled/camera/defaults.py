"""
Shared default values for the camera subsystem.

Keep this module dependency-free; the simulated camera child process
imports it.
"""

DEFAULT_CAPTURE_TOOLS = (
    "rpicam-vid",
    "libcamera-vid",
    "raspivid",
    "rpicam-jpeg",
    "libcamera-jpeg",
)
DEFAULT_CAPTURE_RESOLUTION = (800, 600)
DEFAULT_CAPTURE_FPS = 15
DEFAULT_JPEG_QUALITY = 85

DEFAULT_MAX_FRAME_BYTES = 8 * 1024 * 1024
DEFAULT_READ_CHUNK_BYTES = 64 * 1024
DEFAULT_FRESHNESS_WINDOW_S = 2.0

DEFAULT_STOP_TIMEOUT_S = 1.0
DEFAULT_STREAM_OPEN_TIMEOUT_S = 5.0
DEFAULT_STILL_TIMEOUT_S = 5.0
DEFAULT_ATTEMPT_DELAY_S = 0.1
DEFAULT_ERROR_DELAY_S = 1.0
DEFAULT_FAILURE_THRESHOLD = 3
DEFAULT_COOLDOWN_S = 10.0

DEFAULT_MONITOR_INTERVAL_S = 2.0
DEFAULT_MONITOR_DEBOUNCE = 2
DEFAULT_ENUMERATE_TIMEOUT_S = 3.0

DEFAULT_LED_PIN = 17
DEFAULT_GPIO_CHIP = 0

WORK_DIR_NAME = "camled"
PIPE_NAME = "camled_stream.mjpeg"
SCRIPT_NAME = "camled_capture.sh"
STILL_NAME = "camled_still.jpg"
