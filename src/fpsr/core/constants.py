"""Project-wide constants for FPS-R."""

# Portable hash: frac(sin(seed * HASH_MULTIPLIER) * HASH_SCALE)
HASH_MULTIPLIER = 12.9898
HASH_SCALE = 43758.5453

PRECISION_DOUBLE = "double"
PRECISION_SINGLE = "single"  # float32 storage, as in the portable C reference
PRECISIONS = (PRECISION_DOUBLE, PRECISION_SINGLE)
DEFAULT_PRECISION = PRECISION_DOUBLE

# Stacked Modulo defaults (reference usage sample)
DEFAULT_MIN_HOLD = 16
DEFAULT_MAX_HOLD = 24
DEFAULT_RESEED_INTERVAL = 9

# Quantised Switching
DEFAULT_STREAM2_FREQ_MULT = 3.7
SWITCH_DUR_FACTOR = 0.76
STREAM1_QUANT_DUR_FACTOR = 1.2
STREAM2_QUANT_DUR_FACTOR = 0.9
STREAM2_QUANT_RATIO_MIN = 1.24
STREAM2_QUANT_RATIO_MAX = 0.66
QS_HASH_SCALE = 100000.0

DEFAULT_BASE_WAVE_FREQ = 0.012
DEFAULT_QUANT_LEVELS = (12, 22)
DEFAULT_STREAM2_OFFSET = 76

# Capsule type codes
SM_TYPE_CODE = 0
QS_TYPE_CODE = 1

TRACE_TOLERANCE = 1e-6
CAPSULE_SUFFIX = ".cap.json"
ENCODING = "utf-8"
