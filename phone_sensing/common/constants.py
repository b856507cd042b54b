"""Application constants."""

USER_AGENT = "phone-sensing/1.0 (+passive mobile sensing)"

TOPIC_RELATIVE_LOCATION = "android_phone_relative_location"
TOPIC_CALL = "android_phone_call"
TOPIC_SMS = "android_phone_sms"
TOPIC_SMS_UNREAD = "android_phone_sms_unread"

PROVIDER_GPS = "gps"
PROVIDER_NETWORK = "network"
SUPPORTED_PROVIDERS = (PROVIDER_GPS, PROVIDER_NETWORK)

STREAM_CALLS = "calls"
STREAM_SMS = "sms"

# store keys
LATITUDE_REFERENCE_KEY = "latitude.reference"
LONGITUDE_REFERENCE_KEY = "longitude.reference"
ALTITUDE_REFERENCE_KEY = "altitude.reference"
LAST_CALL_KEY = "last.call.time"
LAST_SMS_KEY = "last.sms.time"
WATERMARK_KEY_BY_STREAM = {
    STREAM_CALLS: LAST_CALL_KEY,
    STREAM_SMS: LAST_SMS_KEY,
}
HASH_KEY = "hash.key"

LOCATION_GPS_INTERVAL_DEFAULT = 60 * 60  # seconds
LOCATION_NETWORK_INTERVAL_DEFAULT = 10 * 60  # seconds
REDUCED_INTERVAL_FACTOR = 5
MINIMUM_BATTERY_LEVEL = 0.15
REDUCED_BATTERY_LEVEL = 0.30

CALL_SMS_LOG_INTERVAL_DEFAULT = 24 * 60 * 60  # seconds
CALL_SMS_LOG_HISTORY_DEFAULT = 24 * 60 * 60  # seconds
QUERY_PAGE_SIZE_DEFAULT = 1000

# keeps the last nine digits, dropping country and area prefixes
PHONE_NUMBER_SUFFIX_MODULUS = 1_000_000_000
HASH_SALT_BYTES = 16

COMMANDS = ("extract-logs", "replay-locations")
EXIT_SUCCESS = 0
EXIT_PARTIAL = 10
EXIT_HARD_FAIL = 20
JSON_LOG_FIELDS = (
    "timestamp",
    "run_id",
    "subsystem",
    "stream",
    "provider",
    "event",
    "status",
    "rows_out",
    "error_code",
    "message",
)
