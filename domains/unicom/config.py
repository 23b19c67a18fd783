"""China Unicom domain configuration."""

import os

# Slash command group name
COMMAND_NAME = "unicom"

# China Unicom mobile endpoints
QUERY_URL = os.environ.get(
    "UNICOM_QUERY_URL",
    "https://m.client.10010.com/servicequerybusiness/operationservice/queryOcsPackageFlowLeftContentRevisedInJune"
)
ONLINE_URL = os.environ.get(
    "UNICOM_ONLINE_URL",
    "https://m.client.10010.com/mobileService/onLine.htm"
)
REQUEST_TIMEOUT = 30
CLIENT_VERSION = "android@11.0702"

# Vendor response codes
SUCCESS_CODE = "0000"
ONLINE_SUCCESS_CODE = "0"
AUTH_EXPIRED_CODE = "999998"

# Megabytes per gigabyte, the API reports flow in MB
MB_PER_GB = 1024

# Config defaults and limits
MIN_INTERVAL = 60
DEFAULT_INTERVAL = 60
MIN_TIMEOUT = 60
# Upper bound for interval and timeout (ten years)
MAX_SECONDS = 10 * 365 * 24 * 3600
DEFAULT_TIMEOUT = 1800
DEFAULT_FREE_THRESHOLD = None
DEFAULT_NONFREE_THRESHOLD = 0.05

# Task loop
MAX_RETRIES = 3

# Interactive flows wait this long for each reply
REPLY_TIMEOUT = 30
OPTION_ATTEMPTS = 3

# Words that clear an optional config field
NONE_WORDS = {"none", "null", "no", "n"}
