import os

from stackrecon.version import __version__

VERSION = __version__

# default values for the pseudo parameters of a stack
DEFAULT_REGION = "us-east-1"
DEFAULT_ACCOUNT_ID = "000000000000"
DEFAULT_PARTITION = "aws"
DEFAULT_URL_SUFFIX = "amazonaws.com"

# environment variable name prefix for stackrecon specific settings
ENV_PREFIX = "SR_"

# root folder for configuration and profiles
DEFAULT_CONFIG_DIR = os.path.join(os.path.expanduser("~"), ".stackrecon")

# truthy/falsy values for environment variables
TRUE_STRINGS = ("1", "true", "True")
FALSE_STRINGS = ("0", "false", "False")

# log levels accepted by the SR_LOG environment variable
LOG_LEVELS = ("trace", "debug", "info", "warn", "error", "warning")
TRACE_LOG_LEVELS = ["trace"]

# namespace of the plux plugins providing resource providers
RESOURCE_PROVIDER_PLUGIN_NAMESPACE = "stackrecon.resource_providers"

# file name suffix of persisted stack documents
STACK_STATE_FILE_SUFFIX = ".stack.json"

# file name of the persisted local control plane
CONTROL_PLANE_STATE_FILE = "control-plane.json"
