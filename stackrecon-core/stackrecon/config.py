import logging
import os
from typing import List, Optional, Union

from stackrecon import constants
from stackrecon.constants import (
    DEFAULT_ACCOUNT_ID,
    DEFAULT_CONFIG_DIR,
    DEFAULT_REGION,
    FALSE_STRINGS,
    LOG_LEVELS,
    TRACE_LOG_LEVELS,
    TRUE_STRINGS,
)

LOG = logging.getLogger(__name__)


def eval_log_type(env_var_name: str) -> Union[str, bool]:
    """Get the log type from environment variable"""
    sr_log = os.environ.get(env_var_name, "").lower().strip()
    return sr_log if sr_log in LOG_LEVELS else False


def parse_boolean_env(env_var_name: str) -> Optional[bool]:
    """Parse the value of the given env variable and return True/False, or None if it is not a boolean value."""
    value = os.environ.get(env_var_name, "").lower().strip()
    if value in TRUE_STRINGS:
        return True
    if value in FALSE_STRINGS:
        return False
    return None


def is_env_true(env_var_name: str) -> bool:
    """Whether the given environment variable has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() in TRUE_STRINGS


def is_env_not_false(env_var_name: str) -> bool:
    """Whether the given environment variable is empty or has a truthy value."""
    return os.environ.get(env_var_name, "").lower().strip() not in FALSE_STRINGS


def parse_number_env(env_var_name: str, default: float, cast=float) -> float:
    """Parse a numeric environment variable, falling back to ``default`` if it is unset or malformed."""
    value = os.environ.get(env_var_name, "").strip()
    if not value:
        return default
    try:
        return cast(value)
    except ValueError:
        LOG.warning("Ignoring invalid value %r for %s, using %s", value, env_var_name, default)
        return default


def load_environment(profiles: str = None, env=os.environ) -> List[str]:
    """Loads the environment variables from ~/.stackrecon/{profile}.env, for each profile listed in the profiles.
    :param env: environment to load profile to. Defaults to `os.environ`
    :param profiles: a comma separated list of profiles to load (defaults to "default")
    :returns str: the list of the actually loaded profiles (might be the fallback)
    """
    if not profiles:
        profiles = "default"

    profiles = [profile.strip() for profile in profiles.split(",")]
    environment = {}
    import dotenv

    for profile in profiles:
        path = os.path.join(CONFIG_DIR, f"{profile}.env")
        if not os.path.exists(path):
            continue
        environment.update(dotenv.dotenv_values(path))

    for k, v in environment.items():
        # we do not want to override the environment
        if k not in env and v is not None:
            env[k] = v

    return profiles


def is_trace_logging_enabled():
    if SR_LOG:
        return SR_LOG.lower() in TRACE_LOG_LEVELS
    return False


# folder holding profiles (*.env files)
CONFIG_DIR = os.environ.get(f"{constants.ENV_PREFIX}CONFIG_DIR", "").strip() or DEFAULT_CONFIG_DIR

# profile(s) to load from the config dir, set by the CLI through --profile
CONFIG_PROFILE = os.environ.get(f"{constants.ENV_PREFIX}CONFIG_PROFILE", "").strip()
load_environment(CONFIG_PROFILE)

# log level, e.g., SR_LOG=debug
SR_LOG = eval_log_type(f"{constants.ENV_PREFIX}LOG")
DEBUG = is_env_true("DEBUG") or SR_LOG in TRACE_LOG_LEVELS

# folder where stack documents and the local control plane are persisted
STATE_DIR = os.environ.get(f"{constants.ENV_PREFIX}STATE_DIR", "").strip() or os.path.join(
    CONFIG_DIR, "state"
)

# persist the control plane of the built-in providers under STATE_DIR, SR_PERSIST_CONTROL_PLANE=0 keeps it in memory
PERSIST_CONTROL_PLANE = is_env_not_false(f"{constants.ENV_PREFIX}PERSIST_CONTROL_PLANE")

# leave failed deployments as they are instead of rolling them back, unless overridden per deployment
DISABLE_ROLLBACK = parse_boolean_env(f"{constants.ENV_PREFIX}DISABLE_ROLLBACK") or False

# max number of resources that are processed concurrently
MAX_WORKERS = int(parse_number_env(f"{constants.ENV_PREFIX}MAX_WORKERS", 8, cast=int))

# timeout (in seconds) for a single provider operation, including polling of in-progress operations
PER_RESOURCE_TIMEOUT = parse_number_env(f"{constants.ENV_PREFIX}PER_RESOURCE_TIMEOUT", 300.0)

# number of retries of transient provider errors, and the initial interval of the exponential backoff
PROVIDER_MAX_RETRIES = int(parse_number_env(f"{constants.ENV_PREFIX}PROVIDER_MAX_RETRIES", 5, cast=int))
PROVIDER_RETRY_INITIAL_INTERVAL = parse_number_env(
    f"{constants.ENV_PREFIX}PROVIDER_RETRY_INITIAL_INTERVAL", 0.5
)

# interval (in seconds) between two polls of a provider operation that reported IN_PROGRESS
PROVIDER_POLL_INTERVAL = parse_number_env(f"{constants.ENV_PREFIX}PROVIDER_POLL_INTERVAL", 2.0)

# values of the AWS::Region and AWS::AccountId pseudo parameters
DEFAULT_REGION = (
    os.environ.get(f"{constants.ENV_PREFIX}DEFAULT_REGION", "").strip()
    or os.environ.get("AWS_DEFAULT_REGION", "").strip()
    or DEFAULT_REGION
)
ACCOUNT_ID = os.environ.get(f"{constants.ENV_PREFIX}ACCOUNT_ID", "").strip() or DEFAULT_ACCOUNT_ID

# log full stack traces of failed provider operations
VERBOSE_ERRORS = is_env_true(f"{constants.ENV_PREFIX}VERBOSE_ERRORS")

# skip resources without a resource provider instead of rejecting the template
IGNORE_UNSUPPORTED_RESOURCE_TYPES = is_env_true(
    f"{constants.ENV_PREFIX}IGNORE_UNSUPPORTED_RESOURCE_TYPES"
)
