import os
import sys
from typing import Optional

# no stackrecon imports here, this module runs before stackrecon.config is loaded

PROFILE_ENV_VAR = "SR_CONFIG_PROFILE"


def set_and_remove_profile_from_sys_argv() -> None:
    """
    Exposes the profile selected on the command line as ``SR_CONFIG_PROFILE``, so that ``stackrecon.config``
    loads the profile's environment file when it is imported. ``--profile`` is removed from ``sys.argv``.
    """
    profile, sys.argv = extract_profile(sys.argv)
    if profile:
        os.environ[PROFILE_ENV_VAR] = profile.strip()


def extract_profile(args: list[str]) -> tuple[Optional[str], list[str]]:
    """
    Finds the profile in the given command line arguments.

    ``--profile <name>`` and ``--profile=<name>`` may be given several times (the last one wins) and are removed
    from the returned arguments. Without ``--profile``, the first ``-p <name>`` or ``-p=<name>`` is used. ``-p``
    is kept in the arguments since it is also an option of the ``stackrecon`` command group.

    :param args: the command line arguments
    :returns: a tuple of the profile (or None) and the remaining arguments
    """
    profile = None
    short_profile = None
    remaining = []

    arguments = iter(args)
    for arg in arguments:
        if arg == "--profile":
            profile = next(arguments, None)
            continue
        if arg.startswith("--profile="):
            profile = arg[len("--profile=") :]
            continue

        remaining.append(arg)
        if short_profile is not None:
            continue
        if arg.startswith("-p="):
            short_profile = arg[len("-p=") :]
        elif arg == "-p":
            short_profile = next(arguments, None)
            if short_profile is not None:
                remaining.append(short_profile)

    return profile or short_profile, remaining
