"""apy_deploy package root.

Deployment and operations tooling for APY.Finance contracts:
deployed-address bookkeeping, address registry lookups,
proxy deployment sequencing and Safe multisig proposals.
"""

import sys


#: Minimum required Python version to run this package
MIN_PYTHON_VERSION = (3, 10)


def _check_python_version():
    """Try early abort if the Python version is too old."""
    if sys.version_info < MIN_PYTHON_VERSION:
        raise RuntimeError(f"apy-deploy needs Python {MIN_PYTHON_VERSION[0]}.{MIN_PYTHON_VERSION[1]} or later")


_check_python_version()
