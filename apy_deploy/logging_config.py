"""Console logging set up for deployment scripts.

Scripts do not toggle a process-wide debug flag. Instead a :py:class:`LogConfig`
is created once at the entry point and the resulting logger is handed
to the components that want to report progress, e.g.
:py:class:`apy_deploy.address_store.DeployedAddressStore` or
:py:class:`apy_deploy.orchestration.DeploymentOrchestrator`.

Example:

.. code-block:: python

    log_config = LogConfig(level=LogLevel.debug)
    logger = log_config.setup()
    store = DeployedAddressStore(Path("deployed_addresses"), logger=logger)
"""

import enum
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

import coloredlogs


class LogLevel(enum.Enum):
    """Supported verbosity levels for script output."""

    debug = logging.DEBUG
    info = logging.INFO
    warning = logging.WARNING
    error = logging.ERROR

    @classmethod
    def parse(cls, name: str) -> "LogLevel":
        """Parse a level name like ``info`` or ``DEBUG``.

        :raise ValueError:
            Unknown level name
        """
        try:
            return cls[name.strip().lower()]
        except KeyError as e:
            raise ValueError(f"Unknown log level: {name}, expected one of {[l.name for l in cls]}") from e


@dataclass(slots=True)
class LogConfig:
    """Explicit logging configuration passed from the script entry point."""

    #: Console verbosity
    level: LogLevel = LogLevel.info

    #: Logger name handed out to components
    name: str = "apy_deploy"

    #: Drop timestamps and logger names from the output
    simplified: bool = False

    #: Also write everything at INFO or above to this file
    log_file: Optional[Path] = None

    @classmethod
    def from_environment(cls, default_level: LogLevel = LogLevel.info, **kwargs) -> "LogConfig":
        """Read ``LOG_LEVEL`` environment variable override."""
        env_level = os.environ.get("LOG_LEVEL")
        level = LogLevel.parse(env_level) if env_level else default_level
        return cls(level=level, **kwargs)

    def get_format(self) -> tuple[str, str]:
        if self.simplified:
            return "%(message)s", "%H:%M:%S"
        return "%(asctime)s %(name)-36s %(levelname)-8s %(message)s", "%H:%M:%S"

    def setup(self) -> logging.Logger:
        """Install coloured console output and return the component logger."""
        fmt, date_fmt = self.get_format()

        coloredlogs.install(level=self.level.value, fmt=fmt, datefmt=date_fmt)

        if self.log_file:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(self.log_file, mode="a", encoding="utf-8")
            file_handler.setLevel(min(logging.INFO, self.level.value))
            file_handler.setFormatter(logging.Formatter(fmt, date_fmt))
            logging.getLogger().addHandler(file_handler)

        # Mute noise
        logging.getLogger("web3.providers.HTTPProvider").setLevel(logging.WARNING)
        logging.getLogger("web3.RequestManager").setLevel(logging.WARNING)
        logging.getLogger("urllib3.connectionpool").setLevel(logging.WARNING)

        logger = logging.getLogger(self.name)
        logger.setLevel(self.level.value)
        return logger
