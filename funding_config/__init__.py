"""
funding_config -- runtime settings for the funding ledger.

``load_settings()`` is the single entrypoint: no other component reads
environment variables or settings files.  The kernel never imports this
package; funding_services.runtime translates settings into kernel objects.
"""

from funding_config.settings import (
    CONFIG_FILE_ENV,
    DatabaseSettings,
    LedgerSettings,
    load_settings,
    load_yaml_file,
    parse_settings,
)

__all__ = [
    "CONFIG_FILE_ENV",
    "DatabaseSettings",
    "LedgerSettings",
    "load_settings",
    "load_yaml_file",
    "parse_settings",
]
