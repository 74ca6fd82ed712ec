"""
billing_config -- YAML configuration for the billing core.

Responsibility:
    Reads YAML documents and turns their sections into the typed
    configuration dataclasses owned by the modules (currently
    ``TaxConfig``).  Services never read files or environment variables;
    callers load a configuration here and inject it.

Architecture position:
    Configuration sits above ``billing_modules``: it imports the modules'
    config dataclasses, and nothing in the kernel, engines or modules
    imports from this package.
"""

from billing_config.loader import (
    DEFAULT_CONFIG_PATH,
    LoadedTaxConfig,
    compute_checksum,
    load_tax_config,
    load_yaml_file,
)

__all__ = [
    "DEFAULT_CONFIG_PATH",
    "LoadedTaxConfig",
    "compute_checksum",
    "load_tax_config",
    "load_yaml_file",
]
