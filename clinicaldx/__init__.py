"""
Package initializer for clinicaldx.
"""

__version__ = "1.0.0"

# Version metadata included in report and JSON output
ENGINE_VERSION = __version__
RULE_SCHEMA_VERSION = "v1"

__all__ = ["__version__", "ENGINE_VERSION", "RULE_SCHEMA_VERSION"]
