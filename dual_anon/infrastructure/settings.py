"""Application Settings.

Application-wide defaults (logging, output locations, worker count) read from
the environment. Per-run pipeline values live in ConfigManager.

Security Impact:
    - No secrets are held here; the identity salt is loaded by ConfigManager
"""

import os

from dual_anon import __version__

APP_NAME = "Dual-Anon"
APP_VERSION = __version__

DEFAULT_OUTPUT_DIR = "output"
DEFAULT_LEDGER_FILE = "ledger/provenance.jsonl"
DEFAULT_REPORT_DIR = "reports"
DEFAULT_MAX_WORKERS = 4


class Settings:
    """Application settings loaded from environment variables with defaults."""

    def __init__(self):
        self.app_name = os.getenv("DA_APP_NAME", APP_NAME)
        self.log_level = os.getenv("DA_LOG_LEVEL", "INFO")
        self.output_dir = os.getenv("DA_OUTPUT_DIR", DEFAULT_OUTPUT_DIR)
        self.ledger_file = os.getenv("DA_LEDGER_FILE", DEFAULT_LEDGER_FILE)
        self.max_workers = int(os.getenv("DA_MAX_WORKERS", str(DEFAULT_MAX_WORKERS)))

        # Privacy report settings
        self.save_privacy_report = os.getenv("DA_SAVE_PRIVACY_REPORT", "true").lower() == "true"
        self.report_dir = os.getenv("DA_REPORT_DIR", DEFAULT_REPORT_DIR)


# Global settings instance
settings = Settings()
