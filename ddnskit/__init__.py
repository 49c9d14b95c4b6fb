"""Building blocks for a dynamic DNS updater: IP detection, record and WAF list setting, monitors and notifier interfaces."""

__version__ = "0.1.0"