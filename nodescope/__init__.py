"""Linux host metrics from procfs and sysfs, rendered in the Prometheus text format."""

__version__ = "0.1.0"