"""THW-SwitchKit - validator identity switching and auto-failover."""

__version__ = "0.1.0"
