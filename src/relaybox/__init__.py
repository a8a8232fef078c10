"""relaybox: a local control plane for a sing-box proxy engine."""

__version__ = "0.1.0"
