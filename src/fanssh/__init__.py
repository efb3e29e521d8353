"""fanssh — run one command on many hosts over SSH."""

__version__ = "0.8.1"
