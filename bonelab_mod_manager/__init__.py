"""Keep a BONELAB mod folder in sync with mod.io subscriptions."""

__version__ = "0.2.0"
