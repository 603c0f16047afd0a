"""chatgate - admission, access and rate governance for conversational bots."""

__version__ = "0.1.0"
