"""
huelink - locate Hue bridges on the LAN and pair with them
"""

__version__ = "0.1.0"
