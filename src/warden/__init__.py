"""
panel-warden: access control for a game-server administration panel.
"""

__version__ = "1.0.0"
