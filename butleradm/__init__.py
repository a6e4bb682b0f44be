"""butleradm - bootstrap Butler management clusters."""

__version__ = "0.1.0"
