"""Configuration settings and constants for dgruft.

Everything lives in `config.settings`; this package re-exports it so both
`from config import KEY_LENGTH` and `from config.settings import KEY_LENGTH`
work. Add new constants to settings.py only.
"""

from .settings import *  # noqa: F401,F403
from .settings import __all__  # noqa: F401
