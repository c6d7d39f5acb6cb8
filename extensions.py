"""
Shared Flask extension instances, created unbound and attached in create_app().
"""

from __future__ import annotations

from flask_compress import Compress
from flask_limiter import Limiter
from flask_limiter.util import get_remote_address
from flask_wtf.csrf import CSRFProtect

limiter = Limiter(key_func=get_remote_address, default_limits=["600 per hour"])
csrf = CSRFProtect()
compress = Compress()
