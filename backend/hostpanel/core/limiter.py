from slowapi import Limiter
from slowapi.util import get_remote_address

# Shared limiter; create_app switches it off when RATE_LIMIT_ENABLED=false
limiter = Limiter(key_func=get_remote_address)
