from slowapi import Limiter
from slowapi.util import get_remote_address

# Initialize Limiter - key_func identifies the client (e.g., by IP)
limiter = Limiter(key_func=get_remote_address)

# Link endpoints hit third-party APIs on every call
LINK_RATE_LIMIT = "20/minute"
SYNC_RATE_LIMIT = "30/minute"
