import os

JWT_SECRET = os.getenv("JWT_SECRET", None)
JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")

FRONTEND_URL = os.getenv("FRONTEND_URL", "http://localhost:5173")

# Optional JSON file overriding the built-in room registry
ROOMS_CONFIG = os.getenv("ROOMS_CONFIG", None)

WELCOME_MESSAGE = os.getenv("WELCOME_MESSAGE", "Connected to PAMBAZO real-time system")

VALID_ROLES = ("owner", "admin", "waiter", "kitchen", "customer")
STAFF_ROLES = ("owner", "admin", "waiter", "kitchen")
MANAGER_ROLES = ("owner", "admin")

DEFAULT_PRESENCE_STATUS = "online"

HOST = os.getenv("HOST", "0.0.0.0")
PORT = int(os.getenv("PORT", 8000))
