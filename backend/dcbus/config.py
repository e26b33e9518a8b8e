import os

from dotenv import load_dotenv

load_dotenv()  # Load .env before reading any settings

BACKEND_DIR = os.path.dirname(os.path.dirname(__file__))

# Route definition files (one JSON file per route/time period)
ROUTES_DIR = os.getenv("ROUTES_DIR", os.path.join(BACKEND_DIR, "data", "routes"))

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

# Stop search
SEARCH_RADIUS_KM = float(os.getenv("SEARCH_RADIUS_KM", "0.5"))
EXPANDED_SEARCH_RADIUS_KM = float(os.getenv("EXPANDED_SEARCH_RADIUS_KM", "2"))
MAX_ROUTE_RESULTS = int(os.getenv("MAX_ROUTE_RESULTS", "3"))

# Travel time estimates
AVG_BUS_SPEED_KMH = float(os.getenv("AVG_BUS_SPEED_KMH", "20"))
WALKING_SPEED_KMH = float(os.getenv("WALKING_SPEED_KMH", "5"))
TRANSFER_WAIT_TIME_MIN = int(os.getenv("TRANSFER_WAIT_TIME_MIN", "5"))

# Walking transfers between nearby stops; 0 disables them
WALKING_TRANSFER_KM = float(os.getenv("WALKING_TRANSFER_KM", "0"))
WALKING_PENALTY_FACTOR = 2.0

# Intermediate stops auto-complete when the rider is this close (100 m)
MILESTONE_PROXIMITY_KM = float(os.getenv("MILESTONE_PROXIMITY_KM", "0.1"))

CORS_ORIGINS = [
    origin.strip()
    for origin in os.getenv("CORS_ORIGINS", "http://localhost:3000,http://127.0.0.1:3000").split(",")
    if origin.strip()
]
