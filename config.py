import os
from dotenv import load_dotenv

# Load environment variables (.env next to the app, if present)
load_dotenv()


class Settings:
    """
    Runtime configuration read from the environment.
    Every value has a development default so the app boots without a .env file.
    """

    def __init__(self):
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./quests.db")
        self.NEARBY_PAGE_SIZE = int(os.getenv("NEARBY_PAGE_SIZE", "4"))
        self.NEARBY_RADIUS_KM = float(os.getenv("NEARBY_RADIUS_KM", "50"))
        self.GEOHASH_PRECISION = int(os.getenv("GEOHASH_PRECISION", "10"))
        self.MAX_OBJECTIVES = int(os.getenv("MAX_OBJECTIVES", "20"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()


settings = Settings()
