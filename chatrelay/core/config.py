# chatrelay/core/config.py
import os
from typing import List, Literal
from dotenv import load_dotenv

class Settings:
    """
    Setup environment variables.
        - PUB_SUB_SERVICE the backplane to use: "local", "redis" or "google_pub_sub"
        - PROJECT_ID / TOPIC_ID / SUBSCRIPTION_ID for Google Pub/Sub; every relay
          instance needs its own SUBSCRIPTION_ID on the shared topic
        - OUTBOUND_QUEUE_SIZE max payloads buffered per connection before dropping
        - RELAY_URL default websocket URL used by the client
        - LOG_LEVEL root log level for the relay and the client
    """

    # Load environment variables from the .env file
    load_dotenv()

    PUB_SUB_SERVICE: Literal["local", "redis", "google_pub_sub"] = os.getenv("PUB_SUB_SERVICE", "local")

    REDIS_HOST: str = os.getenv("REDIS_HOST", "localhost")
    REDIS_PORT: int = int(os.getenv("REDIS_PORT", "6379"))
    REDIS_ACCESS_KEY: str = os.getenv("REDIS_ACCESS_KEY", "")
    REDIS_SSL: bool = os.getenv("REDIS_SSL", "true").lower() == "true"

    PROJECT_ID = os.getenv("PROJECT_ID", "")
    TOPIC_ID = os.getenv("TOPIC_ID", "")
    SUBSCRIPTION_ID = os.getenv("SUBSCRIPTION_ID", "")

    OUTBOUND_QUEUE_SIZE: int = int(os.getenv("OUTBOUND_QUEUE_SIZE", "256"))
    CORS_ORIGINS: List[str] = [o.strip() for o in os.getenv("CORS_ORIGINS", "*").split(",") if o.strip()]

    RELAY_URL: str = os.getenv("RELAY_URL", "ws://localhost:8000/ws")

    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")

settings = Settings()
