from event_ingest.configs.config import Config, load_sources
from event_ingest.configs.settings import Settings, get_settings

__all__ = ["Config", "Settings", "get_settings", "load_sources"]
