from webimg.core.config import get_config
from webimg.core.logging import setup_logging
from webimg.core.maintenance import DerivedTreeCollector

__all__ = ["DerivedTreeCollector", "get_config", "setup_logging"]
