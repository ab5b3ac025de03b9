# chatwal_client/__init__.py
from .config import ClientConfig
from .client import ChatWalClient
from .temporal import TemporalClient
from . import models
from . import exceptions

__all__ = ["ClientConfig", "ChatWalClient", "TemporalClient", "models", "exceptions"]
