# Market-data clients
from stratscan.data.lighter_client import LighterClient

__all__ = ["LighterClient"]
