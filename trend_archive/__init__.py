from .config import Config, get_config
from .archive import TrendingArchive
from .aggregation import AggregationEngine
from .errors import ErrorKind, FetchError, ParseError, PersistError, ScrapeError
from .kv_store import KeyValueStore, MemoryKeyValueStore, SqlKeyValueStore
from .pipeline import ScrapePipeline
from .retry import RetryController
from .views import TrendingViews
from .models import ParsedRecord, TrendingRepo, SearchResult, ScrapeResult, RetryAwareScrapeResult

__all__ = [
    'Config', 'get_config',
    'TrendingArchive',
    'AggregationEngine',
    'ErrorKind', 'FetchError', 'ParseError', 'PersistError', 'ScrapeError',
    'KeyValueStore', 'MemoryKeyValueStore', 'SqlKeyValueStore',
    'ScrapePipeline',
    'RetryController',
    'TrendingViews',
    'ParsedRecord', 'TrendingRepo', 'SearchResult', 'ScrapeResult', 'RetryAwareScrapeResult'
]
