"""fintra_ingest.core — Foundation types, config, and exceptions."""

from fintra_ingest.core.config import (
    APIConfig,
    CronConfig,
    FintraConfig,
    FmpConfig,
    StorageConfig,
    load_config,
)
from fintra_ingest.core.exceptions import (
    AuthorizationError,
    ConfigError,
    DataError,
    FintraError,
    ProviderError,
    StorageError,
)
from fintra_ingest.core.models import (
    AggregationRunResult,
    DatasetKind,
    DividendYearRow,
    FinancialPeriodRow,
    GrowthRow,
    IndustryPerformanceRow,
    MetricsRecord,
    NormalizedFinancialRecord,
    PeriodType,
    PriceBar,
    ProfileRecord,
    QuoteRecord,
    RatiosRecord,
    RawProviderRecord,
    SectorGrowthRow,
    SectorPerformanceRow,
    SectorPeRow,
    Ticker,
    TickerError,
    UniverseEntry,
    ValuationRow,
    WindowCode,
)

__all__ = [
    # Type aliases
    "Ticker",
    "RawProviderRecord",
    # Enums
    "DatasetKind",
    "PeriodType",
    "WindowCode",
    # Provider records
    "ProfileRecord",
    "RatiosRecord",
    "MetricsRecord",
    "QuoteRecord",
    # Normalized rows
    "NormalizedFinancialRecord",
    "FinancialPeriodRow",
    "ValuationRow",
    "GrowthRow",
    "SectorPerformanceRow",
    "SectorPeRow",
    "SectorGrowthRow",
    "IndustryPerformanceRow",
    "UniverseEntry",
    "PriceBar",
    "DividendYearRow",
    # Run results
    "TickerError",
    "AggregationRunResult",
    # Config
    "FintraConfig",
    "FmpConfig",
    "StorageConfig",
    "CronConfig",
    "APIConfig",
    "load_config",
    # Exceptions
    "FintraError",
    "ConfigError",
    "ProviderError",
    "DataError",
    "StorageError",
    "AuthorizationError",
]
