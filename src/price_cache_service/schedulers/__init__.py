from .price_refresh_scheduler import PriceRefreshScheduler, PriceRefreshSchedulerStatus

__all__ = ["PriceRefreshScheduler", "PriceRefreshSchedulerStatus"]
