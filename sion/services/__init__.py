from .market_feed import MarketUpdateHub, PriceFeed, PriceFeedPublisher, PriceUpdate

__all__ = ["MarketUpdateHub", "PriceFeed", "PriceFeedPublisher", "PriceUpdate"]
