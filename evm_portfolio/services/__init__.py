"""Service modules"""
from .portfolio import PortfolioAggregator
from .price_cache import PriceCache, select_best_pair
from .tracker import Tracker

__all__ = ["PortfolioAggregator", "PriceCache", "Tracker", "select_best_pair"]
