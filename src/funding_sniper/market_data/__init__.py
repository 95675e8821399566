"""Market data layer -- funding snapshot filtering and candidate ranking."""

from funding_sniper.market_data.ranker import CandidateRanker

__all__ = ["CandidateRanker"]
