from market_scout.models.match import Match, Unlock
from market_scout.models.saved_search import SavedSearch
from market_scout.models.search import Search, SearchJob
from market_scout.models.user import User

__all__ = ["Search", "SearchJob", "Match", "Unlock", "SavedSearch", "User"]
