"""Models package."""

from .research_request import ResearchRequest
from .research_result import ResearchResult
