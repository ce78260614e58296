"""
Structured outputs expected from the recommendation oracle.

Every oracle response is validated against one of these models before any
field is used; identities inside a valid response are still checked against
the candidate list by the caller.
"""
from typing import List, Literal, Optional

from pydantic import BaseModel, Field

MIN_GROUP_SIZE = 2
MAX_GROUP_SIZE = 6

StyleName = Literal["Tango", "Vals", "Milonga"]


class NextTanda(BaseModel):
    style: StyleName
    tracks: List[str] = Field(default_factory=list, description="IDs from CANDIDATES only")
    notes: Optional[str] = None
    warnings: Optional[List[str]] = None


class OrchestraSuggestion(BaseModel):
    orchestra: str = Field(..., description="Exact name as in the profiles input")
    reason: Optional[str] = None


class NextOrchestras(BaseModel):
    style: Optional[StyleName] = None
    suggestions: List[OrchestraSuggestion] = Field(..., min_length=1)
    warnings: Optional[List[str]] = None


class ReplacementSuggestion(BaseModel):
    id: str
    reason: Optional[str] = None


class ReplacementChoice(BaseModel):
    chosenId: str
    suggestions: List[ReplacementSuggestion] = Field(..., min_length=1)


class PlaylistReview(BaseModel):
    orchestraAnalysis: str
    musicalFlow: str
    styleBalance: str
    danceability: str
    djCraft: str
    audienceEngagement: str
    overallAssessment: str
    recommendations: Optional[List[str]] = None
