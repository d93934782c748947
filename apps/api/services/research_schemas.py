"""Typed payloads for research requests, enrichment snapshots and LLM reports."""

from __future__ import annotations

from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


PlatformKey = Literal["youtube", "instagram", "tiktok"]

MAX_REPORT_LIST_ITEMS = 5

REPORT_LIST_FIELDS = (
    "dominant_patterns",
    "hook_frameworks",
    "market_gaps",
    "strategic_opportunities",
    "recommended_content_angles",
    "storytelling_structures",
)

# English report keys -> research_results columns
RESULT_COLUMN_MAP = {
    "executive_summary": "resumen_ejecutivo",
    "dominant_patterns": "patrones_dominantes",
    "hook_frameworks": "frameworks_de_ganchos",
    "positioning_analysis": "analisis_de_posicionamiento",
    "market_sophistication_level": "nivel_de_sofisticacion_del_mercado",
    "saturation_level": "nivel_de_saturacion",
    "market_gaps": "brechas_de_mercado",
    "strategic_opportunities": "oportunidades_estrategicas",
    "recommended_content_angles": "angulos_de_contenido_recomendados",
    "storytelling_structures": "estructuras_de_storytelling",
    "video_analyses": "analisis_por_video",
}


def _as_text(value: Any) -> str:
    if value is None:
        return ""
    if isinstance(value, str):
        return value.strip()
    return str(value)


def _as_int(value: Any) -> int:
    try:
        return max(int(float(value)), 0)
    except (TypeError, ValueError):
        return 0


class CompetitorVideo(BaseModel):
    """One recent content item of a competitor."""

    model_config = ConfigDict(extra="ignore")

    creator: str = ""
    video_id: str = ""
    title: str = ""
    video_url: str = ""
    thumbnail_url: Optional[str] = None
    views: int = 0
    likes: int = 0
    comments: int = 0
    duration: Optional[str] = None  # raw ISO-8601, e.g. PT4M13S
    transcript: Optional[str] = None

    @field_validator("views", "likes", "comments", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> int:
        return _as_int(value)


class EnrichedCompetitor(BaseModel):
    """Normalized metrics snapshot for a single competitor reference."""

    model_config = ConfigDict(extra="ignore")

    platform: str = "youtube"
    source_url: str = ""
    channel_id: Optional[str] = None
    channel_url: Optional[str] = None
    name: str = ""
    bio: str = ""
    followers: int = 0
    avg_views: int = 0
    posts_count: int = 0
    videos: List[CompetitorVideo] = Field(default_factory=list)
    enriched: bool = True

    @field_validator("followers", "avg_views", "posts_count", mode="before")
    @classmethod
    def _coerce_counts(cls, value: Any) -> int:
        return _as_int(value)

    def has_signal(self) -> bool:
        """True when the source yielded any usable data."""
        return bool(
            self.followers
            or self.avg_views
            or self.videos
            or self.bio.strip()
        )


class VideoAnalysis(BaseModel):
    """Per-video deep dive produced by the model."""

    model_config = ConfigDict(extra="ignore")

    creator: str = ""
    video_url: str = ""
    title: str = ""
    views: int = 0
    duration: str = ""
    hook_type: str = ""
    hook_analysis: str = ""
    structure_breakdown: str = ""
    retention_mechanisms: str = ""
    replicable_elements: str = ""
    funnel_role: str = ""
    distribution_analysis: str = ""
    video_analysis: str = ""

    @field_validator("views", mode="before")
    @classmethod
    def _coerce_views(cls, value: Any) -> int:
        return _as_int(value)

    @field_validator(
        "creator",
        "video_url",
        "title",
        "duration",
        "hook_type",
        "hook_analysis",
        "structure_breakdown",
        "retention_mechanisms",
        "replicable_elements",
        "funnel_role",
        "distribution_analysis",
        "video_analysis",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        if isinstance(value, list):
            return "\n".join(f"{index}. {_as_text(item)}" for index, item in enumerate(value, start=1))
        return _as_text(value)


class ResearchReport(BaseModel):
    """Combined report persisted as a research_results row."""

    model_config = ConfigDict(extra="ignore")

    executive_summary: str = ""
    dominant_patterns: List[Any] = Field(default_factory=list)
    hook_frameworks: List[Any] = Field(default_factory=list)
    positioning_analysis: str = ""
    market_sophistication_level: str = ""
    saturation_level: str = ""
    market_gaps: List[Any] = Field(default_factory=list)
    strategic_opportunities: List[Any] = Field(default_factory=list)
    recommended_content_angles: List[Any] = Field(default_factory=list)
    storytelling_structures: List[Any] = Field(default_factory=list)
    video_analyses: Optional[List[VideoAnalysis]] = None

    @field_validator(*REPORT_LIST_FIELDS, mode="before")
    @classmethod
    def _coerce_list(cls, value: Any) -> List[Any]:
        if not isinstance(value, list):
            return []
        return [item for item in value if item not in (None, "")][:MAX_REPORT_LIST_ITEMS]

    @field_validator(
        "executive_summary",
        "positioning_analysis",
        "market_sophistication_level",
        "saturation_level",
        mode="before",
    )
    @classmethod
    def _coerce_text(cls, value: Any) -> str:
        return _as_text(value)

    @field_validator("video_analyses", mode="before")
    @classmethod
    def _coerce_videos(cls, value: Any) -> Optional[List[Any]]:
        if value is None:
            return None
        if isinstance(value, dict):
            value = [value]
        if not isinstance(value, list):
            return []
        return [item for item in value if isinstance(item, dict)]

    def to_result_columns(self) -> Dict[str, Any]:
        """Map report sections onto research_results column names."""
        payload = self.model_dump()
        columns: Dict[str, Any] = {}
        for key, column in RESULT_COLUMN_MAP.items():
            columns[column] = payload.get(key)
        return columns
