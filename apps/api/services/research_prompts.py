"""Prompt builders for the market intelligence worker.

All builders are pure: they take enriched competitor data and return the
prompt text. Each prompt pins an exact JSON output contract and stays inside
a hard character budget.
"""

from __future__ import annotations

import json
from typing import Any, Dict, List, Optional, Sequence

from services.research_schemas import CompetitorVideo, EnrichedCompetitor


MAX_COMPETITORS_CHARS = 8000
MAX_VIDEO_PROMPT_CHARS = 14000
MAX_TRANSCRIPT_CHARS_PER_VIDEO = 3500
SLIM_TITLES_PER_COMPETITOR = 5
MAX_LIST_ITEMS = 5
MAX_VIDEO_FIELD_CHARS = 600
MAX_VIDEO_SUB_ITEMS = 6
MAX_DEEP_DIVE_VIDEOS = 3
TRUNCATION_MARKER = "\n[TRUNCATED]"

GENERAL_STRATEGY_FIELDS = (
    "hook_frameworks",
    "positioning_analysis",
    "market_sophistication_level",
    "recommended_content_angles",
    "storytelling_structures",
)

MARKET_OVERVIEW_FIELDS = (
    "executive_summary",
    "dominant_patterns",
    "saturation_level",
    "market_gaps",
    "strategic_opportunities",
)

VIDEO_ANALYSIS_FIELDS = (
    "creator",
    "video_url",
    "title",
    "views",
    "duration",
    "hook_type",
    "hook_analysis",
    "structure_breakdown",
    "retention_mechanisms",
    "replicable_elements",
    "funnel_role",
    "distribution_analysis",
    "video_analysis",
)

PLATFORM_LABELS = {
    "youtube": "YouTube",
    "instagram": "Instagram",
    "tiktok": "TikTok",
}

NO_SIGNAL_NARRATIVE = (
    "AVISO: no fue posible obtener datos públicos de ningún competidor "
    "(perfiles privados, bloqueados o sin contenido reciente). Basa el análisis "
    "en las dinámicas conocidas de la plataforma y del nicho implícito en las "
    "URLs, indica explícitamente que la confianza es baja y no inventes métricas."
)

VIDEO_ANALYSIS_EXAMPLE = (
    "• Gancho: pregunta directa en los primeros 3 segundos\\n"
    "• Estructura: problema → demostración → resultado\\n"
    "• Retención: cortes cada 4-6 segundos y texto en pantalla\\n"
    "• CTA: invitación a comentar una palabra clave"
)


def _platform_label(platform: str) -> str:
    return PLATFORM_LABELS.get(platform, platform or "redes sociales")


def _clip(text: str, limit: int) -> str:
    if len(text) <= limit:
        return text
    return text[:limit] + TRUNCATION_MARKER


def slim_competitors(competitors: Sequence[EnrichedCompetitor]) -> List[Dict[str, Any]]:
    """Reduce snapshots to what the competitor-level prompts need.

    Transcripts and raw payloads are dropped; only the top titles by views
    are kept.
    """
    slim = []
    for competitor in competitors:
        ranked = sorted(competitor.videos, key=lambda video: -video.views)
        slim.append({
            "name": competitor.name,
            "url": competitor.channel_url or competitor.source_url,
            "bio": competitor.bio,
            "followers": competitor.followers,
            "avg_views": competitor.avg_views,
            "posts_count": competitor.posts_count,
            "top_titles": [
                video.title or video.video_url
                for video in ranked[:SLIM_TITLES_PER_COMPETITOR]
            ],
        })
    return slim


def _competitor_block(
    platform: str,
    timeframe_days: int,
    competitors: Sequence[EnrichedCompetitor],
    has_signal: bool,
) -> str:
    payload = json.dumps(slim_competitors(competitors), ensure_ascii=False, indent=2)
    block = (
        f"Plataforma: {_platform_label(platform)}\n"
        f"Ventana de análisis: últimos {timeframe_days} días\n"
        f"Competidores:\n{_clip(payload, MAX_COMPETITORS_CHARS)}\n"
    )
    if not has_signal:
        block += f"\n{NO_SIGNAL_NARRATIVE}\n"
    return block


_SHARED_RULES = f"""
Reglas obligatorias:
- Devuelve EXCLUSIVAMENTE un objeto JSON válido, sin markdown, sin comentarios y sin texto fuera del JSON.
- Todas las claves deben existir, aunque estén vacías.
- No agregues claves adicionales.
- Máximo {MAX_LIST_ITEMS} elementos por array.
- Si no hay evidencia suficiente, devuelve arrays vacíos [].
- No inventes información ni métricas.
- Todo el contenido textual debe estar 100% en español.
- Las claves del JSON deben permanecer en inglés exactamente como están.
"""


def build_market_overview_prompt(
    platform: str,
    timeframe_days: int,
    competitors: Sequence[EnrichedCompetitor],
    has_signal: bool = True,
) -> str:
    """Prompt for the executive overview sections of the report."""
    return (
        f"Eres un analista senior de inteligencia competitiva especializado en {_platform_label(platform)}. "
        "Detectas patrones reales a partir de los datos proporcionados; no produces consejos genéricos.\n\n"
        + _competitor_block(platform, timeframe_days, competitors, has_signal)
        + """
Construye la visión general del mercado basada EXCLUSIVAMENTE en los datos anteriores:
- Resume la situación competitiva en un párrafo ejecutivo.
- Identifica patrones dominantes observables en el contenido.
- Evalúa el nivel de saturación del nicho.
- Señala brechas de mercado y oportunidades diferenciales reales.

La estructura debe ser EXACTAMENTE:

{
  "executive_summary": string,
  "dominant_patterns": [
    { "pattern": string, "description": string }
  ],
  "saturation_level": string,
  "market_gaps": [
    { "gap": string, "description": string }
  ],
  "strategic_opportunities": [
    { "opportunity": string, "description": string }
  ]
}
"""
        + _SHARED_RULES
    )


def build_general_strategy_prompt(
    platform: str,
    timeframe_days: int,
    competitors: Sequence[EnrichedCompetitor],
    has_signal: bool = True,
) -> str:
    """Prompt for the content strategy sections of the report."""
    return (
        f"You are a senior content strategist for {_platform_label(platform)}. "
        "Write every textual value in Spanish.\n\n"
        + _competitor_block(platform, timeframe_days, competitors, has_signal)
        + """
Analiza cómo compiten estos creadores a nivel de contenido:
- Frameworks de ganchos que se repiten en los títulos.
- Posicionamiento implícito y contradicciones estratégicas.
- Nivel de sofisticación del mensaje en el mercado.
- Ángulos de contenido recomendados para diferenciarse.
- Estructuras de storytelling que funcionan en el nicho.

Return a SINGLE JSON object with EXACTLY these five fields:

{
  "hook_frameworks": [
    { "framework": string, "description": string }
  ],
  "positioning_analysis": string,
  "market_sophistication_level": string,
  "recommended_content_angles": [
    { "angle": string, "description": string }
  ],
  "storytelling_structures": [
    { "structure": string, "description": string }
  ]
}
"""
        + _SHARED_RULES
    )


def _video_payload(video: CompetitorVideo) -> Dict[str, Any]:
    transcript = (video.transcript or "").strip()
    return {
        "creator": video.creator,
        "video_url": video.video_url,
        "title": video.title,
        "views": video.views,
        "likes": video.likes,
        "comments": video.comments,
        "duration": video.duration or "",
        "transcript": _clip(transcript, MAX_TRANSCRIPT_CHARS_PER_VIDEO) if transcript else "",
    }


def _render_video_prompt(platform: str, payload: str) -> str:
    fields = ",\n".join(
        f'    "{field}": {"number" if field == "views" else "string"}'
        for field in VIDEO_ANALYSIS_FIELDS
    )
    return f"""You are a short-form and long-form video analyst for {_platform_label(platform)}.
Analyze each of the following top-performing competitor videos (sorted by views):

{payload}

Return a JSON ARRAY with exactly one object per video, in the same order, with these {len(VIDEO_ANALYSIS_FIELDS)} fields:

[
  {{
{fields}
  }}
]

Rules:
- Return ONLY the JSON array. No markdown, no text outside the JSON.
- Copy creator, video_url, title, views and duration from the input.
- Every text field must be at most {MAX_VIDEO_FIELD_CHARS} characters.
- structure_breakdown, retention_mechanisms and replicable_elements list at most {MAX_VIDEO_SUB_ITEMS} items as numbered text inside a single string ("1. ... 2. ...").
- funnel_role is one of: "awareness", "consideration", "conversion".
- If a transcript is empty, infer only from title and metrics and say so.
- video_analysis debe estar escrito en español, en viñetas, siguiendo exactamente este formato:
  "{VIDEO_ANALYSIS_EXAMPLE}"
"""


def build_video_deep_dive_prompt(
    platform: str,
    videos: Sequence[CompetitorVideo],
) -> Optional[str]:
    """Prompt for the per-video deep dive, or None when there is nothing to analyze."""
    if not videos:
        return None

    selected = list(videos)[:MAX_DEEP_DIVE_VIDEOS]
    payload = json.dumps([_video_payload(video) for video in selected], ensure_ascii=False, indent=2)
    prompt = _render_video_prompt(platform, payload)
    overflow = len(prompt) - MAX_VIDEO_PROMPT_CHARS
    if overflow > 0:
        keep = max(len(payload) - overflow - len(TRUNCATION_MARKER), 0)
        prompt = _render_video_prompt(platform, payload[:keep] + TRUNCATION_MARKER)
    return prompt
