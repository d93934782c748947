"""Research result model (one row per completed request)."""

from sqlalchemy import Column, String, DateTime, ForeignKey, JSON, Text
from sqlalchemy.sql import func
import uuid

from database import Base


class ResearchResult(Base):
    """Structured competitive analysis report for a research request.

    Column names are the Spanish section names the dashboard reads.
    """

    __tablename__ = "research_results"

    id = Column(String, primary_key=True, default=lambda: str(uuid.uuid4()))
    request_id = Column(String, ForeignKey("research_requests.id"), nullable=False, unique=True, index=True)
    resumen_ejecutivo = Column(Text, nullable=True)
    patrones_dominantes = Column(JSON, nullable=False, default=list)
    frameworks_de_ganchos = Column(JSON, nullable=False, default=list)
    analisis_de_posicionamiento = Column(Text, nullable=True)
    nivel_de_sofisticacion_del_mercado = Column(Text, nullable=True)
    nivel_de_saturacion = Column(Text, nullable=True)
    brechas_de_mercado = Column(JSON, nullable=False, default=list)
    oportunidades_estrategicas = Column(JSON, nullable=False, default=list)
    angulos_de_contenido_recomendados = Column(JSON, nullable=False, default=list)
    estructuras_de_storytelling = Column(JSON, nullable=False, default=list)
    analisis_por_video = Column(JSON, nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
