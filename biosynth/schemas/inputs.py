# biosynth/schemas/inputs.py
from enum import Enum
from typing import Any, Dict, List, Optional, Type

from pydantic import BaseModel, ConfigDict, Field

from biosynth.schemas.job import JobType


class AnalysisType(str, Enum):
    SANITY = "sanity"
    BLIND_SPOT = "blind_spot"
    EXTENSION = "extension"


class GenerateInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    inspiration: str = Field(..., min_length=1, description="Biological/physical source")
    domain: str = Field(..., min_length=1, description="Problem domain")


class SynthesizeInput(BaseModel):
    """
    Hybrid request.

    Each entry of `algorithms` is an algorithm structure as returned by
    a generate job (name, inspiration, principle, ...).
    """

    model_config = ConfigDict(extra="allow")

    algorithms: List[Dict[str, Any]] = Field(..., min_length=2)
    focus: Optional[str] = None


class AnalyzeInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    algorithmId: int
    analysisType: AnalysisType


class ImproveInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    algorithmId: int
    improvementDescription: str = Field(..., min_length=1)
    improvementType: Optional[str] = None


INPUT_MODELS: Dict[JobType, Type[BaseModel]] = {
    JobType.GENERATE: GenerateInput,
    JobType.SYNTHESIZE: SynthesizeInput,
    JobType.ANALYZE: AnalyzeInput,
    JobType.IMPROVE: ImproveInput,
}
