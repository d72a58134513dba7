# biosynth/services/processors.py
import logging
from typing import Any, Callable, Dict, List, Optional, Sequence

import pydantic

from biosynth.errors import ProcessorError, ValidationError
from biosynth.schemas.inputs import (
    INPUT_MODELS,
    AnalysisType,
    AnalyzeInput,
    GenerateInput,
    ImproveInput,
    SynthesizeInput,
)
from biosynth.schemas.job import JobType
from biosynth.services.algorithm_source import normalize_algorithm
from biosynth.services.sanitizer import sanitize

logger = logging.getLogger(__name__)

INVALID_JSON_MESSAGE = "AI service returned an invalid JSON response. Please try again."

SYSTEM_PROMPT = (
    "You are a researcher who designs and reviews bio-inspired algorithms. "
    "Always answer with strict JSON."
)

# -------------------------
# Response schemas
# -------------------------
_STR = {"type": "string"}
_STR_LIST = {"type": "array", "items": _STR}

ALGORITHM_FIELDS = [
    "name", "inspiration", "domain", "description",
    "principle", "steps", "applications", "pseudoCode", "tags",
]

ALGORITHM_SCHEMA = {
    "type": "object",
    "properties": {
        "name": _STR,
        "inspiration": _STR,
        "domain": _STR,
        "description": _STR,
        "principle": _STR,
        "steps": _STR_LIST,
        "applications": _STR_LIST,
        "pseudoCode": _STR,
        "tags": _STR_LIST,
    },
    "required": ALGORITHM_FIELDS,
}

IMPROVED_ALGORITHM_SCHEMA = {
    "type": "object",
    "properties": {**ALGORITHM_SCHEMA["properties"], "improvementNote": _STR},
    "required": ALGORITHM_FIELDS + ["improvementNote"],
}

ANALYSIS_SCHEMAS = {
    AnalysisType.SANITY: {
        "type": "object",
        "properties": {
            "score": {"type": "integer", "minimum": 0, "maximum": 100},
            "verdict": _STR,
            "analysis": _STR,
            "gaps": _STR_LIST,
        },
        "required": ["score", "verdict", "analysis", "gaps"],
    },
    AnalysisType.BLIND_SPOT: {
        "type": "object",
        "properties": {
            "risks": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {
                        "risk": _STR,
                        "explanation": _STR,
                        "severity": {"type": "string", "enum": ["High", "Medium", "Low"]},
                    },
                    "required": ["risk", "explanation", "severity"],
                },
            },
        },
        "required": ["risks"],
    },
    AnalysisType.EXTENSION: {
        "type": "object",
        "properties": {
            "ideas": {
                "type": "array",
                "items": {
                    "type": "object",
                    "properties": {"name": _STR, "description": _STR, "benefit": _STR},
                    "required": ["name", "description", "benefit"],
                },
            },
        },
        "required": ["ideas"],
    },
}


def _joined(value: Any, sep: str) -> str:
    if isinstance(value, list):
        return sep.join(str(v) for v in value)
    return str(value) if value else "N/A"


class ProcessorRegistry:
    """
    Closed dispatch from JobType to processor.

    Every processor calls the AI client, runs the raw text through the
    sanitizer and returns structured data. Processors never touch job records.
    """

    def __init__(self, *, ai_client, algorithms):
        self.ai = ai_client
        self.algorithms = algorithms

        self._handlers: Dict[JobType, Callable[[Dict[str, Any], Optional[str]], Any]] = {
            JobType.GENERATE: self.generate,
            JobType.SYNTHESIZE: self.synthesize,
            JobType.ANALYZE: self.analyze,
            JobType.IMPROVE: self.improve,
        }
        missing = set(JobType) - set(self._handlers)
        if missing:
            raise RuntimeError(f"No processor registered for: {sorted(m.value for m in missing)}")

    # --------------------------------------------------
    # Dispatch
    # --------------------------------------------------
    def process(self, jobType, inputData: Dict[str, Any], userId: Optional[str] = None) -> Any:
        try:
            kind = JobType(jobType)
        except ValueError:
            raise ValidationError(f"Unknown job type: {jobType}")
        return self._handlers[kind](inputData, userId)

    # --------------------------------------------------
    # Helpers
    # --------------------------------------------------
    def _parse_input(self, jobType: JobType, inputData: Dict[str, Any]):
        try:
            return INPUT_MODELS[jobType].model_validate(inputData or {})
        except pydantic.ValidationError as e:
            raise ValidationError(f"Invalid input for {jobType.value} job: {e.errors()[0]['msg']}")

    def _ask(self, user_prompt: str, schema: Dict[str, Any], required: Sequence[str]) -> Dict[str, Any]:
        raw = self.ai.generate_text(SYSTEM_PROMPT, user_prompt, schema)

        result = sanitize(raw, None)
        if result.used_fallback:
            raise ProcessorError(INVALID_JSON_MESSAGE)

        data = result.value
        if not isinstance(data, dict):
            raise ProcessorError("AI service returned an unexpected response shape.")

        missing = [key for key in required if key not in data]
        if missing:
            raise ProcessorError(f"AI response is missing required fields: {', '.join(missing)}")
        return data

    def _load_algorithm(self, algorithmId: int) -> Dict[str, Any]:
        algo = self.algorithms.get_algorithm(algorithmId)
        if not algo:
            raise ProcessorError("Algorithm not found")
        return algo

    # --------------------------------------------------
    # Processors
    # --------------------------------------------------
    def generate(self, inputData: Dict[str, Any], userId: Optional[str] = None) -> Dict[str, Any]:
        params: GenerateInput = self._parse_input(JobType.GENERATE, inputData)

        prompt = (
            f'Design a NOVEL, theoretical algorithm inspired by "{params.inspiration}" '
            f'for the problem domain of "{params.domain}".\n\n'
            "It should not be a direct copy of an existing algorithm (like standard "
            "Ant Colony Optimization or Neural Networks) but a creative variation or "
            "a new concept based on the specific mechanics of the inspiration."
        )
        return normalize_algorithm(self._ask(prompt, ALGORITHM_SCHEMA, ALGORITHM_FIELDS))

    def synthesize(self, inputData: Dict[str, Any], userId: Optional[str] = None) -> Dict[str, Any]:
        params: SynthesizeInput = self._parse_input(JobType.SYNTHESIZE, inputData)

        summaries = "; ".join(
            f"{a.get('name', 'Unnamed')} (Inspiration: {a.get('inspiration', 'N/A')}, "
            f"Principle: {a.get('principle', 'N/A')})"
            for a in params.algorithms
        )
        prompt = (
            "Act as a System Architect. Merge the following algorithms into a unified "
            f"HYBRID system:\n{summaries}\n\n"
            "Create a new cohesive system identity and explain how the components interact."
        )
        if params.focus:
            prompt += f"\nFocus specifically on: {params.focus}"

        return normalize_algorithm(self._ask(prompt, ALGORITHM_SCHEMA, ALGORITHM_FIELDS))

    def analyze(self, inputData: Dict[str, Any], userId: Optional[str] = None) -> Dict[str, Any]:
        params: AnalyzeInput = self._parse_input(JobType.ANALYZE, inputData)
        algo = self._load_algorithm(params.algorithmId)

        if params.analysisType == AnalysisType.SANITY:
            prompt = (
                "Perform a rigorous conceptual sanity check on this bio-inspired algorithm:\n"
                f"Name: {algo.get('name')}\n"
                f"Inspiration: {algo.get('inspiration')}\n"
                f"Principle: {algo.get('principle')}\n"
                f"Logic: {_joined(algo.get('steps'), ' -> ')}\n\n"
                "Evaluate whether the metaphor translates meaningfully to the computational "
                "domain. Score feasibility from 0 to 100."
            )
        elif params.analysisType == AnalysisType.BLIND_SPOT:
            prompt = (
                "Act as a hostile reviewer. Find the major flaws, blind spots, edge cases "
                "and failure modes of this algorithm:\n"
                f"Name: {algo.get('name')}\n"
                f"Description: {algo.get('description')}\n"
                f"Steps: {_joined(algo.get('steps'), '; ')}"
            )
        else:
            prompt = (
                "Suggest 3 exciting feature extensions or evolution paths for this algorithm:\n"
                f"Name: {algo.get('name')}\n"
                f"Domain: {algo.get('domain')}\n\n"
                "How can it be made more powerful?"
            )

        schema = ANALYSIS_SCHEMAS[params.analysisType]
        return self._ask(prompt, schema, schema["required"])

    def improve(self, inputData: Dict[str, Any], userId: Optional[str] = None) -> Dict[str, Any]:
        params: ImproveInput = self._parse_input(JobType.IMPROVE, inputData)
        algo = self._load_algorithm(params.algorithmId)

        prompt = (
            "Improve the following bio-inspired algorithm based on this issue or "
            "enhancement request.\n\n"
            f"ISSUE/ENHANCEMENT: {params.improvementDescription}\n"
            f"IMPROVEMENT TYPE: {params.improvementType or 'general improvement'}\n\n"
            "CURRENT ALGORITHM:\n"
            f"Name: {algo.get('name')}\n"
            f"Inspiration: {algo.get('inspiration')}\n"
            f"Domain: {algo.get('domain')}\n"
            f"Description: {algo.get('description')}\n"
            f"Principle: {algo.get('principle')}\n"
            f"Steps: {_joined(algo.get('steps'), ' -> ')}\n"
            f"Pseudo Code: {algo.get('pseudoCode') or 'N/A'}\n"
            f"Applications: {_joined(algo.get('applications'), ', ')}\n"
            f"Tags: {_joined(algo.get('tags'), ', ')}\n\n"
            "Keep the core inspiration and principle, address the request, preserve what "
            "works, and return the improved algorithm with the same structure plus a short "
            "improvementNote."
        )
        required: List[str] = IMPROVED_ALGORITHM_SCHEMA["required"]
        return normalize_algorithm(self._ask(prompt, IMPROVED_ALGORITHM_SCHEMA, required))
