from datetime import datetime
from typing import Any, Dict, List, Tuple

from pydantic import BaseModel, ConfigDict, Field


class Program(BaseModel):
    """One broadcast tracked through the pipeline; serialized into its job marker."""

    id: str
    network: str
    airtime: datetime
    program: str
    download_attempts: int = 0


class ClassificationResult(BaseModel):
    model_config = ConfigDict(extra="allow")

    classification_progress: float = 0
    label_dict: Dict[str, str] = Field(default_factory=dict)
    detections: Dict[str, Dict[str, List[Dict[str, Any]]]] = Field(default_factory=dict)


class SegmentResult(BaseModel):
    index: int
    duration: float
    results: ClassificationResult


Interval = Tuple[int, int]
