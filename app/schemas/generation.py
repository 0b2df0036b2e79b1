from __future__ import annotations

from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field, conint


class GenerationSpec(BaseModel):
    """
    What the external generator is asked to build.
    """
    orderId: str
    projectName: str
    projectDescription: str
    productType: str
    tier: str
    features: List[str] = Field(default_factory=list)
    tokenConfig: Optional[Dict[str, Any]] = None


class GeneratedFile(BaseModel):
    path: str = Field(..., min_length=1, max_length=512)
    content: str
    language: str = Field(default="text", max_length=32)


class GeneratorResult(BaseModel):
    files: List[GeneratedFile] = Field(..., min_length=1)
    packageManifest: Dict[str, Any] = Field(default_factory=dict)
    readme: str = ""
    totalFiles: conint(ge=0)
    totalLines: conint(ge=0) = 0
    tokensUsed: conint(ge=0) = 0
