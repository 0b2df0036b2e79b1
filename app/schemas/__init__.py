from app.schemas.generation import GenerationSpec, GeneratedFile, GeneratorResult
from app.schemas.compliance import ComplianceFinding, ComplianceReport
