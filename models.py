import base64
import math
from enum import Enum
from typing import Annotated, Any, Dict, List, Optional, Union

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator, model_validator

# Rendered wherever a value is absent; never render absence as zero.
NOT_AVAILABLE = "N/A"


class Methodology(str, Enum):
    AUTO = "auto"
    ACTIVITY = "activity"
    SPEND = "spend"

    @classmethod
    def coerce(cls, value: Any) -> "Methodology":
        """Map any user-supplied value onto a known methodology, defaulting to auto."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            try:
                return cls(value.strip().lower())
            except ValueError:
                pass
        return cls.AUTO


class Outcome(str, Enum):
    SUCCESS = "success"
    PARTIAL_SUCCESS = "partial_success"
    FAILURE = "failure"


class ErrorKind(str, Enum):
    TRANSPORT_FAILURE = "transport_failure"
    MALFORMED_PAYLOAD = "malformed_payload"
    UNRECOGNIZED_SHAPE = "unrecognized_shape"
    UPSTREAM_REPORTED_FAILURE = "upstream_reported_failure"


class ResponseShape(str, Enum):
    NESTED_V1 = "nested_v1"
    WRAPPED_ARRAY = "wrapped_array"
    BARE_ARRAY = "bare_array"
    ERROR_OBJECT = "error_object"


def _finite_or_none(value: Optional[float]) -> Optional[float]:
    if value is None:
        return None
    return value if math.isfinite(value) else None


OptionalNumber = Annotated[Optional[float], AfterValidator(_finite_or_none)]


class AnalysisRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    document_bytes: bytes = Field(..., description="Raw bytes of the uploaded invoice")
    filename: str = Field(..., description="Original filename of the upload")
    methodology: Methodology = Field(default=Methodology.AUTO, description="Calculation methodology requested")

    @field_validator("methodology", mode="before")
    @classmethod
    def _coerce_methodology(cls, value: Any) -> Methodology:
        return Methodology.coerce(value)

    def to_payload(self) -> Dict[str, Any]:
        """Body expected by the analyzer endpoint (base64 without a data URI prefix)."""
        return {
            "document_base64": base64.b64encode(self.document_bytes).decode(),
            "methodology": self.methodology.value,
            "filename": self.filename,
        }


class RawResponse(BaseModel):
    http_status: Optional[int] = Field(default=None, description="HTTP status code, None when the request never completed")
    body_text: str = Field(default="", description="Response body as text")
    transport_error: Optional[str] = Field(default=None, description="Network-level error message")

    @property
    def ok(self) -> bool:
        return self.transport_error is None and self.http_status is not None and 200 <= self.http_status < 300

    def describe(self) -> str:
        if self.transport_error is not None:
            return f"Network error: {self.transport_error}"
        if self.body_text:
            return f"HTTP {self.http_status}: {self.body_text}"
        return f"HTTP {self.http_status}"


class EmissionFactor(BaseModel):
    value: float = Field(..., description="Emission factor coefficient")
    unit: str = Field(default="", description="Unit the factor is expressed in, e.g. kgCO2e/kg")
    basis: str = Field(default="", description="Quantity the factor applies to, e.g. weight or spend")

    @field_validator("value")
    @classmethod
    def _require_finite(cls, value: float) -> float:
        if not math.isfinite(value):
            raise ValueError("factor value must be finite")
        return value


class FactorReference(BaseModel):
    name: Optional[str] = Field(default=None, description="Factor name")
    co2: OptionalNumber = Field(default=None, description="CO2 value of the factor")
    co2_unit: Optional[str] = Field(default=None, description="Unit of the CO2 value")
    confidence: OptionalNumber = Field(default=None, description="Factor confidence (0..1)")


class LineItem(BaseModel):
    name: str = Field(default="", description="Product/service description")
    quantity: OptionalNumber = Field(default=None, description="Quantity ordered or used")
    unit_price: OptionalNumber = Field(default=None, description="Price per unit")
    total_price: OptionalNumber = Field(default=None, description="Total price for this line item")
    weight: Optional[str] = Field(default=None, description="Weight as reported, including its unit")
    material: Optional[str] = Field(default=None, description="Material classification")
    method: Optional[str] = Field(default=None, description="How the item was classified")
    confidence: OptionalNumber = Field(default=None, description="Extraction confidence (0..1)")

    # Flat per-item fields reported by the array-based analyzer responses
    usage_unit: Optional[str] = Field(default=None, description="Unit of the quantity")
    consumption: OptionalNumber = Field(default=None, description="Consumption amount")
    consumption_unit: Optional[str] = Field(default=None, description="Unit of the consumption amount")
    supplier: Optional[str] = Field(default=None, description="Supplier tag for the item")
    emissions_tco2: OptionalNumber = Field(default=None, description="Estimated emissions in tCO2")
    factors: List[FactorReference] = Field(default_factory=list, description="Emission factors applied")


class EmissionInputs(BaseModel):
    quantity: OptionalNumber = None
    unit_price: OptionalNumber = None
    total_price: OptionalNumber = None
    weight: Optional[str] = None
    material: Optional[str] = None


class EmissionItem(BaseModel):
    name: str = Field(default="", description="Item the calculation refers to")
    methodology_applied: Optional[str] = Field(default=None, description="Methodology the service applied")
    emissions_kg_co2e: OptionalNumber = Field(default=None, description="Estimated emissions in kgCO2e")
    factor: Optional[EmissionFactor] = Field(default=None, description="Emission factor used")
    calculation: Optional[str] = Field(default=None, description="Human-readable calculation")
    assumptions: Optional[str] = Field(default=None, description="Assumptions made by the service")
    confidence: OptionalNumber = Field(default=None, description="Calculation confidence (0..1)")
    source: Optional[str] = Field(default=None, description="Source of the emission factor")
    inputs: EmissionInputs = Field(default_factory=EmissionInputs, description="Inputs used for the calculation")


class EmissionsSummary(BaseModel):
    items: List[EmissionItem] = Field(default_factory=list)
    total_kg_co2e: OptionalNumber = Field(default=None, description="Total emissions reported by the service")
    currency: Optional[str] = None
    notes: Optional[str] = None
    invoice_name: Optional[str] = None
    supplier: Optional[str] = None

    @property
    def computed_total(self) -> Optional[float]:
        """Reported total, else the sum of the items that carry a value; None when nothing is known."""
        if self.total_kg_co2e is not None:
            return self.total_kg_co2e
        present = [e.emissions_kg_co2e for e in self.items if e.emissions_kg_co2e is not None]
        return sum(present, 0.0) if present else None


class ErrorDetail(BaseModel):
    kind: ErrorKind
    message: str
    status_code: Optional[int] = Field(default=None, description="HTTP status when the failure came from transport")
    raw_body: Optional[str] = Field(default=None, description="Raw response body kept for diagnostics")


class ResultMeta(BaseModel):
    filename: Optional[str] = None
    supplier: Optional[str] = None
    total_cost: OptionalNumber = None
    methodology: Optional[str] = None
    extracted_text_length: Optional[int] = None
    invoice_name: Optional[str] = None


class AnalysisResult(BaseModel):
    outcome: Outcome
    shape: Optional[ResponseShape] = Field(default=None, description="Response shape the result was normalized from")
    meta: ResultMeta = Field(default_factory=ResultMeta)
    line_items: List[LineItem] = Field(default_factory=list)
    # ErrorDetail is listed first so a stored partial result reloads as an error, not an empty summary
    emissions: Union[ErrorDetail, EmissionsSummary, None] = None
    error: Optional[ErrorDetail] = Field(default=None, description="Why the analysis failed")

    @model_validator(mode="after")
    def _check_outcome(self) -> "AnalysisResult":
        if self.outcome == Outcome.FAILURE:
            if self.line_items or self.emissions is not None:
                raise ValueError("a failed analysis carries no line items or emissions")
            if self.error is None:
                raise ValueError("a failed analysis must carry an error")
        elif isinstance(self.emissions, ErrorDetail) != (self.outcome == Outcome.PARTIAL_SUCCESS):
            raise ValueError("emissions is an error exactly when the analysis partially succeeded")
        return self

    @classmethod
    def failed(cls, detail: ErrorDetail, meta: Optional[ResultMeta] = None,
               shape: Optional[ResponseShape] = None) -> "AnalysisResult":
        return cls(outcome=Outcome.FAILURE, shape=shape, meta=meta or ResultMeta(), error=detail)

    @property
    def message(self) -> Optional[str]:
        if self.error is not None:
            return self.error.message
        if isinstance(self.emissions, ErrorDetail):
            return f"emissions unavailable: {self.emissions.message}"
        return None

    @property
    def is_flat(self) -> bool:
        return self.shape in (ResponseShape.WRAPPED_ARRAY, ResponseShape.BARE_ARRAY)

    @property
    def total_tco2(self) -> Optional[float]:
        # Missing addends are left out of the sum (see unquantified_items); None when none is present
        present = [item.emissions_tco2 for item in self.line_items if item.emissions_tco2 is not None]
        return sum(present, 0.0) if present else None

    @property
    def unquantified_items(self) -> List[str]:
        if not self.is_flat:
            return []
        return [item.name for item in self.line_items if item.emissions_tco2 is None]
