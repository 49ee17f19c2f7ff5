"""
Normalize the analyzer's response shapes into a single AnalysisResult.

The analyzer has shipped several incompatible layouts for the same answer:

* ``nested_v1``      ``{"status": "success", "result": {"formatted_result": {...},
                     "emission_calculations": {...}}}``
* ``wrapped_array``  ``{"result": {"emission_calculations": [ {...}, ... ]}}``
* ``bare_array``     ``[ {...}, ... ]``
* ``error_object``   ``{"status": "error", "detail": "..."}``

Each layout is checked structurally by :func:`detect_shape` and mapped by its
own function; anything else becomes a failed result.
"""
import logging
import math
import re
from typing import Any, Callable, Dict, List, Optional

from models import (
    AnalysisResult,
    EmissionFactor,
    EmissionInputs,
    EmissionItem,
    EmissionsSummary,
    ErrorDetail,
    ErrorKind,
    FactorReference,
    LineItem,
    Methodology,
    Outcome,
    ResponseShape,
    ResultMeta,
)

logger = logging.getLogger(__name__)

UNEXPECTED_FORMAT_MESSAGE = "Unexpected response format from invoice analyzer"
DEFAULT_FAILURE_MESSAGE = "Failed to analyze invoice"
DEFAULT_EMISSIONS_ERROR = "Unknown error"
MISSING_EMISSIONS_MESSAGE = "No emission calculations were returned"

# Synonyms for the emissions section, highest priority first
EMISSIONS_KEYS = ('emission_calculations', 'emissions_calculations', 'emissions')

_GROUPED_NUMBER = re.compile(r"^[-+]?\d{1,3}(,\d{3})+(\.\d+)?$")


def to_number(value: Any) -> Optional[float]:
    """Coerce a numeric-looking value to a finite float, or None when it is not one."""
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        try:
            number = float(value)
        except OverflowError:
            return None
    elif isinstance(value, str):
        cleaned = value.strip()
        if _GROUPED_NUMBER.match(cleaned):
            cleaned = cleaned.replace(',', '')
        if not cleaned:
            return None
        try:
            number = float(cleaned)
        except ValueError:
            return None
    else:
        return None
    return number if math.isfinite(number) else None


def to_confidence(value: Any, percentage: bool = False) -> Optional[float]:
    number = to_number(value)
    if number is None:
        return None
    if percentage:
        number = number / 100
    return number if 0 <= number <= 1 else None


def to_text(value: Any) -> Optional[str]:
    if value is None or isinstance(value, (dict, list)):
        return None
    if isinstance(value, bool):
        return str(value).lower()
    text = str(value).strip()
    return text or None


def resolve_emissions_section(result: Dict[str, Any]) -> Any:
    for key in EMISSIONS_KEYS:
        if key in result and result[key] is not None:
            return result[key]
    return None


def _is_record_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(item, dict) for item in value)


def detect_shape(value: Any) -> Optional[ResponseShape]:
    if isinstance(value, list):
        return ResponseShape.BARE_ARRAY if _is_record_list(value) else None
    if not isinstance(value, dict):
        return None

    result = value.get('result')
    if isinstance(result, dict):
        emissions = resolve_emissions_section(result)
        if (value.get('status') == 'success'
                and isinstance(result.get('formatted_result'), dict)
                and (emissions is None or isinstance(emissions, dict))):
            return ResponseShape.NESTED_V1
        if _is_record_list(emissions):
            return ResponseShape.WRAPPED_ARRAY

    if value.get('status') == 'error':
        return ResponseShape.ERROR_OBJECT
    return None


def _map_line_item(item: Dict[str, Any]) -> LineItem:
    return LineItem(
        name=to_text(item.get('name')) or to_text(item.get('description')) or '',
        quantity=to_number(item.get('quantity')),
        unit_price=to_number(item.get('unit_price')),
        total_price=to_number(item.get('total_price')),
        weight=to_text(item.get('weight')),
        material=to_text(item.get('material')),
        method=to_text(item.get('method')),
        confidence=to_confidence(item.get('confidence')),
    )


def _map_factor(raw: Any) -> Optional[EmissionFactor]:
    if not isinstance(raw, dict):
        return None
    value = to_number(raw.get('value'))
    if value is None:
        return None
    return EmissionFactor(value=value, unit=to_text(raw.get('unit')) or '', basis=to_text(raw.get('basis')) or '')


def _map_emission_item(item: Dict[str, Any]) -> EmissionItem:
    inputs = item.get('inputs') if isinstance(item.get('inputs'), dict) else {}
    factor = item.get('emission_factor')
    if factor is None:
        factor = item.get('factor')
    return EmissionItem(
        name=to_text(item.get('name')) or '',
        methodology_applied=to_text(item.get('methodology_applied')),
        emissions_kg_co2e=to_number(item.get('emissions_kgco2e')),
        factor=_map_factor(factor),
        calculation=to_text(item.get('calculation')),
        assumptions=to_text(item.get('assumptions')),
        confidence=to_confidence(item.get('confidence')),
        source=to_text(item.get('source')),
        inputs=EmissionInputs(
            quantity=to_number(inputs.get('quantity')),
            unit_price=to_number(inputs.get('unit_price')),
            total_price=to_number(inputs.get('total_price')),
            weight=to_text(inputs.get('weight')),
            material=to_text(inputs.get('material')),
        ),
    )


def _map_flat_item(item: Dict[str, Any]) -> LineItem:
    factors = item.get('factor') if isinstance(item.get('factor'), list) else []
    return LineItem(
        name=to_text(item.get('name')) or to_text(item.get('description')) or '',
        quantity=to_number(item.get('usages')),
        usage_unit=to_text(item.get('usageUnit')),
        consumption=to_number(item.get('consumption')),
        consumption_unit=to_text(item.get('consumptionUnit')),
        supplier=to_text(item.get('tagName')),
        emissions_tco2=to_number(item.get('tco2')),
        confidence=to_confidence(item.get('weightConfidence'), percentage=True),
        factors=[
            FactorReference(
                name=to_text(factor.get('name')),
                co2=to_number(factor.get('co2')),
                co2_unit=to_text(factor.get('co2_unit')),
                confidence=to_confidence(factor.get('factorConfidence'), percentage=True),
            )
            for factor in factors if isinstance(factor, dict)
        ],
    )


def _meta_from_result(result: Dict[str, Any], requested: Methodology, filename: Optional[str]) -> ResultMeta:
    length = to_number(result.get('extracted_text_length'))
    return ResultMeta(
        filename=to_text(result.get('filename')) or filename,
        methodology=to_text(result.get('methodology')) or requested.value,
        extracted_text_length=int(length) if length is not None else None,
    )


def _normalize_nested(value: Dict[str, Any], requested: Methodology, filename: Optional[str]) -> AnalysisResult:
    result = value['result']
    formatted = result['formatted_result']
    meta = _meta_from_result(result, requested, filename)
    meta.supplier = to_text(formatted.get('supplier'))
    meta.total_cost = to_number(formatted.get('total_cost'))
    meta.invoice_name = to_text(formatted.get('invoice_name'))

    raw_items = formatted.get('items') if isinstance(formatted.get('items'), list) else []
    line_items = [_map_line_item(item) for item in raw_items if isinstance(item, dict)]

    section = resolve_emissions_section(result)
    if isinstance(section, dict) and section.get('status') == 'error':
        emissions = ErrorDetail(
            kind=ErrorKind.UPSTREAM_REPORTED_FAILURE,
            message=to_text(section.get('message')) or DEFAULT_EMISSIONS_ERROR,
        )
        logger.warning("Emission calculation failed upstream: %s", emissions.message)
        outcome = Outcome.PARTIAL_SUCCESS
    elif isinstance(section, dict) and isinstance(section.get('items'), list):
        totals = section.get('totals') if isinstance(section.get('totals'), dict) else {}
        emissions = EmissionsSummary(
            items=[_map_emission_item(item) for item in section['items'] if isinstance(item, dict)],
            total_kg_co2e=to_number(totals.get('sum_emissions_kgco2e')),
            currency=to_text(section.get('currency')),
            notes=to_text(section.get('notes')),
            invoice_name=to_text(section.get('invoice_name')),
            supplier=to_text(section.get('supplier')),
        )
        outcome = Outcome.SUCCESS
    else:
        emissions = ErrorDetail(kind=ErrorKind.UPSTREAM_REPORTED_FAILURE, message=MISSING_EMISSIONS_MESSAGE)
        outcome = Outcome.PARTIAL_SUCCESS

    return AnalysisResult(
        outcome=outcome,
        shape=ResponseShape.NESTED_V1,
        meta=meta,
        line_items=line_items,
        emissions=emissions,
    )


def _normalize_flat(records: List[Dict[str, Any]], meta: ResultMeta, shape: ResponseShape) -> AnalysisResult:
    line_items = [_map_flat_item(record) for record in records]
    missing = [item.name for item in line_items if item.emissions_tco2 is None]
    if missing:
        logger.warning("%d item(s) without numeric emissions excluded from total: %s", len(missing), missing)
    return AnalysisResult(outcome=Outcome.SUCCESS, shape=shape, meta=meta, line_items=line_items)


def _normalize_wrapped(value: Dict[str, Any], requested: Methodology, filename: Optional[str]) -> AnalysisResult:
    result = value['result']
    meta = _meta_from_result(result, requested, filename)
    return _normalize_flat(resolve_emissions_section(result), meta, ResponseShape.WRAPPED_ARRAY)


def _normalize_bare(value: List[Dict[str, Any]], requested: Methodology, filename: Optional[str]) -> AnalysisResult:
    meta = ResultMeta(filename=filename, methodology=requested.value)
    return _normalize_flat(value, meta, ResponseShape.BARE_ARRAY)


def _normalize_error(value: Dict[str, Any], requested: Methodology, filename: Optional[str]) -> AnalysisResult:
    message = to_text(value.get('detail')) or to_text(value.get('message')) or DEFAULT_FAILURE_MESSAGE
    return AnalysisResult.failed(
        ErrorDetail(kind=ErrorKind.UPSTREAM_REPORTED_FAILURE, message=message),
        meta=ResultMeta(filename=filename, methodology=requested.value),
        shape=ResponseShape.ERROR_OBJECT,
    )


_NORMALIZERS: Dict[ResponseShape, Callable[[Any, Methodology, Optional[str]], AnalysisResult]] = {
    ResponseShape.NESTED_V1: _normalize_nested,
    ResponseShape.WRAPPED_ARRAY: _normalize_wrapped,
    ResponseShape.BARE_ARRAY: _normalize_bare,
    ResponseShape.ERROR_OBJECT: _normalize_error,
}


def normalize(value: Any, requested_methodology: Any = Methodology.AUTO,
              filename: Optional[str] = None) -> AnalysisResult:
    """Map a parsed analyzer response onto the canonical result. Never raises."""
    requested = Methodology.coerce(requested_methodology)
    unrecognized = AnalysisResult.failed(
        ErrorDetail(kind=ErrorKind.UNRECOGNIZED_SHAPE, message=UNEXPECTED_FORMAT_MESSAGE),
        meta=ResultMeta(filename=filename, methodology=requested.value),
    )

    shape = detect_shape(value)
    if shape is None:
        logger.warning("Unrecognized analyzer response of type %s", type(value).__name__)
        return unrecognized
    try:
        return _NORMALIZERS[shape](value, requested, filename)
    except Exception:
        logger.exception("Failed to normalize %s analyzer response", shape.value)
        return unrecognized
