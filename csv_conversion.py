import os
from collections import defaultdict, deque
from datetime import date
from typing import Any, Dict, List, Optional

import pandas as pd

from models import NOT_AVAILABLE, AnalysisResult, EmissionItem, EmissionsSummary, LineItem, Outcome

CSV_MIME_TYPE = 'text/csv'
JSON_MIME_TYPE = 'application/json'

FLAT_COLUMNS = [
    'Name', 'Quantity', 'Usage Unit', 'Consumption', 'Consumption Unit', 'Supplier',
    'Emissions (tCO2)', 'Confidence', 'Factor Name', 'Factor CO2', 'Factor Unit', 'Factor Confidence',
]
NESTED_COLUMNS = [
    'Name', 'Quantity', 'Unit Price', 'Total Price', 'Weight', 'Material', 'Method', 'Confidence',
    'Emissions (kgCO2e)', 'Factor Value', 'Factor Unit', 'Factor Basis', 'Methodology Applied', 'Source',
]


class ExportNotAvailable(ValueError):
    """Only fully successful analyses can be exported."""


def _money(value: Optional[float]) -> Optional[str]:
    # Presentation-only rounding; the model keeps full precision
    return None if value is None else f"{value:.2f}"


def _number(value: Optional[float]) -> Optional[str]:
    if value is None:
        return None
    return str(int(value)) if value.is_integer() else repr(value)


def _joined(values: List[Optional[str]]) -> Optional[str]:
    present = [v for v in values if v]
    return '; '.join(present) if present else None


def _flat_row(item: LineItem) -> Dict[str, Any]:
    return {
        'Name': item.name,
        'Quantity': _number(item.quantity),
        'Usage Unit': item.usage_unit,
        'Consumption': _number(item.consumption),
        'Consumption Unit': item.consumption_unit,
        'Supplier': item.supplier,
        'Emissions (tCO2)': _money(item.emissions_tco2),
        'Confidence': _number(item.confidence),
        'Factor Name': _joined([f.name for f in item.factors]),
        'Factor CO2': _joined([_number(f.co2) for f in item.factors]),
        'Factor Unit': _joined([f.co2_unit for f in item.factors]),
        'Factor Confidence': _joined([_number(f.confidence) for f in item.factors]),
    }


def _nested_row(item: LineItem, emission: Optional[EmissionItem]) -> Dict[str, Any]:
    row = {
        'Name': item.name,
        'Quantity': _number(item.quantity),
        'Unit Price': _money(item.unit_price),
        'Total Price': _money(item.total_price),
        'Weight': item.weight,
        'Material': item.material,
        'Method': item.method,
        'Confidence': _number(item.confidence),
    }
    if emission is not None:
        factor = emission.factor
        row.update({
            'Emissions (kgCO2e)': _money(emission.emissions_kg_co2e),
            'Factor Value': _number(factor.value) if factor else None,
            'Factor Unit': factor.unit if factor else None,
            'Factor Basis': factor.basis if factor else None,
            'Methodology Applied': emission.methodology_applied,
            'Source': emission.source,
        })
    return row


def match_emissions(line_items: List[LineItem], emissions: EmissionsSummary) -> List[Optional[EmissionItem]]:
    """Pair each line item with its emission calculation, by name first and position second.

    Every emission item is used at most once: repeated names pair in order, and
    unmatched line items take the remaining calculations in order.
    """
    by_name = defaultdict(deque)
    for idx, emission in enumerate(emissions.items):
        if emission.name:
            by_name[emission.name].append(idx)
    used = set()
    matched: List[Optional[int]] = []
    for item in line_items:
        queue = by_name.get(item.name)
        if queue:
            idx = queue.popleft()
            used.add(idx)
            matched.append(idx)
        else:
            matched.append(None)

    leftovers = deque(idx for idx in range(len(emissions.items)) if idx not in used)
    for pos, idx in enumerate(matched):
        if idx is None and leftovers:
            matched[pos] = leftovers.popleft()
    return [None if idx is None else emissions.items[idx] for idx in matched]


def items_without_emissions(line_items: List[LineItem], emissions: EmissionsSummary) -> int:
    return sum(1 for e in match_emissions(line_items, emissions) if e is None or e.emissions_kg_co2e is None)


def _to_text(df: pd.DataFrame, header: bool = True) -> str:
    return df.to_csv(index=False, header=header, lineterminator='\n').rstrip('\n')


def convert_result_to_csv(result: AnalysisResult, source_filename: str) -> str:
    """Convert a successful analysis into a summary block, a blank row and one row per line item"""
    if result.outcome != Outcome.SUCCESS:
        raise ExportNotAvailable(f"Export is not available for a {result.outcome.value} analysis")

    if isinstance(result.emissions, EmissionsSummary):
        emissions = result.emissions
        pairs = match_emissions(result.line_items, emissions)
        rows = [_nested_row(item, emission) for item, emission in zip(result.line_items, pairs)]
        columns = NESTED_COLUMNS
        missing = items_without_emissions(result.line_items, emissions)
        summary = [['File', source_filename], ['Total Items', str(len(result.line_items))],
                   ['Total Emissions (kgCO2e)', _money(emissions.computed_total) or NOT_AVAILABLE]]
        if missing:
            summary.append(['Items Without Emissions', str(missing)])
    else:
        rows = [_flat_row(item) for item in result.line_items]
        columns = FLAT_COLUMNS
        summary = [['File', source_filename], ['Total Items', str(len(result.line_items))],
                   ['Total Emissions (tCO2)', _money(result.total_tco2) or NOT_AVAILABLE]]
        if result.unquantified_items:
            summary.append(['Items Without Emissions', str(len(result.unquantified_items))])

    summary_text = _to_text(pd.DataFrame(summary), header=False)
    items_text = _to_text(pd.DataFrame(rows, columns=columns))
    return summary_text + '\n\n' + items_text


def convert_result_to_json(result: AnalysisResult) -> str:
    return result.model_dump_json(indent=2)


def export_filename(source_filename: str, today: Optional[date] = None, extension: str = 'csv') -> str:
    base = os.path.splitext(os.path.basename(source_filename or ''))[0] or 'invoice'
    return f"{base}-{(today or date.today()).isoformat()}.{extension}"
