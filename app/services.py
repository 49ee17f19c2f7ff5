import glob
import os
import time
import uuid
from typing import Any, Dict, Optional

from flask import current_app as app, session
from werkzeug.utils import secure_filename

from csv_conversion import items_without_emissions
from models import NOT_AVAILABLE, AnalysisRequest, AnalysisResult, EmissionsSummary, ErrorDetail, Outcome

SESSION_KEY = 'analysis'


def allowed_file(filename: str) -> bool:
    return '.' in filename and filename.rsplit('.', 1)[1].lower() in app.config['ALLOWED_EXTENSIONS']


def build_analysis_request(file_storage, methodology: Optional[str]) -> AnalysisRequest:
    """
    Read the uploaded file into an immutable AnalysisRequest.
    Unknown methodologies fall back to the configured default, then to auto.
    """
    return AnalysisRequest(
        document_bytes=file_storage.read(),
        filename=secure_filename(file_storage.filename) or 'invoice',
        methodology=methodology or app.config.get('DEFAULT_METHODOLOGY'),
    )


def display_value(value: Optional[float], digits: int = 2) -> str:
    return NOT_AVAILABLE if value is None else f"{value:.{digits}f}"


def _emissions_status(result: AnalysisResult) -> Optional[str]:
    if isinstance(result.emissions, ErrorDetail):
        return f"emissions unavailable: {result.emissions.message}"
    return None


def _stats(result: AnalysisResult) -> Dict[str, Any]:
    stats = {
        'total_line_items': len(result.line_items),
        'total_cost': display_value(result.meta.total_cost),
    }
    if isinstance(result.emissions, EmissionsSummary):
        stats['total_emissions'] = display_value(result.emissions.computed_total)
        stats['emissions_unit'] = 'kgCO2e'
        stats['items_without_emissions'] = items_without_emissions(result.line_items, result.emissions)
    elif result.is_flat:
        stats['total_emissions'] = display_value(result.total_tco2)
        stats['emissions_unit'] = 'tCO2'
        stats['items_without_emissions'] = len(result.unquantified_items)
    else:
        stats['total_emissions'] = NOT_AVAILABLE
    return stats


def build_result_payload(result: AnalysisResult) -> Dict[str, Any]:
    if result.outcome == Outcome.FAILURE:
        # A failure shows a single message and no partial table
        return {
            'success': False,
            'outcome': result.outcome.value,
            'message': result.message,
            'errors': [result.message],
            'export_available': False,
        }
    return {
        'success': True,
        'outcome': result.outcome.value,
        'message': result.message,
        'result': result.model_dump(mode='json'),
        'emissions_status': _emissions_status(result),
        'export_available': result.outcome == Outcome.SUCCESS,
        'stats': _stats(result),
        'errors': [],
    }


def store_result(result: AnalysisResult, source_filename: str) -> str:
    """
    Persist the canonical result for later download and point the session at it.
    Any previously stored result for this session is discarded.
    """
    discard_result()
    results_folder = app.config['RESULTS_FOLDER']
    os.makedirs(results_folder, exist_ok=True)
    sweep_stale_results()
    path = os.path.join(results_folder, f'analysis_{uuid.uuid4().hex}.json')
    with open(path, 'w') as f:
        f.write(result.model_dump_json())
    session[SESSION_KEY] = {'path': path, 'source_file': source_filename}
    return path


def load_result() -> Optional[Dict[str, Any]]:
    stored = session.get(SESSION_KEY)
    if not stored or not os.path.exists(stored.get('path', '')):
        return None
    with open(stored['path']) as f:
        result = AnalysisResult.model_validate_json(f.read())
    return {'result': result, 'source_file': stored.get('source_file', '')}


def discard_result() -> None:
    stored = session.pop(SESSION_KEY, None)
    if not stored:
        return
    try:
        if os.path.exists(stored.get('path', '')):
            os.remove(stored['path'])
    except OSError as rm_err:
        app.logger.warning(f"Failed to remove stored result {stored.get('path')}: {rm_err}")


def sweep_stale_results(max_age: Optional[int] = None) -> int:
    """Delete stored results older than RESULT_MAX_AGE seconds and return how many were removed."""
    if max_age is None:
        max_age = app.config.get('RESULT_MAX_AGE', 3600)
    cutoff = time.time() - max_age
    removed = 0
    for path in glob.glob(os.path.join(app.config['RESULTS_FOLDER'], 'analysis_*.json')):
        try:
            if os.path.getmtime(path) < cutoff:
                os.remove(path)
                removed += 1
        except OSError as rm_err:
            app.logger.warning(f"Failed to remove stale result {path}: {rm_err}")
    if removed:
        app.logger.info(f"Removed {removed} stale stored result(s)")
    return removed
