import logging
import os
from io import BytesIO
from typing import Any, Dict, Optional

from flask import Flask, jsonify, request, send_file

from analyzer_client import AnalyzerClient
from classification import process_response
from config import Config
from csv_conversion import (
    CSV_MIME_TYPE,
    JSON_MIME_TYPE,
    ExportNotAvailable,
    convert_result_to_csv,
    convert_result_to_json,
    export_filename,
)
from app.routes import routes_bp
from app.services import (
    allowed_file,
    build_analysis_request,
    build_result_payload,
    discard_result,
    load_result,
    store_result,
)

# --- Logging Configuration ---
logging.basicConfig(level=logging.INFO, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')


def create_app(overrides: Optional[Dict[str, Any]] = None, client: Optional[AnalyzerClient] = None) -> Flask:
    app = Flask(__name__)
    app.config.from_object(Config)
    if overrides:
        app.config.update(overrides)
    app.secret_key = app.config['SECRET_KEY']

    app.extensions['analyzer_client'] = client or AnalyzerClient(
        app.config['ANALYZER_BASE_URL'], timeout=app.config['ANALYZER_TIMEOUT']
    )
    app.register_blueprint(routes_bp, url_prefix="")

    os.makedirs(app.config['RESULTS_FOLDER'], exist_ok=True)

    @app.route('/analyze', methods=['POST'])
    def analyze_invoice():
        app.logger.info("Received invoice analysis request")
        file = request.files.get('file')
        if file is None or file.filename == '':
            app.logger.warning("No file in analysis request")
            return jsonify({'success': False, 'errors': ['No file selected. Make sure to select a PDF/JPG/PNG file.']}), 400
        if not allowed_file(file.filename):
            return jsonify({'success': False, 'errors': [f"Unsupported file type: {file.filename}"]}), 400

        # A new submission replaces whatever was analyzed before
        discard_result()
        analysis_request = build_analysis_request(file, request.form.get('methodology'))
        app.logger.info(f"Analyzing {analysis_request.filename} with methodology {analysis_request.methodology.value}")

        raw = app.extensions['analyzer_client'].analyze(analysis_request)
        result = process_response(raw, analysis_request)
        app.logger.info(f"Analysis of {analysis_request.filename} finished: {result.outcome.value}")

        store_result(result, analysis_request.filename)
        return jsonify(build_result_payload(result))

    @app.route('/download/<file_type>')
    def download_file(file_type):
        if file_type not in ['csv', 'json']:
            return jsonify({'success': False, 'errors': ['Invalid file type']}), 400

        stored = load_result()
        if stored is None:
            return jsonify({'success': False, 'errors': ['No analysis found. Please analyze an invoice first.']}), 404
        result, source_file = stored['result'], stored['source_file']

        if file_type == 'json':
            data, mime_type = convert_result_to_json(result), JSON_MIME_TYPE
        else:
            try:
                data, mime_type = convert_result_to_csv(result, source_file), CSV_MIME_TYPE
            except ExportNotAvailable as e:
                return jsonify({'success': False, 'errors': [str(e)]}), 409

        return send_file(
            BytesIO(data.encode('utf-8')),
            as_attachment=True,
            download_name=export_filename(source_file, extension=file_type),
            mimetype=mime_type
        )

    @app.route('/reset', methods=['POST'])
    def reset_analysis():
        discard_result()
        return jsonify({'success': True}), 200

    return app
