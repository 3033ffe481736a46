"""
Audit Report Compiler - Backend API

Flask application serving compiled audit reports as JSON, PDF and
corrective action plan exports.
"""

import os
import logging
from datetime import datetime
from flask import Flask, request, jsonify, Response
from flask_cors import CORS

from checklist import AuditNotFoundError, ReportCompilationError
from compiler import compile_report
from config import load_report_config
import database as db
import export_actions
import pdf_generator

# Configure logging
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger(__name__)

app = Flask(__name__)
CORS(app)  # Enable CORS for frontend

EXPORT_FORMATS = ('json', 'csv', 'xlsx')


def _compile(document_id):
    """
    Compile a report for a route.

    Returns:
        Tuple of (document, error_response); exactly one is None
    """
    try:
        return compile_report(document_id, store=db, config=load_report_config()), None
    except AuditNotFoundError as e:
        return None, (jsonify({"error": "Audit not found", "message": str(e)}), 404)
    except ReportCompilationError as e:
        logger.error(f"Error compiling report {document_id}: {e}", exc_info=True)
        return None, (jsonify({
            "error": "Failed to compile report",
            "message": str(e)
        }), 500)
    except Exception as e:
        logger.error(f"Unexpected error compiling report {document_id}: {e}", exc_info=True)
        return None, (jsonify({
            "error": "Failed to compile report",
            "message": str(e)
        }), 500)


@app.route('/api/health', methods=['GET'])
def health_check():
    """Health check endpoint."""
    return jsonify({
        "status": "ok",
        "timestamp": datetime.utcnow().isoformat()
    })


@app.route('/api/reports/<document_id>', methods=['GET'])
def get_report(document_id):
    """Get the compiled report model of an audit."""
    document, error = _compile(document_id)
    if error:
        return error

    return jsonify(document.to_dict()), 200


@app.route('/api/reports/<document_id>/pdf', methods=['GET'])
def get_report_pdf(document_id):
    """Generate and download the PDF report of an audit."""
    document, error = _compile(document_id)
    if error:
        return error

    try:
        pdf_bytes = pdf_generator.generate_report_pdf(document)

        timestamp = datetime.utcnow().strftime("%Y%m%d")
        filename = f"{document_id}_audit_report_{timestamp}.pdf"

        return Response(
            pdf_bytes,
            mimetype='application/pdf',
            headers={
                'Content-Disposition': f'attachment; filename="{filename}"'
            }
        )
    except Exception as e:
        logger.error(f"Error generating PDF for report {document_id}: {e}", exc_info=True)
        return jsonify({
            "error": "Failed to generate PDF",
            "message": str(e)
        }), 500


@app.route('/api/reports/<document_id>/actions/export', methods=['GET'])
def export_report_actions(document_id):
    """Export the corrective action plan of an audit."""
    format_type = request.args.get('format', 'csv')
    if format_type not in EXPORT_FORMATS:
        return jsonify({
            "error": f"Export format '{format_type}' not supported. Use 'json', 'csv', or 'xlsx'."
        }), 400

    document, error = _compile(document_id)
    if error:
        return error

    if format_type == 'json':
        return jsonify(document.corrective_block.to_dict()), 200

    elif format_type == 'csv':
        csv_data = export_actions.export_actions_to_csv(document)
        return Response(
            csv_data,
            mimetype='text/csv',
            headers={'Content-Disposition': f'attachment; filename={document_id}_actions.csv'}
        )

    else:
        xlsx_data = export_actions.export_actions_to_xlsx(document)
        return Response(
            xlsx_data,
            mimetype='application/vnd.openxmlformats-officedocument.spreadsheetml.sheet',
            headers={'Content-Disposition': f'attachment; filename={document_id}_actions.xlsx'}
        )


if __name__ == '__main__':
    port = int(os.getenv("BACKEND_PORT", "5000"))
    logger.info(f"Backend API running on http://localhost:{port}")
    app.run(debug=True, host='0.0.0.0', port=port)
