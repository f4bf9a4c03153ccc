"""
Flask JSON API for the Intake Assessment Engine

Thin presentation-layer adapter: every route forwards to one AssessmentEngine
call. The capability mode is supplied per request ('mode' in the JSON body or
query string, default 'edit') and is never persisted.
"""

from dataclasses import asdict
import logging
import os

from flask import Flask, jsonify, request

from intake_engine.assessment import Assessment
from intake_engine.config import load_default_config
from intake_engine.core.engine import AssessmentEngine
from intake_engine.core.mode_gate import Mode
from intake_engine.persistence import AssessmentPersistence
from intake_engine.results import MutationDenied, ValidationFailure

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
)
logger = logging.getLogger(__name__)

# Initialize Flask app
app = Flask(__name__)
app.config['ASSESSMENT_DIR'] = os.environ.get('ASSESSMENT_DIR', 'outputs/assessments')

# Global state for the assessment being worked on
current_assessment = {
    'engine': None,
    'is_active': False,
}

# Template is loaded once at first use
engine_config = None


def get_config():
    """Load the assessment template (once)"""
    global engine_config
    
    if engine_config is None:
        engine_config = load_default_config()
    return engine_config


def get_persistence():
    return AssessmentPersistence(app.config['ASSESSMENT_DIR'])


def open_assessment(assessment=None):
    """Create the engine for a new or stored assessment"""
    global current_assessment
    
    engine = AssessmentEngine(get_config(), assessment=assessment)
    current_assessment = {
        'engine': engine,
        'is_active': True,
    }
    logger.info(f"Assessment opened: {engine.assessment_id}")
    return engine


def _payload():
    return request.get_json(silent=True) or {}


def _active_engine():
    """
    Engine for this request with the requested mode applied.
    
    Raises:
        ValueError: If the requested mode is not valid
    """
    if not current_assessment['is_active']:
        return None
    
    engine = current_assessment['engine']
    mode = _payload().get('mode') or request.args.get('mode', Mode.EDIT.value)
    engine.set_mode(mode)
    return engine


def _no_assessment():
    return jsonify({
        'success': False,
        'error': 'No active assessment'
    }), 400


def _result_response(result):
    """Serialize an engine result; rejections get a 4xx status."""
    body = {'success': result.ok, 'result': type(result).__name__}
    body.update(asdict(result))
    
    if result.ok:
        return jsonify(body)
    if isinstance(result, MutationDenied):
        return jsonify(body), 403
    if isinstance(result, ValidationFailure):
        return jsonify(body), 422
    return jsonify(body), 409


def _errors_json(errors):
    return [asdict(error) for error in errors]


def _bad_request(e):
    logger.warning(f"Rejected request: {e}")
    return jsonify({
        'success': False,
        'error': str(e)
    }), 400


def _server_error(action, e):
    logger.error(f"Error {action}: {e}")
    return jsonify({
        'success': False,
        'error': str(e)
    }), 500


# ========================
# Assessment lifecycle
# ========================

@app.route('/')
def index():
    """Service description"""
    config = get_config()
    return jsonify({
        'service': 'intake-assessment-engine',
        'template_version': config.version,
        'sections': [{'key': s.key, 'label': s.label} for s in config.sections],
        'modes': [mode.value for mode in Mode],
    })


@app.route('/api/assessments', methods=['POST'])
def create_assessment():
    """Start a new draft assessment"""
    try:
        client_id = _payload().get('client_id', '')
        assessment = Assessment.new(client_id=client_id, template_version=get_config().version)
        engine = open_assessment(assessment)
        
        return jsonify({
            'success': True,
            'assessment_id': engine.assessment_id,
            'status': engine.status.value
        })
        
    except Exception as e:
        return _server_error("creating assessment", e)


@app.route('/api/assessments/<assessment_id>', methods=['GET'])
def load_assessment(assessment_id):
    """Resume the latest saved version of an assessment"""
    try:
        assessment = get_persistence().load_latest(assessment_id)
        if assessment is None:
            return jsonify({
                'success': False,
                'error': f'Assessment not found: {assessment_id}'
            }), 404
        
        engine = open_assessment(assessment)
        return jsonify({
            'success': True,
            'assessment_id': engine.assessment_id,
            'status': engine.status.value,
            'version': assessment.version
        })
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("loading assessment", e)


@app.route('/api/save', methods=['POST'])
def save_assessment():
    """Explicit save point: write the next version file"""
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        saved = get_persistence().save_version(engine.to_assessment())
        engine.record_save_point(saved)
        
        return jsonify({
            'success': True,
            'assessment_id': saved.id,
            'version': saved.version
        })
        
    except FileExistsError as e:
        logger.error(f"Save rejected: {e}")
        return jsonify({
            'success': False,
            'error': str(e)
        }), 409
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("saving assessment", e)


@app.route('/api/complete', methods=['POST'])
def complete_assessment():
    """Mark completed once every section validates"""
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        return _result_response(engine.mark_completed(_payload().get('completed_at')))
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("completing assessment", e)


# ========================
# Sections
# ========================

@app.route('/api/sections/<section_key>', methods=['GET'])
def get_section(section_key):
    """Section snapshot (any mode)"""
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        return jsonify({
            'success': True,
            'section': section_key,
            'data': engine.snapshot(section_key),
            'completion': engine.completion_percentage(section_key)
        })
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("reading section", e)


@app.route('/api/sections/<section_key>', methods=['POST'])
def update_section(section_key):
    """Atomic multi-field update"""
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        fields = _payload().get('fields') or {}
        return _result_response(engine.update_section(section_key, fields))
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("updating section", e)


@app.route('/api/sections/<section_key>/fields/<field>', methods=['POST'])
def update_field(section_key, field):
    """Single-field update"""
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        return _result_response(engine.update_field(section_key, field, _payload().get('value')))
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("updating field", e)


@app.route('/api/sections/<section_key>/validate', methods=['GET'])
def validate_section(section_key):
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        errors = engine.validate(section_key)
        return jsonify({
            'success': True,
            'valid': not errors,
            'errors': _errors_json(errors)
        })
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("validating section", e)


@app.route('/api/validate', methods=['GET'])
def validate_all():
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        results = engine.validate_all()
        return jsonify({
            'success': True,
            'valid': not results,
            'errors': {key: _errors_json(errors) for key, errors in results.items()},
            'overall_completion': engine.overall_completion()
        })
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("validating assessment", e)


@app.route('/api/scores', methods=['GET'])
def get_scores():
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        return jsonify({
            'success': True,
            'scores': [asdict(result) for result in engine.scores()]
        })
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("computing scores", e)


@app.route('/api/export', methods=['GET'])
def export_view():
    """View/print rendering payload"""
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        return jsonify({
            'success': True,
            'view': engine.export_view()
        })
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("exporting assessment", e)


# ========================
# Providers (sub-entities)
# ========================

@app.route('/api/providers/<section_key>', methods=['GET'])
def list_providers(section_key):
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        manager = engine.entities(section_key)
        categories = {}
        for key in manager.categories:
            categories[key] = {
                'state': manager.state(key),
                'editing_index': manager.editing_index(key),
                'entries': [record.to_dict() for record in manager.entries(key)]
            }
        
        return jsonify({
            'success': True,
            'categories': categories
        })
        
    except ValueError as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error("listing providers", e)


@app.route('/api/providers/<section_key>/<category>/<action>', methods=['POST'])
def provider_action(section_key, category, action):
    """
    Sub-entity transitions.
    
    Actions: add, edit, save, cancel, request_remove, confirm_remove, cancel_remove
    (edit and request_remove take 'index' in the body; save takes 'record').
    """
    try:
        engine = _active_engine()
        if engine is None:
            return _no_assessment()
        
        manager = engine.entities(section_key)
        payload = _payload()
        
        if action == 'add':
            result = manager.add(category)
        elif action == 'edit':
            result = manager.edit(category, int(payload.get('index', -1)))
        elif action == 'save':
            changes = {k: v for k, v in (payload.get('record') or {}).items() if k != 'id'}
            if changes and category in manager.categories and manager.state(category) == manager.STATE_EDITING:
                manager.update_buffer(category, **changes)
            result = manager.save(category)
        elif action == 'cancel':
            result = manager.cancel(category)
        elif action == 'request_remove':
            result = manager.request_remove(category, int(payload.get('index', -1)))
        elif action == 'confirm_remove':
            result = manager.confirm_remove(category)
        elif action == 'cancel_remove':
            result = manager.cancel_remove(category)
        else:
            return jsonify({
                'success': False,
                'error': f'Unknown provider action: {action}'
            }), 404
        
        return _result_response(result)
        
    except (ValueError, TypeError) as e:
        return _bad_request(e)
    except Exception as e:
        return _server_error(f"handling provider action '{action}'", e)


if __name__ == '__main__':
    os.makedirs(app.config['ASSESSMENT_DIR'], exist_ok=True)
    
    print("\n" + "="*60)
    print("INTAKE ASSESSMENT ENGINE - JSON API")
    print("="*60)
    print("\nServer starting on http://localhost:5000")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")
    
    app.run(debug=False, port=5000)
