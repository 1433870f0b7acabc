"""
Flask Web Application for the PathRAG Router Diagnosis System

JSON API in front of DiagnosticDialogueManager. Sessions live in the
configured session store, never in Flask globals.
"""

from flask import Flask, request, jsonify
import logging

from pathrag.commands import (
    EndSession,
    EscalateSession,
    GetContext,
    GetState,
    ProcessUtterance,
    RecordAction,
    StartSession,
)
from pathrag.config import AppConfig
from pathrag.core.diagnostic_graph import DiagnosticGraph
from pathrag.core.dialogue_manager import DiagnosticDialogueManager
from pathrag.core.path_engine import PathTraversalEngine
from pathrag.persistence import create_session_store
from pathrag.results import IllegalCommand
from pathrag.utils.asset_catalog import AssetCatalog
from pathrag.utils.vendor_detection import VendorDetector

logger = logging.getLogger(__name__)


def configure_logging(config: AppConfig):
    logging.basicConfig(
        level=config.logging_level,
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s'
    )


def build_dialogue_manager(config: AppConfig) -> DiagnosticDialogueManager:
    """Load graph, catalogs and store once (stateless modules, cached in DM)"""
    graph = DiagnosticGraph.from_file(config.graph_path)
    engine = PathTraversalEngine(
        graph,
        asset_catalog=AssetCatalog(config.assets_path),
        vendor_detector=VendorDetector(config.vendors_path),
    )
    return DiagnosticDialogueManager(engine, create_session_store(config))


def _error(message: str, status: int):
    return jsonify({'success': False, 'error': message}), status


def _respond(result, status: int = 200):
    if isinstance(result, IllegalCommand):
        if result.not_found:
            return _error(result.reason, 404)
        return _error(result.reason, 409)
    payload = {'success': True}
    payload.update(result.to_dict())
    return jsonify(payload), status


def _required(data: dict, *names: str):
    """Return the first missing or blank field name, or None"""
    for name in names:
        value = data.get(name)
        if not isinstance(value, str) or not value.strip():
            return name
    return None


def _build_command(action: str, data: dict):
    """
    Translate a request body into a command.

    Returns:
        (command, None) or (None, error message)
    """
    if action == 'create':
        vendor_hint = data.get('vendorHint')
        if vendor_hint is not None and not isinstance(vendor_hint, str):
            return None, "Invalid field: vendorHint must be a string"
        return StartSession(vendor_hint=vendor_hint), None

    missing = _required(data, 'sessionId')
    if missing:
        return None, f"Missing required field: {missing}"
    session_id = data['sessionId']

    if action == 'process':
        utterance = data.get('utterance')
        if not isinstance(utterance, str):
            return None, "Missing required field: utterance"
        return ProcessUtterance(session_id, utterance), None
    if action == 'getState':
        return GetState(session_id), None
    if action == 'getContext':
        return GetContext(session_id), None
    if action == 'recordAction':
        missing = _required(data, 'actionType', 'result')
        if missing:
            return None, f"Missing required field: {missing}"
        return RecordAction(session_id, data['actionType'], data['result'], data.get('notes')), None
    if action == 'escalate':
        missing = _required(data, 'reason')
        if missing:
            return None, f"Missing required field: {missing}"
        return EscalateSession(session_id, data['reason']), None
    if action == 'end':
        return EndSession(session_id), None

    return None, f"Unknown action: {action}"


def create_app(config: AppConfig = None) -> Flask:
    """Application factory"""
    config = config or AppConfig.from_env()

    app = Flask(__name__)
    app.config['PATHRAG'] = config
    app.extensions['pathrag_dm'] = build_dialogue_manager(config)

    @app.route('/api/pathrag', methods=['POST'])
    def pathrag():
        """Single command endpoint, dispatched on 'action'"""
        data = request.get_json(silent=True)
        if not isinstance(data, dict):
            return _error('Request body must be a JSON object', 400)

        action = data.get('action')
        if not action:
            return _error('Missing required field: action', 400)

        command, problem = _build_command(action, data)
        if problem:
            return _error(problem, 400)

        try:
            result = app.extensions['pathrag_dm'].handle(command)
        except Exception as e:
            logger.error(f"Error handling {action}: {e}", exc_info=True)
            return _error(str(e), 500)

        return _respond(result, 201 if action == 'create' else 200)

    @app.route('/api/assets/<node_id>')
    def node_assets(node_id):
        """Assets for a node, optionally filtered by ?vendor="""
        engine = app.extensions['pathrag_dm'].engine
        if not engine.graph.has_node(node_id):
            return _error(f"Unknown node: {node_id}", 404)
        vendor_id = request.args.get('vendor')
        assets = engine.asset_catalog.assets_for(node_id, vendor_id)
        return jsonify({
            'success': True,
            'node_id': node_id,
            'assets': [asset.to_dict() for asset in assets],
        })

    @app.route('/api/health')
    def health():
        engine = app.extensions['pathrag_dm'].engine
        return jsonify({
            'success': True,
            'status': 'ok',
            'nodes': len(engine.graph),
            'session_backend': config.session_backend,
        })

    logger.info("PathRAG web app created")
    return app


if __name__ == '__main__':
    config = AppConfig.from_env()
    configure_logging(config)
    app = create_app(config)

    print("\n" + "="*60)
    print("PATHRAG ROUTER DIAGNOSIS - WEB API")
    print("="*60)
    print(f"\nServer starting on http://{config.host}:{config.port}")
    print("\nPress Ctrl+C to stop the server")
    print("="*60 + "\n")

    app.run(host=config.host, port=config.port)
