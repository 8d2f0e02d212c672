import logging

from flask import Flask, jsonify, request
from werkzeug.utils import secure_filename

from knx_sync import __version__
from knx_sync.bridge import KnxBridge

logger = logging.getLogger(__name__)


def create_app(bridge: KnxBridge) -> Flask:
    """Admin backend for one bridge instance.

    Exposes the ``import_ets`` command, upload and listing of project files,
    the connection status and the current runtime mapping. Handlers run on
    Flask's request threads and take ``bridge.lock`` around shared state.
    """
    app = Flask(__name__)
    app.config['BRIDGE'] = bridge

    @app.route('/api/upload', methods=['POST'])
    def upload():
        if 'file' not in request.files:
            return jsonify({'error': 'no file part'}), 400
        f = request.files['file']
        if f.filename == '':
            return jsonify({'error': 'no selected file'}), 400
        fn = secure_filename(f.filename)
        if not fn:
            return jsonify({'error': 'invalid file name'}), 400
        data = f.read()
        password = request.form.get('password')
        with bridge.lock:
            bridge.file_store.write_file(fn, data)
            bridge.config['ets_project_file'] = fn
            if password:
                bridge.config['ets_password'] = password
        logger.info(f"ETS project uploaded: {fn}")
        return jsonify({'file': fn}), 201

    @app.route('/api/import', methods=['POST'])
    def import_ets():
        result = bridge.on_message('import_ets')
        if not result.get('ok'):
            logger.error(f"ETS import failed: {result.get('error')}")
            return jsonify(result), 500
        return jsonify(result)

    @app.route('/api/status')
    def status():
        return jsonify(bridge.status())

    @app.route('/api/files', methods=['GET'])
    def list_files():
        with bridge.lock:
            return jsonify({
                'files': bridge.file_store.list_files(),
                'selected': bridge.config.get('ets_project_file') or None,
            })

    @app.route('/api/mapping', methods=['GET'])
    def mapping():
        ga = request.args.get('ga')
        with bridge.lock:
            selected = bridge.mapping.get_by_ga(ga) if ga else bridge.mapping.records()
            records = [
                {
                    'id': r.id,
                    'ga': r.ga,
                    'dpt': r.dpt,
                    'flags': r.flags.to_native(),
                    'bound': bool(bridge.engine and r.id in bridge.engine.bindings),
                }
                for r in selected
            ]
        return jsonify(records)

    @app.route('/api/version', methods=['GET'])
    def get_version():
        return jsonify({'version': __version__})

    return app
