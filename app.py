import logging
import os
import shutil

from flask import Flask, request, url_for, send_from_directory, jsonify
from werkzeug.utils import secure_filename

from retinex.config import configure_logging, load_config, validate_config
from retinex.errors import RetinexError
from retinex.image_io import read_channels, write_channels
from retinex.pipeline import PhaseTimer, balance_channels, retinex_channels

logger = logging.getLogger(__name__)

app = Flask(__name__)

config = load_config()
configure_logging(config["log_level"])

UPLOAD_FOLDER = config["upload_folder"]
PROCESSED_FOLDER = config["processed_folder"]
os.makedirs(UPLOAD_FOLDER, exist_ok=True)
os.makedirs(PROCESSED_FOLDER, exist_ok=True)


class InvalidForm(Exception):
    pass


def clear_folder(folder):
    for f in os.listdir(folder):
        full_path = os.path.join(folder, f)
        if os.path.isfile(full_path): os.remove(full_path)
        elif os.path.isdir(full_path): shutil.rmtree(full_path)


def request_settings(form):
    """Defaults from the config file, overridden by the form fields."""
    settings = dict(config)
    try:
        if form.get('threshold'):
            settings['threshold'] = float(form['threshold'])
        if form.get('saturation'):
            settings['saturation'] = float(form['saturation'])
    except ValueError as e:
        raise InvalidForm(f"invalid numeric field: {e}")
    if form.get('mode'):
        settings['mode'] = form['mode']
    return validate_config(settings)


@app.errorhandler(RetinexError)
def handle_retinex_error(e):
    logger.error(f"Retinex failed: {e}")
    return jsonify({"error": str(e), "kind": type(e).__name__}), 400


@app.errorhandler(InvalidForm)
def handle_invalid_form(e):
    return jsonify({"error": str(e), "kind": "InvalidArgument"}), 400


@app.route('/health')
def health():
    return jsonify({"status": "ok"}), 200


@app.route('/retinex', methods=['POST'])
def retinex():
    if 'file' not in request.files or request.files['file'].filename == '':
        logger.warning("No file selected for upload!")
        return jsonify({"error": "No file selected for upload."}), 400

    settings = request_settings(request.form)

    clear_folder(PROCESSED_FOLDER)
    clear_folder(UPLOAD_FOLDER)

    file = request.files['file']
    filename = secure_filename(file.filename) or "upload.png"
    filepath = os.path.join(UPLOAD_FOLDER, filename)
    file.save(filepath)

    logger.info(f"Retinex options: threshold={settings['threshold']}, mode={settings['mode']}, "
                f"saturation={settings['saturation']}")

    channels, width, height = read_channels(filepath)

    stem = os.path.splitext(filename)[0]
    normalized_filename = f"normalized_{stem}.png"
    retinex_filename = f"retinex_{stem}.png"

    norm = balance_channels(channels, saturation=settings['saturation'],
                            target_min=settings['target_min'], target_max=settings['target_max'])
    write_channels(os.path.join(PROCESSED_FOLDER, normalized_filename), norm)

    timer = PhaseTimer()
    rtnx = retinex_channels(channels, settings['threshold'], mode=settings['mode'],
                            saturation=settings['saturation'],
                            target_min=settings['target_min'], target_max=settings['target_max'],
                            workers=int(settings['workers']), observer=timer)
    write_channels(os.path.join(PROCESSED_FOLDER, retinex_filename), rtnx)

    return jsonify({
        "normalized_url": url_for('processed_file', filename=normalized_filename),
        "retinex_url": url_for('processed_file', filename=retinex_filename),
        "width": width,
        "height": height,
        "channels": len(channels),
        "timings": {name: round(seconds * 1000, 3) for name, seconds in timer.totals().items()},
    }), 200


@app.route('/processed/<filename>')
def processed_file(filename):
    return send_from_directory(os.path.abspath(PROCESSED_FOLDER), filename)


@app.route('/uploads/<filename>')
def uploaded_file(filename):
    return send_from_directory(os.path.abspath(UPLOAD_FOLDER), filename)


if __name__ == '__main__':
    app.run(debug=True)
