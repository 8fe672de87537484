from flask import Blueprint, current_app, jsonify
from gobachi import chat_history
from gobachi.socketio_events import presence_count
from gobachi.services.feeding.session import FeedingConfig

main = Blueprint('main', __name__)


@main.route('/')
def index():
    return jsonify({'message': 'Welcome to the Gobachi chat relay!'})


@main.route('/api/chat')
def recent_chat():
    return jsonify({'chat': chat_history.recent(), 'presence': presence_count()})


@main.route('/api/feeding/config')
def feeding_config():
    # Peers read the same windows so their local countdowns agree
    cfg = current_app.config
    try:
        payload = FeedingConfig.from_mapping(cfg).to_dict()
    except ValueError as exc:
        return jsonify({'error': str(exc)}), 500
    payload['drop_timeout_ms'] = int(cfg.get('FEED_DROP_TIMEOUT_MS', 2200))
    return jsonify(payload)
