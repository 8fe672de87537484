import os

class Config:
    SECRET_KEY = os.environ.get('SECRET_KEY') or 'you-will-never-guess'
    # Comma separated list of origins allowed to reach the chat relay
    CORS_ORIGINS = [
        o.strip() for o in (os.environ.get('CORS_ORIGINS') or 'http://localhost:5173,http://127.0.0.1:5173').split(',')
        if o.strip()
    ]
    # Feeding session (seconds unless noted)
    FEED_TOTAL_DROPS = int(os.environ.get('FEED_TOTAL_DROPS', '50'))
    FEED_JOIN_WINDOW_SEC = int(os.environ.get('FEED_JOIN_WINDOW_SEC', '10'))
    FEED_RESULTS_WINDOW_SEC = int(os.environ.get('FEED_RESULTS_WINDOW_SEC', '6'))
    FEED_TICK_MS = int(os.environ.get('FEED_TICK_MS', '250'))
    FEED_COOP_BONUS_PER_PLAYER = int(os.environ.get('FEED_COOP_BONUS_PER_PLAYER', '5'))
    FEED_COOP_BONUS_CAP = int(os.environ.get('FEED_COOP_BONUS_CAP', '15'))
    # Unresolved food pieces count as a miss after this long (ms)
    FEED_DROP_TIMEOUT_MS = int(os.environ.get('FEED_DROP_TIMEOUT_MS', '2200'))
    # Chat relay
    CHAT_HISTORY_SIZE = int(os.environ.get('CHAT_HISTORY_SIZE', '50'))
    CHAT_MAX_LENGTH = int(os.environ.get('CHAT_MAX_LENGTH', '200'))
