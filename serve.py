from waitress import serve

from app import app
from config import Config
from realtime import PgChangeListener


if __name__ == "__main__":
    cfg = Config()
    listener = PgChangeListener(cfg.get_psycopg2_kwargs(), cfg.REALTIME_CHANNEL)
    listener.start()
    try:
        serve(app, host=cfg.HOST, port=cfg.PORT)
    finally:
        listener.stop()
