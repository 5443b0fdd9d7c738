"""Runtime settings for feedkeeper.

Values are read once at import time from the environment (a ``.env`` file in
the working directory is honoured).  The defaults reproduce the fixed
behaviour of the service: listen on ``0.0.0.0:8080``, refresh every ten
minutes and give up on a feed request after thirty seconds.
"""

import os

from dotenv import load_dotenv

load_dotenv()

HOST = os.getenv("FEEDKEEPER_HOST", "0.0.0.0")
PORT = int(os.getenv("FEEDKEEPER_PORT", "8080"))
REFRESH_INTERVAL = float(os.getenv("FEEDKEEPER_REFRESH_INTERVAL", "600"))
FETCH_TIMEOUT = float(os.getenv("FEEDKEEPER_FETCH_TIMEOUT", "30"))
LOG_LEVEL = os.getenv("FEEDKEEPER_LOG_LEVEL", "INFO").upper()

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
USER_AGENT = "feedkeeper/0.1"
