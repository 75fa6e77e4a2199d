import json
import logging
import queue
from logging.handlers import QueueHandler, QueueListener
from typing import Optional
import requests

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

class HttpShippingHandler(logging.Handler):
    """Posts each record as a JSON document to a log index endpoint (e.g. Elasticsearch _doc)."""

    def __init__(self, url: str, timeout: float = 5.0):
        super().__init__()
        self.url = url
        self.timeout = timeout
        self.session = requests.Session()

    def format_document(self, record: logging.LogRecord) -> dict:
        document = {
            'level': record.levelname,
            'message': record.getMessage(),
            'logger': record.name
        }
        if record.exc_info and record.exc_info[1] is not None:
            document['error'] = str(record.exc_info[1])
        return document

    def emit(self, record: logging.LogRecord) -> None:
        try:
            response = self.session.post(
                self.url,
                data=json.dumps(self.format_document(record)),
                headers={'Content-Type': 'application/json'},
                timeout=self.timeout
            )
            response.raise_for_status()
        except Exception:
            self.handleError(record)

    def close(self) -> None:
        self.session.close()
        super().close()

def configure_logging(level: str = "INFO", shipping_url: Optional[str] = None) -> Optional[QueueListener]:
    """
    Configure root logging. When shipping_url is given, records are also
    forwarded to it from a background thread so request handling never waits
    on the log endpoint. Returns the listener to stop at shutdown.
    """
    logging.basicConfig(level=level.upper(), format=LOG_FORMAT)
    if not shipping_url:
        return None

    records: queue.Queue = queue.Queue(-1)
    shipper = HttpShippingHandler(shipping_url)
    listener = QueueListener(records, shipper, respect_handler_level=True)
    logging.getLogger().addHandler(QueueHandler(records))
    # requests logs through urllib3; don't ship the shipper's own traffic
    logging.getLogger("urllib3").propagate = False
    listener.start()
    return listener
