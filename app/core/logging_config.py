import logging
import json
from pathlib import Path

from app.core.config import config
from app.models import CreditTransaction, Payment
from app.models.settings import AdminLog

# logging credits (ledger entries)
TRANSACTION_FIELDS = {c.name for c in CreditTransaction.__table__.columns}
# payments
PAYMENT_FIELDS = {c.name for c in Payment.__table__.columns} - {"info"}
# admin logging
ADMIN_FIELDS = {c.name for c in AdminLog.__table__.columns}


class ModelFormatter(logging.Formatter):
    def __init__(self, fmt=None, fields=None):
        super().__init__(fmt)
        self.fields = fields or set()

    def format(self, record):
        base = super().format(record)
        extras = {k: v for k, v in record.__dict__.items() if k in self.fields}
        if extras:
            base += " " + json.dumps(extras, default=str, ensure_ascii=False)
        return base


def _add_file_logger(name: str, filename: str, formatter: logging.Formatter):
    handler = logging.FileHandler(Path(config.LOG_DIR) / filename)
    handler.setFormatter(formatter)
    logger = logging.getLogger(name)
    logger.setLevel(logging.INFO)
    logger.addHandler(handler)


# setup
def setup_logging():
    Path(config.LOG_DIR).mkdir(parents=True, exist_ok=True)

    fmt = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    formatter_tx = ModelFormatter(fmt, fields=TRANSACTION_FIELDS)
    formatter_payments = ModelFormatter(fmt, fields=PAYMENT_FIELDS)
    formatter_admin = ModelFormatter(fmt, fields=ADMIN_FIELDS)

    # CREDITS ledger
    _add_file_logger("[CREDITS]", "credits.log", formatter_tx)
    # PAYMENTS: checkout, complete, webhook
    _add_file_logger("[PAYMENTS]", "payments.log", formatter_payments)
    # TASKS: enhancement
    _add_file_logger("[TASKS]", "tasks.log", logging.Formatter(fmt))
    # ADMIN
    _add_file_logger("[ADMIN]", "admin.log", formatter_admin)

    logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
