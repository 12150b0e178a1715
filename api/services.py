import logging

from botocore.exceptions import BotoCoreError, ClientError

from .gateway import ConversionGateway
from .ledger import JobLedger
from .s3 import ObjectStore

logger = logging.getLogger(__name__)


class ConversionServices:
    """
    The collaborators a request handler or worker needs, built once per
    process and handed in explicitly. Tests pass their own instances.
    """

    def __init__(self, gateway, ledger, store) -> None:
        self.gateway = gateway
        self.ledger = ledger
        self.store = store
        self._initialized = False

    @classmethod
    def from_settings(cls) -> "ConversionServices":
        from django.conf import settings

        return cls(
            gateway=ConversionGateway.from_settings(),
            ledger=JobLedger.from_url(settings.REDIS_URL, ttl=settings.JOB_TTL_SECONDS),
            store=ObjectStore.from_settings(),
        )

    def init(self) -> "ConversionServices":
        """Make sure the bucket exists. An unreachable store is logged and retried on the next call."""
        if not self._initialized:
            try:
                self.store.ensure_bucket()
            except (BotoCoreError, ClientError) as e:
                logger.error("Object store not ready, will retry: %s", e)
                return self
            self._initialized = True
            logger.info("Conversion services initialized")
        return self

    def close(self) -> None:
        for name in ("gateway", "ledger"):
            try:
                getattr(self, name).close()
            except Exception as e:
                logger.error("Error closing %s: %s", name, e)
        self._initialized = False
        logger.info("Conversion services closed")


_process_services: ConversionServices | None = None


def get_services() -> ConversionServices:
    """Services for this process. Bucket setup is retried on each call until it succeeds."""
    global _process_services
    if _process_services is None:
        _process_services = ConversionServices.from_settings()
    return _process_services.init()


def close_services() -> None:
    global _process_services
    if _process_services is not None:
        _process_services.close()
        _process_services = None
