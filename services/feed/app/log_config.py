import logging

_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"


def configure_logging(level: str = "INFO") -> None:
    """Root logging for a process entry point (API, event consumer, trending worker)."""
    logging.basicConfig(level=level.upper(), format=_FORMAT)
    # aiokafka logs every rebalance and heartbeat at INFO
    logging.getLogger("aiokafka").setLevel(logging.WARNING)
