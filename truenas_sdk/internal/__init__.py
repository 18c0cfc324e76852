from .messaging import CorrelationIdGenerator, PendingRequest, RequestMultiplexer

__all__ = ["CorrelationIdGenerator", "PendingRequest", "RequestMultiplexer"]
