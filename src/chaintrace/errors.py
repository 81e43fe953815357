class TraceEngineError(Exception):
    pass


class DataSourceError(TraceEngineError):
    pass


class RateLimitError(DataSourceError):
    pass


class InvalidTraceRequest(TraceEngineError, ValueError):
    pass


class UnsupportedChainError(InvalidTraceRequest):
    pass


class JobNotFoundError(TraceEngineError, KeyError):
    pass
