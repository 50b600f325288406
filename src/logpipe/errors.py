"""
logpipe Error Taxonomy

Errors are additive: they are reported and never retried.
1. Per-line decode errors - carried as ParseOutcome values, stream continues
2. Filter compile errors - fatal at setup
3. Render errors - reported per record, run marked failed
4. Source errors - fatal before processing begins
"""


class LogpipeError(Exception):
    """Base error for all logpipe failures"""
    pass


class KeyValueSyntaxError(LogpipeError):
    """A key=value line could not be tokenized"""
    pass


class FilterCompileError(LogpipeError):
    """A filter expression could not be compiled"""

    def __init__(self, message: str, expression: str = ""):
        self.expression = expression
        super().__init__(message)


class RenderError(LogpipeError):
    """Writing a rendered record to the output sink failed"""
    pass


class SourceError(LogpipeError):
    """An input source could not be opened or read"""

    def __init__(self, message: str, source: str = ""):
        self.source = source
        full_msg = message
        if source:
            full_msg = f"{source}: {message}"
        super().__init__(full_msg)
