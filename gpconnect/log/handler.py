import logging

from gpconnect.log.sink import LogSink
from gpconnect.local.errors import LogIOError


class LogSinkHandler(logging.Handler):
    """
    A logging handler that writes formatted records into the user-facing
    event log, so supervisor decisions show up next to tunnel client output.
    """
    def __init__(self, sink: LogSink, level: int = logging.INFO):
        """
        Initializes the sink handler.

        :param sink: The LogSink receiving one line per record.
        :param level: Minimum level written to the sink.
        """
        super().__init__(level)
        self.sink = sink
        self.setFormatter(logging.Formatter('%(levelname)s [%(name)s] %(message)s'))

    def emit(self, record: logging.LogRecord) -> None:
        try:
            self.sink.append(self.format(record))
        except LogIOError:
            self.handleError(record)
