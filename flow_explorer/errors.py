"""Exception hierarchy shared by the driver, oracle and explorer."""


class FlowExplorerError(Exception):
    """Base class for every error raised by this package."""


class DriverError(FlowExplorerError):
    """Something went wrong talking to the browser session."""


class TransientDriverError(DriverError):
    """A single command failed (element missing, timeout, out-of-scope URL).

    The explorer abandons the current branch and moves on to the next candidate.
    """


class FatalDriverError(DriverError):
    """The browser session itself is gone; exploration has to halt."""


class OracleError(FlowExplorerError):
    """The language-model oracle could not produce a usable answer."""


class OracleResponseError(OracleError):
    """The oracle answered, but the payload did not match the expected schema."""
