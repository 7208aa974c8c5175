"""Exception hierarchy shared by keygraph modules."""


class KeygraphError(Exception):
    """Base class for errors raised by keygraph components."""
