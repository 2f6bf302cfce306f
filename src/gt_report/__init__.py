"""GT-Report: processing of ride-dispatch order logs for SPB and Moscow."""

__version__ = "0.3.0"
