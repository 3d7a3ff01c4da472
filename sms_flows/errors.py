# sms_flows/errors.py


class FlowEngineError(Exception):
    """Base class for flow engine errors."""


class ConfigurationError(FlowEngineError):
    """Missing credentials or settings; aborts the whole invocation."""


class DeliveryError(FlowEngineError):
    """The delivery transport rejected or could not accept a message."""
