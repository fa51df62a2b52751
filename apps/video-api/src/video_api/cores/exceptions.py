class WebhookError(Exception):
    """Base class for failures while handling a provider webhook"""
    status_code = 500


class MalformedEventError(WebhookError):
    status_code = 400


class InvalidSignatureError(WebhookError):
    status_code = 400


class CorrelationError(WebhookError):
    """No content record could be matched to the event"""
    status_code = 400


class PersistenceError(WebhookError):
    """The record store failed after correlation succeeded; the provider will redeliver"""
    status_code = 500
