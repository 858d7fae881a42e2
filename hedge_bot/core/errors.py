"""Error taxonomy. Nothing here is fatal to the process; see HedgeBot.tick."""


class HedgeBotError(Exception):
    pass


class ConfigError(HedgeBotError):
    """Invalid configuration detected at startup."""


class ExchangeError(HedgeBotError):
    """Any failure reported by the exchange gateway."""


class TransientExchangeError(ExchangeError):
    """Network, timeout or rate-limit failure. The tick is aborted and retried next time."""


class OrderRejectedError(ExchangeError):
    """Exchange refused the order (margin mode, precision, insufficient margin...)."""


class InsufficientDataError(HedgeBotError):
    """Fewer bars than an indicator window needs."""
