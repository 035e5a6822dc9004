from volbot.events.event_system import (
    BalanceChangeEvent,
    BotStatusEvent,
    Event,
    EventSystem,
    TransactionConfirmedEvent,
    TransactionFailedEvent,
    TransactionRetryEvent,
    TransactionSentEvent,
)
