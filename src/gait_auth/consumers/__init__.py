"""Decision consumers — downstream delivery of authentication outcomes."""

from gait_auth.consumers.handlers import (
    DecisionConsumer,
    DecisionDispatcher,
    create_dispatcher,
)

__all__ = ["DecisionConsumer", "DecisionDispatcher", "create_dispatcher"]
