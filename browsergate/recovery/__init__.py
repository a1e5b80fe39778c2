from browsergate.recovery.engine import RecoveryEngine
from browsergate.recovery.taxonomy import default_strategies

__all__ = ["RecoveryEngine", "default_strategies"]
