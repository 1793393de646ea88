# backend/core/errors.py
"""Domain exceptions raised below the route layer and mapped to HTTP codes by the routes."""


class ServiceError(Exception):
    """Base class for domain errors"""


class NotFoundError(ServiceError):
    def __init__(self, entity: str, entity_id: str):
        self.entity = entity
        self.entity_id = entity_id
        super().__init__(f"{entity} not found: {entity_id}")


class PersistenceUnavailableError(ServiceError):
    """Remote backend unreachable and the local store holds no state for the request"""

    def __init__(self, collection: str, reason: str = ""):
        self.collection = collection
        message = f"Persistence unavailable for '{collection}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class InvalidTransitionError(ServiceError):
    def __init__(self, entry_id: str, current: str, target: str):
        self.entry_id = entry_id
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entry_id} from {current} to {target}")


class RuleValidationError(ServiceError):
    def __init__(self, problems):
        self.problems = list(problems)
        super().__init__("; ".join(self.problems) or "Invalid rules")
