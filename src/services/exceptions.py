"""Service layer exception classes for Cure Batch Tracker.

This module defines all custom exceptions used by the service layer to provide
consistent error handling across the application. Every exception carries the
values needed to explain the failure as attributes, not just in its message.

Exception Hierarchy:
    ServiceError (base)
    ├── ValidationError
    ├── MaterialNotFound
    ├── LotNotFound
    ├── RecipeNotFound
    ├── BatchNotFound
    ├── CheckpointNotFound
    ├── ComplianceTaskNotFound
    ├── EquipmentNotFound
    ├── InsufficientLotStock
    ├── AllocationBusy
    ├── BatchNotCompletable
    ├── InvalidStatusTransition
    ├── LedgerImmutableError
    └── LedgerInconsistency

This module must not import anything from the application; models import it.
"""


class ServiceError(Exception):
    """Base exception for all service layer errors.

    All service-specific exceptions should inherit from this class.
    """

    pass


class ValidationError(ServiceError):
    """Raised when input validation fails. No side effects have occurred.

    Args:
        errors: List of human-readable reasons

    Example:
        >>> raise ValidationError(["input_mass must be positive"])
        ValidationError: Validation failed: input_mass must be positive
    """

    def __init__(self, errors: list):
        self.errors = errors
        super().__init__(f"Validation failed: {'; '.join(errors)}")


class MaterialNotFound(ServiceError):
    """Raised when a material cannot be found by ID."""

    def __init__(self, material_id: int):
        self.material_id = material_id
        super().__init__(f"Material with ID {material_id} not found")


class LotNotFound(ServiceError):
    """Raised when a lot cannot be found by ID."""

    def __init__(self, lot_id: int):
        self.lot_id = lot_id
        super().__init__(f"Lot with ID {lot_id} not found")


class RecipeNotFound(ServiceError):
    """Raised when a recipe cannot be found by ID."""

    def __init__(self, recipe_id: int):
        self.recipe_id = recipe_id
        super().__init__(f"Recipe with ID {recipe_id} not found")


class BatchNotFound(ServiceError):
    """Raised when a batch cannot be found by ID."""

    def __init__(self, batch_id: int):
        self.batch_id = batch_id
        super().__init__(f"Batch with ID {batch_id} not found")


class CheckpointNotFound(ServiceError):
    """Raised when a QA checkpoint cannot be found by ID."""

    def __init__(self, checkpoint_id: int):
        self.checkpoint_id = checkpoint_id
        super().__init__(f"QA checkpoint with ID {checkpoint_id} not found")


class ComplianceTaskNotFound(ServiceError):
    """Raised when a compliance task cannot be found by ID."""

    def __init__(self, task_id: int):
        self.task_id = task_id
        super().__init__(f"Compliance task with ID {task_id} not found")


class EquipmentNotFound(ServiceError):
    """Raised when a piece of equipment cannot be found by ID."""

    def __init__(self, equipment_id: int):
        self.equipment_id = equipment_id
        super().__init__(f"Equipment with ID {equipment_id} not found")


class InsufficientLotStock(ServiceError):
    """Raised when available lots cannot cover an allocation.

    Nothing is consumed when this is raised.

    Args:
        material_id: Material being allocated
        required: Quantity requested
        available: Total balance across eligible lots

    Example:
        >>> raise InsufficientLotStock(3, 500.0, 320.0)
        InsufficientLotStock: Insufficient stock for material 3: required 500.0, available 320.0 (short by 180.0)
    """

    def __init__(self, material_id: int, required: float, available: float):
        self.material_id = material_id
        self.required = required
        self.available = available
        self.shortfall = required - available
        super().__init__(
            f"Insufficient stock for material {material_id}: "
            f"required {required}, available {available} (short by {self.shortfall})"
        )


class AllocationBusy(ServiceError):
    """Raised when another open session holds a material's allocation lock.

    The other session keeps the lock until its transaction commits or rolls
    back. Retry once it has finished.

    Args:
        material_id: Material being allocated
        timeout: Seconds waited before giving up
    """

    def __init__(self, material_id: int, timeout: float):
        self.material_id = material_id
        self.timeout = timeout
        super().__init__(
            f"Material {material_id} is being allocated by another session "
            f"(waited {timeout}s)"
        )


class BatchNotCompletable(ServiceError):
    """Raised when a batch is completed before all required QA has passed.

    Args:
        batch_id: Batch being completed
        current_stage: First stage with outstanding required checkpoints
    """

    def __init__(self, batch_id: int, current_stage: str):
        self.batch_id = batch_id
        self.current_stage = current_stage
        super().__init__(
            f"Batch {batch_id} cannot be completed: required QA checkpoints "
            f"outstanding from stage '{current_stage}'"
        )


class InvalidStatusTransition(ServiceError):
    """Raised when a lifecycle transition is not allowed.

    Args:
        entity: Entity description (e.g., "batch 12", "lot 4")
        current: Current status
        target: Requested status or action
    """

    def __init__(self, entity: str, current: str, target: str):
        self.entity = entity
        self.current = current
        self.target = target
        super().__init__(f"Cannot move {entity} from '{current}' to '{target}'")


class LedgerImmutableError(ServiceError):
    """Raised when code tries to update or delete a lot ledger event."""

    def __init__(self, event_id: int, action: str):
        self.event_id = event_id
        self.action = action
        super().__init__(
            f"Lot event {event_id} is append-only; {action} is not permitted. "
            f"Record a correcting event instead."
        )


class LedgerInconsistency(ServiceError):
    """Raised when a lot's cached balance disagrees with its ledger.

    Args:
        lot_id: Lot with the mismatch
        cached: Value of Lot.current_balance
        ledger: Signed sum of the lot's events
    """

    def __init__(self, lot_id: int, cached: float, ledger: float):
        self.lot_id = lot_id
        self.cached = cached
        self.ledger = ledger
        super().__init__(
            f"Lot {lot_id} balance {cached} does not match ledger sum {ledger}"
        )
