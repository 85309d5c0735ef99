"""Services package - Business logic layer for Cure Batch Tracker.

This package contains all service modules that provide business logic
and database operations for the application.

Architecture:
- Services: Stateless functions organized by domain (lots, batches, QA, compliance)
- Transactions: Managed via session_scope() context manager, or by the
  caller when a session is passed in
- Exceptions: Consistent error handling via ServiceError hierarchy
- Validation: Input validation before database operations

Service Modules:
- unit_converter: Unit classes and conversions
- recipe_scaling_service: Scaling factors and ingredient targets
- cure_service: Curing agent dosing and ppm evaluation
- tolerance_service: Measurement tolerance evaluation
- settings_service: Runtime settings (cure ppm thresholds)
- lot_service: Lot receiving, FIFO allocation, ledger and recall
- batch_service: Batch lifecycle and ingredient measurements
- qa_service: QA checkpoint results and stage progress
- compliance_service: Compliance task scheduling and completion log

Infrastructure:
- exceptions: Custom exception classes for service layer errors
- database: Session management and database utilities
- logging_utils: Structured service logging

Modules are imported directly (e.g. ``from src.services import lot_service``);
this package does not re-export names.
"""
