# Services module
from app.services.document_sequence_service import DocumentSequenceService
from app.services.booking_service import BookingService
from app.services.customer_service import CustomerService
from app.services.manifest_service import ManifestService
from app.services.unloading_service import UnloadingService

__all__ = [
    "DocumentSequenceService",
    "BookingService",
    "CustomerService",
    "ManifestService",
    "UnloadingService",
]
