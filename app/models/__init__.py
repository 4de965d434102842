# Models module
from app.models.organization import Organization, Branch
from app.models.customer import Customer
from app.models.vehicle import Vehicle
from app.models.booking import (
    Booking,
    BookingArticle,
    BookingStatus,
    PaymentMode,
    PODStatus,
    UnloadingStatus,
)
from app.models.manifest import Manifest, LoadingRecord, ManifestStatus
from app.models.unloading import (
    UnloadingSession,
    UnloadingRecord,
    UnloadingProgress,
    UnloadingStep,
    UnloadingProgressStatus,
)
from app.models.document_sequence import DocumentSequence

__all__ = [
    "Organization",
    "Branch",
    "Customer",
    "Vehicle",
    "Booking",
    "BookingArticle",
    "BookingStatus",
    "PaymentMode",
    "PODStatus",
    "UnloadingStatus",
    "Manifest",
    "LoadingRecord",
    "ManifestStatus",
    "UnloadingSession",
    "UnloadingRecord",
    "UnloadingProgress",
    "UnloadingStep",
    "UnloadingProgressStatus",
    "DocumentSequence",
]
