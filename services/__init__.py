"""
Services Module
Business logic layer for the CareCadence scheduling engine
"""

from services.patient_service import PatientService, patient_service
from services.schedule_service import ScheduleService, schedule_service
from services.medication_service import MedicationService, medication_service
from services.dose_service import DoseService, dose_service
from services.adherence_service import AdherenceService, adherence_service
from services.repair_service import RepairService, repair_service


__all__ = [
    # Service classes
    "PatientService",
    "ScheduleService",
    "MedicationService",
    "DoseService",
    "AdherenceService",
    "RepairService",
    # Singleton instances
    "patient_service",
    "schedule_service",
    "medication_service",
    "dose_service",
    "adherence_service",
    "repair_service",
]
